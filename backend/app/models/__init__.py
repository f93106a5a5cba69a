"""
Modelli Database SQLAlchemy
Progetto: ISP Billing (Gestionale ISP)

Import centralizzato di tutti i modelli per la creazione dello schema.

Modelli:
- Customer: Anagrafica abbonati
- Package: Catalogo pacchetti di connettività
- Invoice: Fatture mensili e di attivazione
- InvoiceLineItem: Righe fattura
- Payment: Pagamenti e rimborsi
- BandwidthUsage: Traffico giornaliero
"""

# SQLAlchemy 2.0 Base declarativa
# Importato qui per essere disponibile per tutti i modelli
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class per tutti i modelli SQLAlchemy."""
    pass


# Import modelli implementati
from app.models.package import Package
from app.models.customer import Customer
from app.models.invoice import Invoice, InvoiceLineItem, Payment
from app.models.usage import BandwidthUsage

__all__ = [
    "Base",
    "Customer",
    "Package",
    "Invoice",
    "InvoiceLineItem",
    "Payment",
    "BandwidthUsage",
]
