"""
Modello SQLAlchemy per l'entità Customer
Progetto: ISP Billing (Gestionale ISP)

Rappresenta l'abbonato del servizio di connettività.
"""


from __future__ import annotations
import datetime
import uuid
from decimal import Decimal
from typing import Optional, TYPE_CHECKING, List

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models import Base
from app.models.mixins import Money, TimestampMixin, UUIDMixin

# Import per type hinting relazioni (evita circular import)
if TYPE_CHECKING:
    from app.models.package import Package
    from app.models.invoice import Invoice, Payment


class Customer(Base, UUIDMixin, TimestampMixin):
    """
    Modello per gli abbonati.

    Un cliente non viene mai eliminato: cambia solo stato
    (PENDING -> ACTIVE -> SUSPENDED/DISCONNECTED).

    Il saldo è firmato: positivo = importo dovuto, negativo = credito.
    Viene modificato esclusivamente dal generatore di fatture e dal
    riconciliatore dei pagamenti, sempre nella stessa transazione
    che crea la fattura o il pagamento.

    Attributes:
        customer_code: Codice cliente esterno (CUST<yymm><hex>)
        name: Nome e cognome o ragione sociale
        email: Indirizzo email per le notifiche
        phone: Numero di telefono per gli SMS
        address: Indirizzo di installazione
        status: Stato del contratto
        package_id: Pacchetto sottoscritto
        router_id: Riferimento opaco al dispositivo di rete assegnato
        balance: Saldo corrente
        connection_date: Data di attivazione
        disconnect_date: Data di disconnessione

    Relationships:
        package: Pacchetto sottoscritto
        invoices: Fatture emesse
        payments: Pagamenti e rimborsi registrati
    """

    __tablename__ = "customers"

    # ------------------------------------------------------------
    # Colonne Anagrafiche
    # ------------------------------------------------------------
    customer_code: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        unique=True,
        doc="Codice cliente esterno",
    )

    name: Mapped[str] = mapped_column(
        String(150),
        nullable=False,
        doc="Nome e cognome o ragione sociale",
    )

    email: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        doc="Indirizzo email",
    )

    phone: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        doc="Numero di telefono",
    )

    address: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Indirizzo di installazione",
    )

    # ------------------------------------------------------------
    # Colonne Contratto
    # ------------------------------------------------------------
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="PENDING",
        doc="PENDING, ACTIVE, SUSPENDED, DISCONNECTED",
    )

    package_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("packages.id", ondelete="RESTRICT"),
        nullable=False,
        doc="UUID del pacchetto sottoscritto",
    )

    router_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        doc="Riferimento al dispositivo di rete (gestito altrove)",
    )

    balance: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        default=Decimal("0.00"),
        doc="Saldo: positivo = dovuto, negativo = credito",
    )

    connection_date: Mapped[Optional[datetime.date]] = mapped_column(
        Date,
        nullable=True,
    )

    disconnect_date: Mapped[Optional[datetime.date]] = mapped_column(
        Date,
        nullable=True,
    )

    # ------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------
    package: Mapped["Package"] = relationship(
        "Package",
        back_populates="customers",
        lazy="selectin",
    )

    invoices: Mapped[List["Invoice"]] = relationship(
        "Invoice",
        back_populates="customer",
        lazy="raise",
    )

    payments: Mapped[List["Payment"]] = relationship(
        "Payment",
        back_populates="customer",
        lazy="raise",
    )

    __table_args__ = (
        Index("ix_customers_status", "status"),
        Index("ix_customers_package_id", "package_id"),
        CheckConstraint(
            "status IN ('PENDING', 'ACTIVE', 'SUSPENDED', 'DISCONNECTED')",
            name="ck_customers_status",
        ),
    )

    @property
    def has_credit(self) -> bool:
        """True se il cliente ha un credito disponibile."""
        return self.balance < 0

    def __repr__(self) -> str:
        return f"<Customer(code={self.customer_code}, status={self.status}, balance={self.balance})>"
