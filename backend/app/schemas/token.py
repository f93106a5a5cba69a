"""
Schemas Pydantic per l'identità del chiamante
Progetto: ISP Billing (Gestionale ISP)

Il login e l'emissione dei token sono gestiti dal servizio di identità
esterno: qui si modella solo il payload JWT ricevuto e il principal
autenticato che ne deriva.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class Role(str, Enum):
    """Ruoli operatore riconosciuti dal back-office."""
    ISP_ADMIN = "ISP_ADMIN"
    ACCOUNTANT = "ACCOUNTANT"
    SUPPORT_STAFF = "SUPPORT_STAFF"
    CUSTOMER = "CUSTOMER"


class TokenPayload(BaseModel):
    """
    Schema per il payload contenuto nei token JWT.

    Attributes:
        sub: Subject - ID dell'utente come stringa
        role: Ruolo dell'utente
        exp: Expiration - Data/ora di scadenza
        type: Tipo di token ("access" o "refresh")
    """

    sub: str = Field(..., description="ID utente")
    role: str = Field(..., description="Ruolo dell'utente")
    exp: datetime = Field(..., description="Data/ora di scadenza")
    type: str = Field(default="access", description="Tipo di token (access/refresh)")


class Principal(BaseModel):
    """Chiamante autenticato, usato per autorizzazione e log delle attività."""

    user_id: str = Field(..., description="ID dell'utente autenticato")
    role: Role = Field(..., description="Ruolo dell'utente")


# Export degli schemas
__all__ = [
    "Role",
    "TokenPayload",
    "Principal",
]
