"""
Schemas Pydantic per gli abbonati
Progetto: ISP Billing (Gestionale ISP)
"""

import re
import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, computed_field, field_validator

from app.schemas.package import PackageRead


class CustomerStatus(str, Enum):
    """Stato del contratto di connettività."""
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    DISCONNECTED = "DISCONNECTED"


# -------------------------------------------------------------------
# Funzioni di normalizzazione
# -------------------------------------------------------------------

def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalizza il numero di telefono usato per gli SMS.

    Rimuove spazi e trattini e accetta solo un + iniziale seguito da cifre.

    Raises:
        ValueError: Se il formato non è valido
    """
    if phone is None:
        return None

    normalized = phone.strip().replace(" ", "").replace("-", "")
    if not normalized:
        return None

    if not re.match(r"^\+?\d{6,15}$", normalized):
        raise ValueError("Numero di telefono non valido")

    return normalized


# -------------------------------------------------------------------
# Schemas
# -------------------------------------------------------------------

class CustomerCreate(BaseModel):
    """
    Schema per l'attivazione di un nuovo abbonato.

    Il cliente nasce in stato PENDING con saldo zero; se il costo di
    attivazione è maggiore di zero viene emessa la fattura SETUP, che
    porta il saldo al valore del costo.
    """

    name: str = Field(..., min_length=1, max_length=150)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=1000)
    package_id: uuid.UUID = Field(..., description="Pacchetto sottoscritto")
    router_id: Optional[str] = Field(
        None,
        max_length=64,
        description="Riferimento al dispositivo di rete assegnato"
    )
    setup_fee: Optional[Decimal] = Field(
        None,
        ge=0,
        max_digits=12,
        decimal_places=2,
        description="Costo di attivazione (default: quello del pacchetto)"
    )

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        return normalize_phone(v)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Il nome è obbligatorio")
        return v


class CustomerStatusUpdate(BaseModel):
    """Cambio di stato del contratto."""

    status: CustomerStatus
    reason: Optional[str] = Field(None, max_length=500)


class CustomerRead(BaseModel):
    """Schema per la lettura di un abbonato."""

    id: uuid.UUID
    customer_code: str = Field(..., serialization_alias="customerCode")
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    status: CustomerStatus
    package_id: uuid.UUID = Field(..., serialization_alias="packageId")
    router_id: Optional[str] = Field(None, serialization_alias="routerId")
    balance: Decimal
    connection_date: Optional[date] = Field(None, serialization_alias="connectionDate")
    disconnect_date: Optional[date] = Field(None, serialization_alias="disconnectDate")
    created_at: datetime = Field(..., serialization_alias="createdAt")
    package: Optional[PackageRead] = None

    @computed_field
    @property
    def has_credit(self) -> bool:
        """True se il cliente ha un credito disponibile (saldo negativo)."""
        return self.balance < 0

    model_config = ConfigDict(from_attributes=True)


class CustomerList(BaseModel):
    """Schema per la lista paginata degli abbonati."""

    items: list[CustomerRead] = Field(default_factory=list)
    total: int = Field(..., serialization_alias="totalItems")
    page: int = Field(..., serialization_alias="currentPage")
    per_page: int = Field(..., serialization_alias="itemsPerPage")

    @computed_field
    @property
    def total_pages(self) -> int:
        if self.per_page > 0:
            return (self.total + self.per_page - 1) // self.per_page
        return 0


__all__ = [
    "CustomerStatus",
    "normalize_phone",
    "CustomerCreate",
    "CustomerStatusUpdate",
    "CustomerRead",
    "CustomerList",
]
