"""
Schemas Pydantic per il catalogo pacchetti
Progetto: ISP Billing (Gestionale ISP)
"""

import uuid
from decimal import Decimal, InvalidOperation
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.exceptions import BusinessValidationError


def normalize_data_limit(v: Optional[str]) -> str:
    """
    Normalizza la soglia dati: un numero di GB positivo oppure "Unlimited".

    Raises:
        BusinessValidationError: per valori numerici negativi o testo non riconosciuto
    """
    if v is None or not v.strip() or v.strip().lower() == "unlimited":
        return "Unlimited"
    try:
        gb = Decimal(v.strip())
    except InvalidOperation:
        raise BusinessValidationError(
            f"Soglia dati non valida: '{v}' (usare un numero di GB o 'Unlimited')"
        )
    if gb <= 0:
        raise BusinessValidationError("La soglia dati deve essere maggiore di zero")
    return format(gb.normalize(), "f")


class PackageBase(BaseModel):
    """Schema base per i pacchetti."""

    code: str = Field(..., min_length=1, max_length=30, description="Codice univoco")
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    speed_mbps: Optional[int] = Field(None, gt=0, serialization_alias="speedMbps")
    monthly_price: Decimal = Field(
        ...,
        ge=0,
        max_digits=12,
        decimal_places=2,
        serialization_alias="monthlyPrice"
    )
    data_limit: str = Field(
        default="Unlimited",
        max_length=20,
        description="Soglia mensile in GB oppure 'Unlimited'",
        serialization_alias="dataLimit"
    )
    tax_rate: Decimal = Field(
        default=Decimal("0.00"),
        ge=0,
        le=100,
        description="Aliquota IVA in percentuale",
        serialization_alias="taxRate"
    )
    setup_fee: Decimal = Field(
        default=Decimal("0.00"),
        ge=0,
        max_digits=12,
        decimal_places=2,
        serialization_alias="setupFee"
    )

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()


class PackageCreate(PackageBase):
    """Schema per la creazione di un pacchetto."""

    @field_validator("data_limit")
    @classmethod
    def validate_data_limit(cls, v: str) -> str:
        return normalize_data_limit(v)


class PackageUpdate(BaseModel):
    """
    Schema per l'aggiornamento di un pacchetto.

    Le modifiche valgono solo per le fatture emesse in seguito.
    """

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    monthly_price: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    data_limit: Optional[str] = Field(None, max_length=20)
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    setup_fee: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    is_active: Optional[bool] = None

    @field_validator("data_limit")
    @classmethod
    def validate_data_limit(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return normalize_data_limit(v)


class PackageRead(PackageBase):
    """Schema per la lettura di un pacchetto."""

    id: uuid.UUID
    is_active: bool = Field(..., serialization_alias="isActive")

    model_config = ConfigDict(from_attributes=True)


class PackageList(BaseModel):
    """Catalogo pacchetti (non paginato)."""

    items: list[PackageRead] = Field(default_factory=list)
    total: int


__all__ = [
    "normalize_data_limit",
    "PackageBase",
    "PackageCreate",
    "PackageUpdate",
    "PackageRead",
    "PackageList",
]
