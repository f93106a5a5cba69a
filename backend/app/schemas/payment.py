"""
Schemas Pydantic per gli incassi
Progetto: ISP Billing (Gestionale ISP)

Contiene:
- Enums: PaymentMethod, PaymentStatus
- Input delle operazioni di incasso (manuale, online, rimborso)
- Esito della conferma del gateway di pagamento
- Schemas di lettura per Payment e per gli esiti delle operazioni
"""

import uuid
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from app.core.exceptions import BusinessValidationError
from app.schemas.invoice import InvoiceRead


# -------------------------------------------------------------------
# Enum
# -------------------------------------------------------------------

class PaymentMethod(str, Enum):
    """Metodi di pagamento supportati."""
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"
    MOBILE_BANKING = "MOBILE_BANKING"
    CREDIT_CARD = "CREDIT_CARD"
    STRIPE = "STRIPE"
    SSLCOMMERZ = "SSLCOMMERZ"
    OTHER = "OTHER"


# Metodi per cui addebito e rimborso passano dal gateway esterno
GATEWAY_METHODS = frozenset({PaymentMethod.STRIPE})


class PaymentStatus(str, Enum):
    """Stato del movimento di incasso."""
    COMPLETED = "COMPLETED"


def _to_cents(v: Decimal) -> Decimal:
    return v.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


# -------------------------------------------------------------------
# Input delle operazioni
# -------------------------------------------------------------------

class RecordPaymentInput(BaseModel):
    """
    Pagamento registrato manualmente dall'operatore.

    invoice_id assente = pagamento non applicato a una fattura:
    il saldo del cliente viene ridotto e nessuna fattura cambia.
    """

    invoice_id: Optional[uuid.UUID] = Field(
        None,
        description="Fattura da saldare (assente = acconto sul saldo)"
    )
    customer_id: uuid.UUID = Field(..., description="Cliente pagante")
    amount: Decimal = Field(
        ...,
        gt=0,
        max_digits=12,
        decimal_places=2,
        description="Importo incassato"
    )
    method: PaymentMethod = Field(..., description="Metodo di pagamento")
    reference: Optional[str] = Field(
        None,
        max_length=255,
        description="Riferimento (ricevuta, id transazione bancaria, ecc.)"
    )
    paid_at: Optional[datetime] = Field(
        None,
        description="Data/ora dell'incasso (default: adesso)"
    )
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("amount")
    @classmethod
    def round_amount(cls, v: Decimal) -> Decimal:
        return _to_cents(v)

    @model_validator(mode="after")
    def validate_gateway_reference(self) -> "RecordPaymentInput":
        """Un incasso via gateway registrato a mano deve riportare l'id del gateway."""
        if self.method in GATEWAY_METHODS and not self.reference:
            raise BusinessValidationError(
                f"Il riferimento del gateway è obbligatorio per il metodo {self.method.value}"
            )
        return self


class GatewayPaymentInput(BaseModel):
    """Dati di un incasso confermato dal gateway di pagamento."""

    invoice_id: Optional[uuid.UUID] = None
    customer_id: uuid.UUID
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    method: PaymentMethod = PaymentMethod.STRIPE
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("amount")
    @classmethod
    def round_amount(cls, v: Decimal) -> Decimal:
        return _to_cents(v)

    @field_validator("method")
    @classmethod
    def validate_gateway_method(cls, v: PaymentMethod) -> PaymentMethod:
        if v not in GATEWAY_METHODS:
            raise ValueError(f"Il metodo {v.value} non è gestito dal gateway online")
        return v


class OnlinePaymentInput(GatewayPaymentInput):
    """Pagamento online avviato dal cliente: addebito sul gateway e registrazione."""

    invoice_id: uuid.UUID = Field(..., description="Fattura da saldare")
    payment_token: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Token del metodo di pagamento rilasciato dal gateway"
    )


class RefundInput(BaseModel):
    """Richiesta di rimborso di un pagamento."""

    reason: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="Motivo del rimborso"
    )

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Il motivo del rimborso è obbligatorio")
        return v


class GatewayConfirmation(BaseModel):
    """Esito di un addebito o rimborso sul gateway esterno."""

    success: bool
    reference: Optional[str] = Field(
        None,
        description="Identificativo della transazione sul gateway"
    )
    amount: Optional[Decimal] = None
    message: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


# -------------------------------------------------------------------
# Schemas di lettura
# -------------------------------------------------------------------

class PaymentRead(BaseModel):
    """Schema per la lettura di un pagamento o rimborso."""

    id: uuid.UUID
    transaction_id: str = Field(..., serialization_alias="transactionId")
    invoice_id: Optional[uuid.UUID] = Field(None, serialization_alias="invoiceId")
    customer_id: uuid.UUID = Field(..., serialization_alias="customerId")
    amount: Decimal
    method: PaymentMethod
    reference: Optional[str] = None
    paid_at: datetime = Field(..., serialization_alias="paidAt")
    status: PaymentStatus
    notes: Optional[str] = None
    received_by: Optional[str] = Field(None, serialization_alias="receivedBy")
    refund_of_id: Optional[uuid.UUID] = Field(None, serialization_alias="refundOfId")

    @computed_field
    @property
    def is_refund(self) -> bool:
        """True se il movimento è un rimborso."""
        return self.amount < 0

    model_config = ConfigDict(from_attributes=True)


class PaymentList(BaseModel):
    """Schema per la lista paginata dei pagamenti."""

    items: list[PaymentRead] = Field(default_factory=list)
    total: int = Field(..., serialization_alias="totalItems")
    page: int = Field(..., serialization_alias="currentPage")
    per_page: int = Field(..., serialization_alias="itemsPerPage")

    @computed_field
    @property
    def total_pages(self) -> int:
        if self.per_page > 0:
            return (self.total + self.per_page - 1) // self.per_page
        return 0


class PaymentResultRead(BaseModel):
    """Esito di un incasso: pagamento creato, fattura aggiornata, saldo cliente."""

    payment: PaymentRead
    invoice: Optional[InvoiceRead] = None
    customer_balance: Decimal = Field(..., serialization_alias="customerBalance")

    model_config = ConfigDict(from_attributes=True)


class RefundResultRead(BaseModel):
    """Esito di un rimborso."""

    refund: PaymentRead
    original: PaymentRead
    invoice: Optional[InvoiceRead] = None
    customer_balance: Decimal = Field(..., serialization_alias="customerBalance")

    model_config = ConfigDict(from_attributes=True)


__all__ = [
    "PaymentMethod",
    "PaymentStatus",
    "GATEWAY_METHODS",
    "RecordPaymentInput",
    "GatewayPaymentInput",
    "OnlinePaymentInput",
    "RefundInput",
    "GatewayConfirmation",
    "PaymentRead",
    "PaymentList",
    "PaymentResultRead",
    "RefundResultRead",
]
