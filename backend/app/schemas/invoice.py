"""
Schemas Pydantic per la Fatturazione
Progetto: ISP Billing (Gestionale ISP)

Contiene:
- Enums: InvoiceStatus, InvoiceKind, LineItemType
- Schemas per InvoiceLineItem
- Schemas per Invoice (lettura, lista, aggiornamento)
- Schemas per la generazione mensile (richiesta, esito)
"""

import re
import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from app.core.exceptions import BusinessValidationError


# -------------------------------------------------------------------
# Enum
# -------------------------------------------------------------------

class InvoiceStatus(str, Enum):
    """Stato di incasso della fattura."""
    PENDING = "PENDING"
    PARTIAL_PAID = "PARTIAL_PAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


class InvoiceKind(str, Enum):
    """Tipologia di fattura."""
    MONTHLY = "MONTHLY"
    SETUP = "SETUP"


class LineItemType(str, Enum):
    """Tipi di riga della fattura."""
    BASE = "BASE"
    OVERAGE = "OVERAGE"
    LATE_FEE = "LATE_FEE"
    TAX = "TAX"
    SETUP = "SETUP"


# -------------------------------------------------------------------
# Periodo di fatturazione
# -------------------------------------------------------------------

_PERIOD_RE = re.compile(r"^(\d{4})-(\d{2})$")


def parse_billing_period(period: str) -> date:
    """
    Converte un periodo YYYY-MM nel primo giorno del mese.

    Raises:
        BusinessValidationError: se il formato o il mese non sono validi
    """
    match = _PERIOD_RE.match(period or "")
    if not match:
        raise BusinessValidationError(
            f"Il periodo '{period}' deve essere nel formato YYYY-MM",
            error_code="INVALID_BILLING_PERIOD",
        )
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12 or year < 2000:
        raise BusinessValidationError(
            f"Il periodo '{period}' non è un mese valido",
            error_code="INVALID_BILLING_PERIOD",
        )
    return date(year, month, 1)


# -------------------------------------------------------------------
# Schemas per InvoiceLineItem
# -------------------------------------------------------------------

class InvoiceLineItemRead(BaseModel):
    """Schema per la lettura di una riga fattura."""

    id: uuid.UUID
    line_type: LineItemType = Field(..., serialization_alias="lineType")
    description: str
    quantity: Decimal
    unit_price: Decimal = Field(..., serialization_alias="unitPrice")
    total: Decimal
    line_number: int = Field(..., ge=1, serialization_alias="lineNumber")

    model_config = ConfigDict(from_attributes=True)


# -------------------------------------------------------------------
# Schemas per Invoice
# -------------------------------------------------------------------

class InvoiceRead(BaseModel):
    """Schema per la lettura di una fattura."""

    id: uuid.UUID = Field(..., description="UUID della fattura")
    invoice_number: str = Field(
        ...,
        description="Numero fattura",
        serialization_alias="invoiceNumber"
    )
    customer_id: uuid.UUID = Field(
        ...,
        description="UUID del cliente",
        serialization_alias="customerId"
    )
    kind: InvoiceKind = Field(..., description="MONTHLY o SETUP")
    month: Optional[str] = Field(None, description="Mese di competenza YYYY-MM")
    issue_date: date = Field(..., serialization_alias="issueDate")
    due_date: date = Field(..., serialization_alias="dueDate")

    # Importi
    amount: Decimal = Field(..., description="Canone base o costo di attivazione")
    usage_charge: Decimal = Field(..., serialization_alias="usageCharge")
    late_fee: Decimal = Field(..., serialization_alias="lateFee")
    vat: Decimal
    discount: Decimal
    total_amount: Decimal = Field(..., serialization_alias="totalAmount")
    paid_amount: Decimal = Field(..., serialization_alias="paidAmount")
    due_amount: Decimal = Field(..., serialization_alias="dueAmount")
    status: InvoiceStatus

    document_url: Optional[str] = Field(None, serialization_alias="documentUrl")
    notes: Optional[str] = None

    created_at: datetime = Field(..., serialization_alias="createdAt")
    updated_at: datetime = Field(..., serialization_alias="updatedAt")

    line_items: list[InvoiceLineItemRead] = Field(
        default_factory=list,
        description="Righe della fattura",
        serialization_alias="lineItems"
    )

    # -------------------------------------------------------------------
    # Computed Fields
    # -------------------------------------------------------------------
    @computed_field
    @property
    def is_overpaid(self) -> bool:
        """True se l'incassato supera il totale (residuo negativo)."""
        return self.due_amount < 0

    model_config = ConfigDict(from_attributes=True)


class InvoiceList(BaseModel):
    """Schema per la lista paginata delle fatture."""

    items: list[InvoiceRead] = Field(
        default_factory=list,
        description="Lista delle fatture"
    )
    total: int = Field(
        ...,
        description="Numero totale di fatture",
        serialization_alias="totalItems"
    )
    page: int = Field(
        ...,
        description="Pagina corrente",
        serialization_alias="currentPage"
    )
    per_page: int = Field(
        ...,
        description="Elementi per pagina",
        serialization_alias="itemsPerPage"
    )

    @computed_field
    @property
    def total_pages(self) -> int:
        """Numero totale di pagine: ceil(total / per_page)."""
        if self.per_page > 0:
            return (self.total + self.per_page - 1) // self.per_page
        return 0

    model_config = ConfigDict(from_attributes=True)


class InvoiceUpdate(BaseModel):
    """
    Schema per l'aggiornamento di una fattura emessa.

    Gli importi calcolati non sono modificabili: si possono solo
    aggiornare le note o applicare uno sconto.
    """

    notes: Optional[str] = Field(
        None,
        max_length=2000,
        description="Note libere"
    )
    discount: Optional[Decimal] = Field(
        None,
        ge=0,
        description="Sconto complessivo da applicare alla fattura"
    )

    @model_validator(mode="after")
    def validate_update(self) -> "InvoiceUpdate":
        """Valida che almeno un campo sia stato modificato."""
        if self.notes is None and self.discount is None:
            raise BusinessValidationError("È necessario modificare almeno un campo")
        return self


# -------------------------------------------------------------------
# Schemas per la generazione mensile
# -------------------------------------------------------------------

class GenerateInvoicesRequest(BaseModel):
    """Richiesta di generazione delle fatture per un mese."""

    period: str = Field(
        ...,
        description="Mese di competenza nel formato YYYY-MM",
        examples=["2024-06"],
    )
    issue_date: Optional[date] = Field(
        None,
        description="Data di emissione (default: oggi)",
    )

    @field_validator("period")
    @classmethod
    def validate_period(cls, v: str) -> str:
        """Valida il formato del periodo."""
        parse_billing_period(v)
        return v


class GenerationError(BaseModel):
    """Errore di generazione relativo a un singolo cliente."""

    customer_id: uuid.UUID = Field(..., serialization_alias="customerId")
    customer_code: Optional[str] = Field(None, serialization_alias="customerCode")
    message: str


class GenerationResult(BaseModel):
    """Esito di un ciclo di generazione mensile."""

    period: str
    generated: int = 0
    skipped: int = 0
    errors: list[GenerationError] = Field(default_factory=list)
    invoice_ids: list[uuid.UUID] = Field(
        default_factory=list,
        serialization_alias="invoiceIds"
    )


class StatusRefreshResult(BaseModel):
    """Esito dell'aggiornamento degli stati delle fatture aperte."""

    checked: int = 0
    updated: int = 0
    as_of: date = Field(..., serialization_alias="asOf")


class ReminderResult(BaseModel):
    """Esito dell'invio di un promemoria di pagamento."""

    invoice_id: uuid.UUID = Field(..., serialization_alias="invoiceId")
    invoice_number: str = Field(..., serialization_alias="invoiceNumber")
    due_amount: Decimal = Field(..., serialization_alias="dueAmount")
    days_overdue: int = Field(0, ge=0, serialization_alias="daysOverdue")
    sent: bool = Field(..., description="False se la notifica non è stata consegnata")


class ReminderError(BaseModel):
    """Promemoria non consegnato per una singola fattura."""

    invoice_id: uuid.UUID = Field(..., serialization_alias="invoiceId")
    invoice_number: str = Field(..., serialization_alias="invoiceNumber")
    message: str


class BulkReminderResult(BaseModel):
    """Esito dell'invio massivo dei promemoria per le fatture scadute."""

    sent: int = 0
    failed: int = 0
    errors: list[ReminderError] = Field(default_factory=list)


__all__ = [
    "BulkReminderResult",
    "ReminderError",
    "InvoiceStatus",
    "InvoiceKind",
    "LineItemType",
    "parse_billing_period",
    "InvoiceLineItemRead",
    "InvoiceRead",
    "InvoiceList",
    "InvoiceUpdate",
    "GenerateInvoicesRequest",
    "GenerationError",
    "GenerationResult",
    "StatusRefreshResult",
    "ReminderResult",
]
