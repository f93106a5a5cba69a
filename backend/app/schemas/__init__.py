"""
Schemas Pydantic per il progetto ISP Billing

Questo modulo contiene tutti gli schemi Pydantic utilizzati per la validazione
degli input delle operazioni e la serializzazione delle risposte API.
"""

# Import degli schemi per renderli disponibili tramite import diretto
# es: from app.schemas import InvoiceRead, RecordPaymentInput, etc.

from app.schemas.token import Principal, Role, TokenPayload
from app.schemas.package import PackageCreate, PackageList, PackageRead, PackageUpdate
from app.schemas.customer import (
    CustomerCreate,
    CustomerList,
    CustomerRead,
    CustomerStatus,
    CustomerStatusUpdate,
)
from app.schemas.invoice import (
    BulkReminderResult,
    GenerateInvoicesRequest,
    GenerationError,
    GenerationResult,
    InvoiceKind,
    InvoiceLineItemRead,
    InvoiceList,
    InvoiceRead,
    InvoiceStatus,
    InvoiceUpdate,
    LineItemType,
    StatusRefreshResult,
    ReminderResult,
    ReminderError,
)
from app.schemas.payment import (
    GatewayConfirmation,
    GatewayPaymentInput,
    OnlinePaymentInput,
    PaymentList,
    PaymentMethod,
    PaymentRead,
    PaymentResultRead,
    PaymentStatus,
    RecordPaymentInput,
    RefundInput,
    RefundResultRead,
)

__all__ = [
    # Identità
    "Principal",
    "Role",
    "TokenPayload",
    # Package
    "PackageCreate",
    "PackageRead",
    "PackageList",
    "PackageUpdate",
    # Customer
    "CustomerCreate",
    "CustomerList",
    "CustomerRead",
    "CustomerStatus",
    "CustomerStatusUpdate",
    # Invoice
    "GenerateInvoicesRequest",
    "GenerationError",
    "GenerationResult",
    "InvoiceKind",
    "InvoiceLineItemRead",
    "InvoiceList",
    "InvoiceRead",
    "InvoiceStatus",
    "InvoiceUpdate",
    "LineItemType",
    "StatusRefreshResult",
    "ReminderResult",
    "BulkReminderResult",
    "ReminderError",
    # Payment
    "GatewayConfirmation",
    "GatewayPaymentInput",
    "OnlinePaymentInput",
    "PaymentList",
    "PaymentMethod",
    "PaymentRead",
    "PaymentResultRead",
    "PaymentStatus",
    "RecordPaymentInput",
    "RefundInput",
    "RefundResultRead",
]
