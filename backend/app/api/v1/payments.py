"""
Router FastAPI per incassi e rimborsi
Progetto: ISP Billing (Gestionale ISP)
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import (
    AdminPrincipal,
    BillingPrincipal,
    CurrentPrincipal,
    get_invoice_service,
    get_payment_reconciler,
)
from app.schemas.payment import (
    OnlinePaymentInput,
    PaymentList,
    PaymentRead,
    PaymentResultRead,
    RecordPaymentInput,
    RefundInput,
    RefundResultRead,
)
from app.services.invoice_service import InvoiceService
from app.services.payment_reconciler import PaymentReconciler

# Logger per questo modulo
logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/payments",
    tags=["Pagamenti"],
)


@router.post(
    "/",
    name="pagamento_registra",
    summary="Registra pagamento",
    description=(
        "Registra un incasso su una fattura o, senza fattura, come acconto "
        "sul saldo del cliente."
    ),
    response_model=PaymentResultRead,
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    data: RecordPaymentInput,
    principal: BillingPrincipal,
    db: AsyncSession = Depends(get_db),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
) -> PaymentResultRead:
    """
    Raises:
        NotFoundError: fattura o cliente inesistente
        AlreadySettledError: fattura già saldata
    """
    result = await reconciler.record_payment(db, data, received_by=principal.user_id)
    return PaymentResultRead.model_validate(result)


@router.post(
    "/online",
    name="pagamento_online",
    summary="Pagamento online",
    description="Addebita il metodo di pagamento sul gateway e registra l'incasso.",
    response_model=PaymentResultRead,
    status_code=status.HTTP_201_CREATED,
)
async def pay_online(
    data: OnlinePaymentInput,
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
) -> PaymentResultRead:
    """
    Raises:
        GatewayError: addebito rifiutato o gateway non raggiungibile
    """
    result = await reconciler.process_online_payment(db, data)
    return PaymentResultRead.model_validate(result)


@router.post(
    "/{payment_id}/refund",
    name="pagamento_rimborsa",
    summary="Rimborsa pagamento",
    response_model=RefundResultRead,
    status_code=status.HTTP_201_CREATED,
)
async def refund_payment(
    payment_id: uuid.UUID,
    data: RefundInput,
    admin: AdminPrincipal,
    db: AsyncSession = Depends(get_db),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
) -> RefundResultRead:
    """
    Rimborsa integralmente un pagamento (solo ISP_ADMIN).

    Raises:
        NotFoundError: pagamento inesistente
        InvalidStateError: movimento già rimborsato o esso stesso un rimborso
        GatewayError: rimborso rifiutato dal gateway
    """
    result = await reconciler.refund_payment(
        db, payment_id, data.reason, received_by=admin.user_id
    )
    return RefundResultRead.model_validate(result)


@router.get(
    "/",
    name="pagamenti_lista",
    summary="Lista pagamenti",
    response_model=PaymentList,
)
async def get_payments(
    principal: CurrentPrincipal,
    customer_id: Optional[uuid.UUID] = Query(None, description="Filtro per cliente"),
    invoice_id: Optional[uuid.UUID] = Query(None, description="Filtro per fattura"),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    service: InvoiceService = Depends(get_invoice_service),
) -> PaymentList:
    payments, total = await service.get_payments(
        db=db,
        customer_id=customer_id,
        invoice_id=invoice_id,
        page=page,
        per_page=per_page,
    )
    return PaymentList(
        items=[PaymentRead.model_validate(p) for p in payments],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get(
    "/{payment_id}",
    name="pagamento_dettaglio",
    summary="Dettaglio pagamento",
    response_model=PaymentRead,
)
async def get_payment(
    payment_id: uuid.UUID,
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db),
    service: InvoiceService = Depends(get_invoice_service),
) -> PaymentRead:
    payment = await service.get_payment(db=db, payment_id=payment_id)
    return PaymentRead.model_validate(payment)


@router.get(
    "/{payment_id}/receipt",
    name="pagamento_ricevuta",
    summary="Scarica ricevuta PDF",
    response_class=Response,
)
async def download_receipt(
    payment_id: uuid.UUID,
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db),
    service: InvoiceService = Depends(get_invoice_service),
) -> Response:
    pdf_bytes, filename = await service.get_receipt_pdf(db=db, payment_id=payment_id)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
