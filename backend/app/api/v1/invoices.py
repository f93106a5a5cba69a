"""
Router FastAPI per le fatture
Progetto: ISP Billing (Gestionale ISP)

Definisce gli endpoint per:
- generazione mensile e aggiornamento stati
- consultazione e aggiornamento (note, sconto)
- PDF e promemoria di pagamento
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import (
    BillingPrincipal,
    CurrentPrincipal,
    get_invoice_generator,
    get_invoice_service,
)
from app.schemas.invoice import (
    BulkReminderResult,
    GenerateInvoicesRequest,
    GenerationResult,
    InvoiceList,
    InvoiceRead,
    InvoiceStatus,
    InvoiceUpdate,
    ReminderResult,
    StatusRefreshResult,
)
from app.services.invoice_generator import InvoiceGenerator
from app.services.invoice_service import InvoiceService

# Logger per questo modulo
logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/invoices",
    tags=["Fatture"],
)


# -------------------------------------------------------------------
# Generazione
# -------------------------------------------------------------------

@router.post(
    "/generate",
    name="fatture_genera",
    summary="Genera fatture mensili",
    description=(
        "Emette le fatture del mese indicato per tutti i clienti attivi. "
        "I clienti già fatturati nel mese vengono saltati; gli errori sui "
        "singoli clienti sono riportati nel risultato."
    ),
    response_model=GenerationResult,
    status_code=status.HTTP_200_OK,
)
async def generate_invoices(
    data: GenerateInvoicesRequest,
    principal: BillingPrincipal,
    db: AsyncSession = Depends(get_db),
    generator: InvoiceGenerator = Depends(get_invoice_generator),
) -> GenerationResult:
    logger.info(f"Generazione fatture {data.period} avviata da {principal.user_id}")
    return await generator.generate_monthly_invoices(db, data.period, today=data.issue_date)


@router.post(
    "/refresh-status",
    name="fatture_aggiorna_stati",
    summary="Aggiorna stati fatture",
    description="Ricalcola lo stato delle fatture aperte (es. passaggio a OVERDUE).",
    response_model=StatusRefreshResult,
)
async def refresh_invoice_statuses(
    principal: BillingPrincipal,
    db: AsyncSession = Depends(get_db),
    generator: InvoiceGenerator = Depends(get_invoice_generator),
) -> StatusRefreshResult:
    return await generator.refresh_overdue_statuses(db)


@router.post(
    "/reminders/overdue",
    name="fatture_promemoria_scadute",
    summary="Promemoria per le fatture scadute",
    description=(
        "Invia un promemoria per ogni fattura non saldata oltre la scadenza. "
        "Gli invii falliti sono riportati nel risultato senza interrompere il ciclo."
    ),
    response_model=BulkReminderResult,
)
async def send_overdue_reminders(
    principal: BillingPrincipal,
    db: AsyncSession = Depends(get_db),
    service: InvoiceService = Depends(get_invoice_service),
) -> BulkReminderResult:
    logger.info(f"Invio promemoria scadute avviato da {principal.user_id}")
    return await service.send_overdue_reminders(db=db)


# -------------------------------------------------------------------
# Consultazione
# -------------------------------------------------------------------

@router.get(
    "/",
    name="fatture_lista",
    summary="Lista fatture",
    response_model=InvoiceList,
)
async def get_invoices(
    principal: CurrentPrincipal,
    customer_id: Optional[uuid.UUID] = Query(None, description="Filtro per cliente"),
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status", description="Filtro stato"),
    month: Optional[str] = Query(None, description="Mese di competenza YYYY-MM"),
    page: int = Query(1, ge=1, description="Numero pagina"),
    per_page: int = Query(20, ge=1, le=100, description="Elementi per pagina"),
    db: AsyncSession = Depends(get_db),
    service: InvoiceService = Depends(get_invoice_service),
) -> InvoiceList:
    invoices, total = await service.get_all(
        db=db,
        customer_id=customer_id,
        status=status_filter,
        month=month,
        page=page,
        per_page=per_page,
    )
    return InvoiceList(
        items=[InvoiceRead.model_validate(i) for i in invoices],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get(
    "/{invoice_id}",
    name="fattura_dettaglio",
    summary="Dettaglio fattura",
    response_model=InvoiceRead,
)
async def get_invoice(
    invoice_id: uuid.UUID,
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db),
    service: InvoiceService = Depends(get_invoice_service),
) -> InvoiceRead:
    invoice = await service.get_by_id(db=db, invoice_id=invoice_id)
    return InvoiceRead.model_validate(invoice)


@router.patch(
    "/{invoice_id}",
    name="fattura_aggiorna",
    summary="Aggiorna fattura",
    description="Aggiorna le note o applica uno sconto (ricalcola totale, residuo e saldo).",
    response_model=InvoiceRead,
)
async def update_invoice(
    invoice_id: uuid.UUID,
    data: InvoiceUpdate,
    principal: BillingPrincipal,
    db: AsyncSession = Depends(get_db),
    service: InvoiceService = Depends(get_invoice_service),
) -> InvoiceRead:
    invoice = await service.update(db=db, invoice_id=invoice_id, data=data)
    return InvoiceRead.model_validate(invoice)


@router.get(
    "/{invoice_id}/pdf",
    name="fattura_pdf",
    summary="Scarica PDF fattura",
    response_class=Response,
)
async def download_invoice_pdf(
    invoice_id: uuid.UUID,
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db),
    service: InvoiceService = Depends(get_invoice_service),
) -> Response:
    pdf_bytes, filename = await service.get_invoice_pdf(db=db, invoice_id=invoice_id)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post(
    "/{invoice_id}/reminder",
    name="fattura_promemoria",
    summary="Invia promemoria di pagamento",
    response_model=ReminderResult,
)
async def send_invoice_reminder(
    invoice_id: uuid.UUID,
    principal: BillingPrincipal,
    db: AsyncSession = Depends(get_db),
    service: InvoiceService = Depends(get_invoice_service),
) -> ReminderResult:
    """
    Raises:
        InvalidStateError: La fattura è già saldata
    """
    return await service.send_reminder(db=db, invoice_id=invoice_id)
