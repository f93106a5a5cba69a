"""
Service Layer per la consultazione di fatture e pagamenti
Progetto: ISP Billing (Gestionale ISP)

Letture paginate, aggiornamento di note/sconto, promemoria di pagamento
e documenti PDF (fattura e ricevuta). Le modifiche agli importi passano
sempre dal PaymentReconciler.
"""

import asyncio
import logging
import uuid
from datetime import date
from typing import Optional

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import InvalidStateError, NotFoundError
from app.models import Customer, Invoice, Payment
from app.schemas.invoice import (
    BulkReminderResult,
    InvoiceStatus,
    InvoiceUpdate,
    ReminderError,
    ReminderResult,
    parse_billing_period,
)

# Logger per questo modulo
logger = logging.getLogger(__name__)


class InvoiceService:
    """
    Service per fatture emesse e movimenti di incasso.

    Collaboratori iniettati:
    - reconciler: PaymentReconciler, per lo sconto
    - notifier: per i promemoria di pagamento
    - exporter: InvoicePdfExporter, per i documenti scaricabili
    """

    def __init__(self, reconciler, notifier, exporter) -> None:
        self.reconciler = reconciler
        self.notifier = notifier
        self.exporter = exporter

    # ------------------------------------------------------------
    # Fatture
    # ------------------------------------------------------------
    async def get_all(
        self,
        db: AsyncSession,
        customer_id: Optional[uuid.UUID] = None,
        status: Optional[InvoiceStatus] = None,
        month: Optional[str] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> tuple[list[Invoice], int]:
        """
        Recupera la lista paginata delle fatture con filtri.

        Args:
            db: Sessione database
            customer_id: Filtro per cliente
            status: Filtro per stato memorizzato
            month: Filtro per mese di competenza (YYYY-MM)
            page: Numero pagina
            per_page: Elementi per pagina

        Returns:
            Tuple di (lista fatture, totale count)
        """
        conditions = []
        if customer_id:
            conditions.append(Invoice.customer_id == customer_id)
        if status is not None:
            conditions.append(Invoice.status == status.value)
        if month:
            parse_billing_period(month)
            conditions.append(Invoice.month == month)

        stmt = select(Invoice).options(
            selectinload(Invoice.customer),
            selectinload(Invoice.line_items),
        )
        count_stmt = select(func.count(Invoice.id))
        if conditions:
            stmt = stmt.where(and_(*conditions))
            count_stmt = count_stmt.where(and_(*conditions))

        count_result = await db.execute(count_stmt)
        total = count_result.scalar() or 0

        stmt = stmt.order_by(Invoice.issue_date.desc(), Invoice.invoice_number.asc())
        stmt = stmt.offset((page - 1) * per_page).limit(per_page)
        result = await db.execute(stmt)
        invoices = list(result.scalars().all())

        logger.info("Recuperate %s fatture (totale: %s)", len(invoices), total)
        return invoices, total

    async def get_by_id(self, db: AsyncSession, invoice_id: uuid.UUID) -> Invoice:
        """
        Recupera una fattura con cliente, pacchetto e righe.

        Raises:
            NotFoundError: Fattura non trovata
        """
        stmt = (
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .options(
                selectinload(Invoice.customer).selectinload(Customer.package),
                selectinload(Invoice.line_items),
            )
        )
        result = await db.execute(stmt)
        invoice = result.scalar_one_or_none()
        if not invoice:
            logger.warning("Fattura non trovata: %s", invoice_id)
            raise NotFoundError(f"Fattura {invoice_id} non trovata")
        return invoice

    async def update(
        self,
        db: AsyncSession,
        invoice_id: uuid.UUID,
        data: InvoiceUpdate,
        today: Optional[date] = None,
    ) -> Invoice:
        """
        Aggiorna note e/o sconto di una fattura.

        Lo sconto ricalcola totale, residuo, stato e saldo del cliente.
        """
        if data.discount is not None:
            await self.reconciler.apply_discount(db, invoice_id, data.discount, today=today)

        invoice = await self.get_by_id(db, invoice_id)
        if data.notes is not None:
            invoice.notes = data.notes
            await db.commit()
            await db.refresh(invoice)
            logger.info(f"Note aggiornate per la fattura {invoice.invoice_number}")
        return invoice

    async def send_reminder(
        self,
        db: AsyncSession,
        invoice_id: uuid.UUID,
        today: Optional[date] = None,
    ) -> ReminderResult:
        """
        Invia al cliente un promemoria per il residuo di una fattura.

        Raises:
            NotFoundError: Fattura non trovata
            InvalidStateError: La fattura è già saldata
        """
        today = today or date.today()
        invoice = await self.get_by_id(db, invoice_id)
        if invoice.status == InvoiceStatus.PAID.value:
            raise InvalidStateError(
                f"La fattura {invoice.invoice_number} è già saldata",
                error_code="INVOICE_ALREADY_SETTLED",
            )

        days_overdue = max((today - invoice.due_date).days, 0)
        sent = True
        try:
            await self._deliver_reminder(invoice, days_overdue)
        except Exception:
            sent = False
            logger.warning(
                f"Promemoria non inviato per la fattura {invoice.invoice_number}",
                exc_info=True,
            )

        return ReminderResult(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            due_amount=invoice.due_amount,
            days_overdue=days_overdue,
            sent=sent,
        )

    async def send_overdue_reminders(
        self,
        db: AsyncSession,
        today: Optional[date] = None,
        limit: int = 100,
    ) -> BulkReminderResult:
        """
        Invia un promemoria per ogni fattura non saldata oltre la scadenza.

        Un invio fallito non interrompe il ciclo: viene contato in failed
        e riportato in errors. Al massimo limit fatture per chiamata,
        le più vecchie prima.
        """
        today = today or date.today()
        result = await db.execute(
            select(Invoice)
            .where(
                Invoice.status != InvoiceStatus.PAID.value,
                Invoice.due_date < today,
            )
            .options(selectinload(Invoice.customer))
            .order_by(Invoice.due_date.asc(), Invoice.invoice_number.asc())
            .limit(limit)
        )
        invoices = list(result.scalars().all())

        outcome = BulkReminderResult()
        for invoice in invoices:
            try:
                await self._deliver_reminder(invoice, (today - invoice.due_date).days)
            except Exception as e:
                logger.warning(
                    f"Promemoria non inviato per la fattura {invoice.invoice_number}",
                    exc_info=True,
                )
                outcome.failed += 1
                outcome.errors.append(
                    ReminderError(
                        invoice_id=invoice.id,
                        invoice_number=invoice.invoice_number,
                        message=str(e) or e.__class__.__name__,
                    )
                )
            else:
                outcome.sent += 1

        logger.info(f"Promemoria scadute: {outcome.sent} inviati, {outcome.failed} falliti")
        return outcome

    async def _deliver_reminder(self, invoice: Invoice, days_overdue: int) -> None:
        await self.notifier.notify(
            invoice.customer,
            "payment_reminder",
            {
                "invoice_number": invoice.invoice_number,
                "month": invoice.month,
                "due_date": invoice.due_date.strftime("%d/%m/%Y"),
                "due_amount": invoice.due_amount,
                "days_overdue": days_overdue,
            },
        )

    async def get_invoice_pdf(self, db: AsyncSession, invoice_id: uuid.UUID) -> tuple[bytes, str]:
        """
        Genera il PDF della fattura.

        Returns:
            Tuple di (contenuto PDF, nome file)
        """
        invoice = await self.get_by_id(db, invoice_id)
        pdf_bytes = await asyncio.to_thread(self.exporter.generate_invoice_pdf, invoice)
        return pdf_bytes, f"{invoice.invoice_number}.pdf"

    # ------------------------------------------------------------
    # Pagamenti
    # ------------------------------------------------------------
    async def get_payments(
        self,
        db: AsyncSession,
        customer_id: Optional[uuid.UUID] = None,
        invoice_id: Optional[uuid.UUID] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> tuple[list[Payment], int]:
        """
        Recupera i movimenti di incasso (pagamenti e rimborsi), più recenti prima.

        Returns:
            Tuple di (lista pagamenti, totale count)
        """
        conditions = []
        if customer_id:
            conditions.append(Payment.customer_id == customer_id)
        if invoice_id:
            conditions.append(Payment.invoice_id == invoice_id)

        stmt = select(Payment)
        count_stmt = select(func.count(Payment.id))
        if conditions:
            stmt = stmt.where(and_(*conditions))
            count_stmt = count_stmt.where(and_(*conditions))

        count_result = await db.execute(count_stmt)
        total = count_result.scalar() or 0

        stmt = stmt.order_by(Payment.paid_at.desc()).offset((page - 1) * per_page).limit(per_page)
        result = await db.execute(stmt)
        payments = list(result.scalars().all())
        return payments, total

    async def get_payment(self, db: AsyncSession, payment_id: uuid.UUID) -> Payment:
        """
        Raises:
            NotFoundError: Pagamento non trovato
        """
        result = await db.execute(
            select(Payment)
            .where(Payment.id == payment_id)
            .options(selectinload(Payment.customer), selectinload(Payment.invoice))
        )
        payment = result.scalar_one_or_none()
        if not payment:
            logger.warning("Pagamento non trovato: %s", payment_id)
            raise NotFoundError(f"Pagamento {payment_id} non trovato")
        return payment

    async def get_receipt_pdf(self, db: AsyncSession, payment_id: uuid.UUID) -> tuple[bytes, str]:
        """Genera la ricevuta PDF di un pagamento o rimborso."""
        payment = await self.get_payment(db, payment_id)
        pdf_bytes = await asyncio.to_thread(self.exporter.generate_receipt_pdf, payment)
        return pdf_bytes, f"ricevuta_{payment.transaction_id}.pdf"
