"""
Generazione delle fatture
Progetto: ISP Billing (Gestionale ISP)

Ciclo mensile di fatturazione: per ogni cliente attivo calcola gli addebiti
del mese, emette la fattura con le sue righe e aggiorna il saldo nella stessa
transazione. Gestisce anche la fattura di attivazione e l'aggiornamento
degli stati delle fatture aperte (PENDING -> OVERDUE al passare del tempo).
"""

import asyncio
import logging
import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import Settings
from app.models import Customer, Invoice, InvoiceLineItem, Package
from app.schemas.customer import CustomerStatus
from app.schemas.invoice import (
    GenerationError,
    GenerationResult,
    InvoiceKind,
    InvoiceStatus,
    LineItemType,
    StatusRefreshResult,
    parse_billing_period,
)
from app.services.billing_calculator import BillingCalculator, ChargeBreakdown
from app.services.invoice_status import apply_status

# Logger per questo modulo
logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def next_month(month_start: date) -> date:
    """Primo giorno del mese successivo."""
    if month_start.month == 12:
        return date(month_start.year + 1, 1, 1)
    return date(month_start.year, month_start.month + 1, 1)


def monthly_invoice_number(month_start: date, customer_code: str) -> str:
    return f"INV-{month_start:%Y%m}-{customer_code}"


def setup_invoice_number(customer_code: str) -> str:
    return f"SET-{customer_code}"


class InvoiceGenerator:
    """
    Service per l'emissione delle fatture.

    Collaboratori iniettati nel costruttore:
    - calculator: BillingCalculator
    - usage_provider: fornisce il traffico del periodo
    - notifier: notifiche a clienti e operatori
    - exporter: esporta il documento della fattura (PDF)
    """

    def __init__(
        self,
        calculator: BillingCalculator,
        usage_provider,
        notifier,
        exporter,
        settings: Settings,
    ) -> None:
        self.calculator = calculator
        self.usage_provider = usage_provider
        self.notifier = notifier
        self.exporter = exporter
        self.settings = settings

    # ------------------------------------------------------------
    # Query
    # ------------------------------------------------------------
    async def _find_eligible_customers(self, db: AsyncSession) -> list[tuple[uuid.UUID, str]]:
        """Clienti ACTIVE con pacchetto attivo, come coppie (id, codice)."""
        result = await db.execute(
            select(Customer.id, Customer.customer_code)
            .join(Package, Customer.package_id == Package.id)
            .where(
                Customer.status == CustomerStatus.ACTIVE.value,
                Package.is_active.is_(True),
            )
            .order_by(Customer.customer_code)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def _invoice_exists(
        self, db: AsyncSession, customer_id: uuid.UUID, period: str
    ) -> bool:
        result = await db.execute(
            select(Invoice.id).where(
                Invoice.customer_id == customer_id,
                Invoice.month == period,
            )
        )
        return result.scalar_one_or_none() is not None

    async def _get_customer_for_update(
        self, db: AsyncSession, customer_id: uuid.UUID
    ) -> Optional[Customer]:
        result = await db.execute(
            select(Customer)
            .options(selectinload(Customer.package))
            .where(Customer.id == customer_id)
            .with_for_update(of=Customer)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _find_overdue_invoices(
        self, db: AsyncSession, customer_id: uuid.UUID
    ) -> Sequence[Invoice]:
        result = await db.execute(
            select(Invoice).where(
                Invoice.customer_id == customer_id,
                Invoice.status == InvoiceStatus.OVERDUE.value,
            )
        )
        return result.scalars().all()

    async def _find_open_invoices_for_update(self, db: AsyncSession) -> Sequence[Invoice]:
        result = await db.execute(
            select(Invoice)
            .where(Invoice.status != InvoiceStatus.PAID.value)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    # ------------------------------------------------------------
    # Righe fattura
    # ------------------------------------------------------------
    def build_line_items(
        self, breakdown: ChargeBreakdown, package, period: str
    ) -> list[InvoiceLineItem]:
        """
        Righe della fattura mensile: il canone sempre, le altre solo se non nulle.
        """
        lines = [
            InvoiceLineItem(
                line_type=LineItemType.BASE.value,
                description=f"Canone {package.name} - {period}",
                quantity=Decimal("1"),
                unit_price=breakdown.base,
                total=breakdown.base,
            )
        ]
        if breakdown.usage_charge > 0:
            lines.append(
                InvoiceLineItem(
                    line_type=LineItemType.OVERAGE.value,
                    description=(
                        f"Traffico oltre soglia: {breakdown.overage_gb} GB "
                        f"(soglia {package.data_limit} GB, consumo {breakdown.usage_gb} GB)"
                    ),
                    quantity=breakdown.overage_gb,
                    unit_price=self.calculator.policy.overage_rate_per_gb,
                    total=breakdown.usage_charge,
                )
            )
        if breakdown.late_fee > 0:
            lines.append(
                InvoiceLineItem(
                    line_type=LineItemType.LATE_FEE.value,
                    description="Mora su fatture scadute",
                    quantity=Decimal("1"),
                    unit_price=breakdown.late_fee,
                    total=breakdown.late_fee,
                )
            )
        if breakdown.vat > 0:
            lines.append(
                InvoiceLineItem(
                    line_type=LineItemType.TAX.value,
                    description=f"IVA {package.tax_rate}%",
                    quantity=Decimal("1"),
                    unit_price=breakdown.vat,
                    total=breakdown.vat,
                )
            )
        for number, line in enumerate(lines, start=1):
            line.line_number = number
        return lines

    # ------------------------------------------------------------
    # Generazione mensile
    # ------------------------------------------------------------
    async def generate_monthly_invoices(
        self,
        db: AsyncSession,
        period: str,
        today: Optional[date] = None,
    ) -> GenerationResult:
        """
        Emette le fatture del mese per tutti i clienti attivi.

        Idempotente: i clienti già fatturati per il periodo sono conteggiati
        come skipped. Un errore su un cliente non interrompe il ciclo:
        viene annullata solo la sua transazione e l'errore finisce in errors.

        Args:
            db: Sessione database
            period: Mese di competenza YYYY-MM
            today: Data di emissione (default: oggi)

        Raises:
            BusinessValidationError: se il periodo non è valido (prima di qualsiasi scrittura)
        """
        month_start = parse_billing_period(period)
        today = today or date.today()

        await self.refresh_overdue_statuses(db, today)

        targets = await self._find_eligible_customers(db)
        result = GenerationResult(period=period)

        for customer_id, customer_code in targets:
            try:
                invoice = await asyncio.wait_for(
                    self._generate_for_customer(db, customer_id, period, month_start, today),
                    timeout=self.settings.generation_customer_timeout,
                )
            except IntegrityError:
                # Un altro ciclo ha emesso la stessa fattura nel frattempo
                await db.rollback()
                logger.info(f"Fattura {period} per {customer_code} già emessa da un altro ciclo")
                result.skipped += 1
                continue
            except Exception as e:
                await db.rollback()
                message = str(e) or e.__class__.__name__
                logger.error(
                    f"Generazione fattura {period} fallita per il cliente {customer_code}: {message}"
                )
                result.errors.append(
                    GenerationError(
                        customer_id=customer_id,
                        customer_code=customer_code,
                        message=message,
                    )
                )
                result.skipped += 1
                continue

            if invoice is None:
                result.skipped += 1
                continue

            result.generated += 1
            result.invoice_ids.append(invoice.id)
            await self.finalize_issued_invoice(db, invoice)

        logger.info(
            f"Generazione {period} completata: {result.generated} emesse, "
            f"{result.skipped} saltate, {len(result.errors)} errori"
        )
        await self._notify_admin_safely(
            "invoices_generated",
            {
                "period": period,
                "generated": result.generated,
                "skipped": result.skipped,
                "errors": len(result.errors),
            },
        )
        return result

    async def _generate_for_customer(
        self,
        db: AsyncSession,
        customer_id: uuid.UUID,
        period: str,
        month_start: date,
        today: date,
    ) -> Optional[Invoice]:
        """
        Emette la fattura di un cliente in una transazione dedicata.

        La fattura nasce PENDING e lo stato viene subito ricalcolato: se
        l'emissione cade dopo la scadenza (es. periodo passato) è già OVERDUE,
        così lo stato memorizzato coincide con quello calcolato.

        Returns:
            La fattura emessa, oppure None se il cliente va saltato
        """
        if await self._invoice_exists(db, customer_id, period):
            return None

        customer = await self._get_customer_for_update(db, customer_id)
        if customer is None or customer.status != CustomerStatus.ACTIVE.value:
            await db.rollback()
            return None
        package = customer.package
        if package is None or not package.is_active:
            await db.rollback()
            return None

        usage = await self.usage_provider.get_usage_for_period(
            db, customer.id, month_start, next_month(month_start)
        )
        overdue = await self._find_overdue_invoices(db, customer.id)
        breakdown = self.calculator.compute_charges(package, usage, overdue, today)

        invoice = Invoice(
            id=uuid.uuid4(),
            invoice_number=monthly_invoice_number(month_start, customer.customer_code),
            customer_id=customer.id,
            kind=InvoiceKind.MONTHLY.value,
            month=period,
            issue_date=today,
            due_date=month_start.replace(day=self.settings.invoice_due_day),
            amount=breakdown.base,
            usage_charge=breakdown.usage_charge,
            late_fee=breakdown.late_fee,
            vat=breakdown.vat,
            discount=ZERO,
            total_amount=breakdown.total,
            paid_amount=ZERO,
            status=InvoiceStatus.PENDING.value,
        )
        apply_status(invoice, today)
        invoice.line_items = self.build_line_items(breakdown, package, period)
        invoice.customer = customer

        customer.balance = customer.balance + breakdown.total

        db.add(invoice)
        await db.commit()
        await db.refresh(invoice)

        logger.info(
            f"Emessa fattura {invoice.invoice_number}: totale {invoice.total_amount}, "
            f"saldo cliente {customer.balance}"
        )
        return invoice

    # ------------------------------------------------------------
    # Fattura di attivazione
    # ------------------------------------------------------------
    def create_setup_fee_invoice(
        self,
        db: AsyncSession,
        customer: Customer,
        setup_fee: Decimal,
        today: date,
    ) -> Invoice:
        """
        Crea la fattura SETUP per il costo di attivazione e aumenta il saldo.

        Non esegue commit: la fattura fa parte della transazione di
        attivazione del cliente.
        """
        fee = Decimal(setup_fee)
        invoice = Invoice(
            id=uuid.uuid4(),
            invoice_number=setup_invoice_number(customer.customer_code),
            customer_id=customer.id,
            kind=InvoiceKind.SETUP.value,
            month=None,
            issue_date=today,
            due_date=today + timedelta(days=self.settings.setup_fee_due_days),
            amount=fee,
            usage_charge=ZERO,
            late_fee=ZERO,
            vat=ZERO,
            discount=ZERO,
            total_amount=fee,
            paid_amount=ZERO,
            status=InvoiceStatus.PENDING.value,
            notes="Costo di attivazione",
        )
        apply_status(invoice, today)
        invoice.line_items = [
            InvoiceLineItem(
                line_type=LineItemType.SETUP.value,
                description="Attivazione connessione",
                quantity=Decimal("1"),
                unit_price=fee,
                total=fee,
                line_number=1,
            )
        ]
        invoice.customer = customer
        customer.balance = (customer.balance or ZERO) + fee
        db.add(invoice)
        return invoice

    # ------------------------------------------------------------
    # Operazioni successive all'emissione
    # ------------------------------------------------------------
    async def finalize_issued_invoice(self, db: AsyncSession, invoice: Invoice) -> None:
        """
        Esporta il documento e avvisa il cliente.

        Best-effort: la fattura è già confermata, gli errori vengono solo registrati.
        """
        try:
            document_url = await self.exporter.export_document(invoice)
        except Exception:
            logger.warning(
                f"Esportazione documento fallita per la fattura {invoice.invoice_number}",
                exc_info=True,
            )
        else:
            invoice.document_url = document_url
            try:
                await db.commit()
            except SQLAlchemyError:
                await db.rollback()
                logger.warning(
                    f"Riferimento documento non salvato per la fattura {invoice.invoice_number}",
                    exc_info=True,
                )

        try:
            await self.notifier.notify(
                invoice.customer,
                "invoice_issued",
                {
                    "invoice_number": invoice.invoice_number,
                    "month": invoice.month,
                    "total_amount": invoice.total_amount,
                    "due_date": invoice.due_date.isoformat(),
                },
            )
        except Exception:
            logger.warning(
                f"Notifica fallita per la fattura {invoice.invoice_number}",
                exc_info=True,
            )

    async def _notify_admin_safely(self, event_type: str, payload: dict) -> None:
        try:
            await self.notifier.notify_admin(event_type, payload)
        except Exception:
            logger.warning(f"Evento admin {event_type} non inviato", exc_info=True)

    # ------------------------------------------------------------
    # Aggiornamento stati
    # ------------------------------------------------------------
    async def refresh_overdue_statuses(
        self, db: AsyncSession, today: Optional[date] = None
    ) -> StatusRefreshResult:
        """
        Ricalcola lo stato memorizzato delle fatture non saldate.

        Rende persistenti le transizioni dovute al tempo (PENDING -> OVERDUE).
        Le fatture bloccate da un'operazione in corso vengono saltate e
        aggiornate al ciclo successivo.
        """
        today = today or date.today()
        invoices = await self._find_open_invoices_for_update(db)

        updated = 0
        for invoice in invoices:
            if apply_status(invoice, today):
                updated += 1

        await db.commit()

        if updated:
            logger.info(f"Aggiornato lo stato di {updated} fatture su {len(invoices)}")
        return StatusRefreshResult(checked=len(invoices), updated=updated, as_of=today)
