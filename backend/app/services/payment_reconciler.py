"""
Riconciliazione degli incassi
Progetto: ISP Billing (Gestionale ISP)

Applica pagamenti, rimborsi e sconti alle fatture mantenendo coerente il
saldo del cliente. Ogni operazione blocca le righe coinvolte (fattura e
cliente, in quest'ordine) e conferma pagamento, fattura e saldo in
un'unica transazione; le notifiche partono solo dopo il commit.
"""

import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    AlreadySettledError,
    BusinessValidationError,
    ConflictError,
    GatewayError,
    InvalidStateError,
    NotFoundError,
)
from app.models import Customer, Invoice, Payment
from app.schemas.invoice import InvoiceStatus
from app.schemas.payment import (
    GATEWAY_METHODS,
    GatewayConfirmation,
    GatewayPaymentInput,
    OnlinePaymentInput,
    PaymentStatus,
    RecordPaymentInput,
)
from app.services.invoice_status import apply_status

# Logger per questo modulo
logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def new_transaction_id() -> str:
    return f"TXN{uuid.uuid4().hex[:16].upper()}"


def gateway_transaction_id(reference: str) -> str:
    return f"STRIPE_{reference}"


def refund_transaction_id(original_transaction_id: str) -> str:
    return f"REFUND_{original_transaction_id}"


def charge_idempotency_key(data: OnlinePaymentInput) -> str:
    """Chiave stabile per fattura, token e importo: un retry non addebita due volte."""
    digest = hashlib.sha256(
        f"{data.invoice_id}:{data.payment_token}:{data.amount}".encode()
    ).hexdigest()
    return f"charge-{digest[:40]}"


def refund_idempotency_key(original_transaction_id: str) -> str:
    return f"refund-{original_transaction_id}"


@dataclass(frozen=True)
class PaymentResult:
    """Pagamento creato, fattura aggiornata (se presente) e cliente."""

    payment: Payment
    invoice: Optional[Invoice]
    customer: Customer

    @property
    def customer_balance(self) -> Decimal:
        return self.customer.balance


@dataclass(frozen=True)
class RefundResult:
    """Rimborso creato, pagamento originale, fattura ripristinata e cliente."""

    refund: Payment
    original: Payment
    invoice: Optional[Invoice]
    customer: Customer

    @property
    def customer_balance(self) -> Decimal:
        return self.customer.balance


class PaymentReconciler:
    """
    Service per la riconciliazione di pagamenti e rimborsi.

    Unico punto, insieme al generatore di fatture, che modifica
    Customer.balance e gli importi incassati delle fatture.
    """

    def __init__(self, gateway, notifier) -> None:
        self.gateway = gateway
        self.notifier = notifier

    # ------------------------------------------------------------
    # Query con lock
    # ------------------------------------------------------------
    # populate_existing: gli oggetti già caricati (anche tramite selectin)
    # vengono riletti dopo aver ottenuto il lock.
    async def _get_invoice_for_update(
        self, db: AsyncSession, invoice_id: uuid.UUID
    ) -> Optional[Invoice]:
        result = await db.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .with_for_update(of=Invoice)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _get_customer_for_update(
        self, db: AsyncSession, customer_id: uuid.UUID
    ) -> Optional[Customer]:
        result = await db.execute(
            select(Customer)
            .where(Customer.id == customer_id)
            .with_for_update(of=Customer)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _get_payment_for_update(
        self, db: AsyncSession, payment_id: uuid.UUID
    ) -> Optional[Payment]:
        result = await db.execute(
            select(Payment)
            .where(Payment.id == payment_id)
            .with_for_update(of=Payment)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _find_refund_of(
        self, db: AsyncSession, payment_id: uuid.UUID
    ) -> Optional[Payment]:
        result = await db.execute(
            select(Payment).where(Payment.refund_of_id == payment_id)
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------
    # Validazioni comuni
    # ------------------------------------------------------------
    async def _load_targets(
        self,
        db: AsyncSession,
        invoice_id: Optional[uuid.UUID],
        customer_id: uuid.UUID,
    ) -> tuple[Optional[Invoice], Customer]:
        """
        Blocca fattura e cliente verificando che il pagamento sia applicabile.

        Raises:
            NotFoundError: fattura o cliente inesistenti
            BusinessValidationError: fattura di un altro cliente
            AlreadySettledError: fattura già saldata
        """
        invoice = None
        if invoice_id is not None:
            invoice = await self._get_invoice_for_update(db, invoice_id)
            if invoice is None:
                raise NotFoundError(f"Fattura con ID {invoice_id} non trovata")
            if invoice.customer_id != customer_id:
                raise BusinessValidationError(
                    f"La fattura {invoice.invoice_number} non appartiene al cliente indicato",
                    error_code="INVOICE_CUSTOMER_MISMATCH",
                )
            if invoice.status == InvoiceStatus.PAID.value:
                raise AlreadySettledError(
                    f"La fattura {invoice.invoice_number} è già stata saldata",
                    extra={"invoice_id": str(invoice.id)},
                )

        customer = await self._get_customer_for_update(db, customer_id)
        if customer is None:
            raise NotFoundError(f"Cliente con ID {customer_id} non trovato")

        return invoice, customer

    def _apply_to_ledger(
        self,
        db: AsyncSession,
        invoice: Optional[Invoice],
        customer: Customer,
        *,
        amount: Decimal,
        method: str,
        transaction_id: str,
        reference: Optional[str],
        paid_at: datetime,
        notes: Optional[str],
        received_by: Optional[str],
        today: date,
    ) -> Payment:
        """Crea il pagamento e aggiorna fattura e saldo (senza commit)."""
        payment = Payment(
            transaction_id=transaction_id,
            invoice_id=invoice.id if invoice is not None else None,
            customer_id=customer.id,
            amount=amount,
            method=method,
            reference=reference,
            paid_at=paid_at,
            status=PaymentStatus.COMPLETED.value,
            notes=notes,
            received_by=received_by,
        )

        if invoice is not None:
            if amount > invoice.due_amount:
                logger.warning(
                    f"Pagamento {transaction_id} di {amount} eccede il residuo "
                    f"{invoice.due_amount} della fattura {invoice.invoice_number}"
                )
            invoice.paid_amount = invoice.paid_amount + amount
            apply_status(invoice, today)

        customer.balance = customer.balance - amount

        db.add(payment)
        return payment

    async def _commit(self, db: AsyncSession, transaction_id: str) -> None:
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.error(f"Errore di integrità durante la registrazione di {transaction_id}: {e}")
            raise ConflictError(
                f"Transazione {transaction_id} già registrata",
                error_code="DUPLICATE_TRANSACTION",
            )
        except SQLAlchemyError:
            await db.rollback()
            logger.error(f"Errore database durante la registrazione di {transaction_id}")
            raise

    # ------------------------------------------------------------
    # Pagamento manuale
    # ------------------------------------------------------------
    async def record_payment(
        self,
        db: AsyncSession,
        data: RecordPaymentInput,
        received_by: Optional[str] = None,
        today: Optional[date] = None,
    ) -> PaymentResult:
        """
        Registra un pagamento e lo applica alla fattura.

        Senza invoice_id il pagamento resta non applicato e riduce
        soltanto il saldo del cliente. Un importo superiore al residuo
        è accettato: la fattura diventa PAID con residuo negativo.

        Raises:
            NotFoundError: fattura o cliente inesistenti
            BusinessValidationError: fattura di un altro cliente
            AlreadySettledError: fattura già saldata
            ConflictError: transaction_id duplicato
        """
        today = today or date.today()
        invoice, customer = await self._load_targets(db, data.invoice_id, data.customer_id)

        transaction_id = new_transaction_id()
        payment = self._apply_to_ledger(
            db,
            invoice,
            customer,
            amount=data.amount,
            method=data.method.value,
            transaction_id=transaction_id,
            reference=data.reference,
            paid_at=data.paid_at or datetime.now(timezone.utc),
            notes=data.notes,
            received_by=received_by,
            today=today,
        )
        await self._commit(db, transaction_id)
        await db.refresh(payment)

        logger.info(
            f"Pagamento {transaction_id} di {data.amount} ({data.method.value}) registrato "
            f"per {customer.customer_code} da {received_by or 'sistema'}"
        )
        await self._after_payment(payment, invoice, customer)
        return PaymentResult(payment=payment, invoice=invoice, customer=customer)

    # ------------------------------------------------------------
    # Pagamento online (gateway)
    # ------------------------------------------------------------
    async def process_online_payment(
        self,
        db: AsyncSession,
        data: OnlinePaymentInput,
        today: Optional[date] = None,
    ) -> PaymentResult:
        """
        Addebita il cliente tramite gateway e registra l'incasso.

        La fattura viene validata prima dell'addebito; i lock non vengono
        tenuti durante la chiamata al gateway.

        Raises:
            NotFoundError, BusinessValidationError, AlreadySettledError: come record_payment
            GatewayError: addebito rifiutato (nessuna modifica locale)
        """
        invoice, _ = await self._load_targets(db, data.invoice_id, data.customer_id)
        invoice_number = invoice.invoice_number
        # Rilascia i lock prima della chiamata esterna
        await db.rollback()

        confirmation = await self.gateway.charge(
            data.amount,
            data.method.value,
            {
                "payment_token": data.payment_token,
                "invoice_id": str(data.invoice_id),
                "customer_id": str(data.customer_id),
                "invoice_number": invoice_number,
                "idempotency_key": charge_idempotency_key(data),
            },
        )
        if not confirmation.success or not confirmation.reference:
            raise GatewayError(
                f"Addebito non riuscito: {confirmation.message or 'esito negativo'}",
                extra={"invoice_id": str(data.invoice_id)},
            )

        try:
            return await self.record_gateway_payment(
                db,
                GatewayPaymentInput(
                    invoice_id=data.invoice_id,
                    customer_id=data.customer_id,
                    amount=data.amount,
                    method=data.method,
                    notes=data.notes,
                ),
                confirmation,
                today=today,
            )
        except Exception:
            logger.error(
                f"Addebito gateway {confirmation.reference} di {data.amount} confermato ma "
                f"non registrato (fattura {invoice_number}): verifica manuale necessaria",
                exc_info=True,
            )
            raise

    async def record_gateway_payment(
        self,
        db: AsyncSession,
        data: GatewayPaymentInput,
        confirmation: GatewayConfirmation,
        today: Optional[date] = None,
    ) -> PaymentResult:
        """
        Registra un incasso già confermato dal gateway.

        Se nel frattempo la fattura è stata saldata, il denaro è comunque
        incassato: viene registrato come pagamento non applicato (credito).

        Raises:
            NotFoundError: fattura o cliente inesistenti
            BusinessValidationError: conferma negativa o fattura di un altro cliente
            ConflictError: conferma già registrata
        """
        if not confirmation.success or not confirmation.reference:
            raise BusinessValidationError("Conferma del gateway non valida o negativa")

        today = today or date.today()
        try:
            invoice, customer = await self._load_targets(db, data.invoice_id, data.customer_id)
        except AlreadySettledError:
            await db.rollback()
            logger.warning(
                f"Incasso gateway {confirmation.reference} su fattura già saldata: "
                f"registrato come credito"
            )
            invoice = None
            customer = await self._get_customer_for_update(db, data.customer_id)
            if customer is None:
                raise NotFoundError(f"Cliente con ID {data.customer_id} non trovato")

        transaction_id = gateway_transaction_id(confirmation.reference)
        payment = self._apply_to_ledger(
            db,
            invoice,
            customer,
            amount=data.amount,
            method=data.method.value,
            transaction_id=transaction_id,
            reference=confirmation.reference,
            paid_at=datetime.now(timezone.utc),
            notes=data.notes,
            received_by=None,
            today=today,
        )
        await self._commit(db, transaction_id)
        await db.refresh(payment)

        logger.info(
            f"Incasso gateway {transaction_id} di {data.amount} registrato per {customer.customer_code}"
        )
        await self._after_payment(payment, invoice, customer)
        return PaymentResult(payment=payment, invoice=invoice, customer=customer)

    # ------------------------------------------------------------
    # Rimborso
    # ------------------------------------------------------------
    async def refund_payment(
        self,
        db: AsyncSession,
        payment_id: uuid.UUID,
        reason: str,
        received_by: Optional[str] = None,
        today: Optional[date] = None,
    ) -> RefundResult:
        """
        Storna un pagamento come se non fosse mai avvenuto.

        Crea un movimento di importo opposto (REFUND_<transazione>), riduce
        l'incassato della fattura ricalcolandone lo stato e riporta il saldo.
        Per i pagamenti via gateway il rimborso viene prima eseguito sul
        gateway: se fallisce, nessuna modifica locale.

        Raises:
            NotFoundError: pagamento inesistente
            InvalidStateError: movimento già rimborsato o esso stesso un rimborso
            GatewayError: rimborso rifiutato dal gateway
        """
        today = today or date.today()

        original = await self._get_payment_for_update(db, payment_id)
        if original is None:
            raise NotFoundError(f"Pagamento con ID {payment_id} non trovato")
        if original.refund_of_id is not None or original.amount < 0:
            raise InvalidStateError(
                f"Il movimento {original.transaction_id} è un rimborso e non può essere stornato",
                error_code="PAYMENT_IS_REFUND",
            )
        if await self._find_refund_of(db, original.id) is not None:
            raise InvalidStateError(
                f"Il pagamento {original.transaction_id} è già stato rimborsato",
                error_code="PAYMENT_ALREADY_REFUNDED",
            )

        gateway_reference = None
        if original.method in {m.value for m in GATEWAY_METHODS}:
            if not original.reference:
                raise GatewayError(
                    f"Riferimento gateway mancante per {original.transaction_id}"
                )
            confirmation = await self.gateway.refund(
                original.reference,
                original.amount,
                idempotency_key=refund_idempotency_key(original.transaction_id),
            )
            if not confirmation.success:
                raise GatewayError(
                    f"Rimborso rifiutato dal gateway: {confirmation.message or 'esito negativo'}",
                    extra={"payment_id": str(original.id)},
                )
            gateway_reference = confirmation.reference or original.reference
            reference = gateway_reference
        else:
            reference = original.reference

        try:
            refund, invoice, customer = await self._write_refund(
                db, original, reason, reference, received_by, today
            )
        except Exception:
            if gateway_reference is not None:
                logger.error(
                    f"Rimborso gateway {gateway_reference} di {original.amount} eseguito ma "
                    f"non registrato (pagamento {original.transaction_id}): "
                    f"verifica manuale necessaria",
                    exc_info=True,
                )
            raise

        logger.info(
            f"Rimborso {refund.transaction_id} di {original.amount} registrato per "
            f"{customer.customer_code} da {received_by or 'sistema'}: {reason}"
        )
        await self._after_refund(refund, original, customer, reason)
        return RefundResult(refund=refund, original=original, invoice=invoice, customer=customer)

    async def _write_refund(
        self,
        db: AsyncSession,
        original: Payment,
        reason: str,
        reference: Optional[str],
        received_by: Optional[str],
        today: date,
    ) -> tuple[Payment, Optional[Invoice], Customer]:
        """Movimento compensativo, fattura e saldo in un'unica transazione."""
        invoice = None
        if original.invoice_id is not None:
            invoice = await self._get_invoice_for_update(db, original.invoice_id)
        customer = await self._get_customer_for_update(db, original.customer_id)

        transaction_id = refund_transaction_id(original.transaction_id)
        refund = Payment(
            transaction_id=transaction_id,
            invoice_id=original.invoice_id,
            customer_id=original.customer_id,
            amount=-original.amount,
            method=original.method,
            reference=reference,
            paid_at=datetime.now(timezone.utc),
            status=PaymentStatus.COMPLETED.value,
            notes=f"Rimborso: {reason}",
            received_by=received_by,
            refund_of_id=original.id,
        )

        if invoice is not None:
            invoice.paid_amount = invoice.paid_amount - original.amount
            apply_status(invoice, today)
        customer.balance = customer.balance + original.amount

        db.add(refund)
        await self._commit(db, transaction_id)
        await db.refresh(refund)
        return refund, invoice, customer

    # ------------------------------------------------------------
    # Sconto
    # ------------------------------------------------------------
    async def apply_discount(
        self,
        db: AsyncSession,
        invoice_id: uuid.UUID,
        discount: Decimal,
        today: Optional[date] = None,
    ) -> Invoice:
        """
        Imposta lo sconto di una fattura e ricalcola totale, residuo e stato.

        Il saldo del cliente si sposta della differenza tra vecchio e nuovo totale.

        Raises:
            NotFoundError: fattura inesistente
            BusinessValidationError: sconto negativo o superiore all'imponibile + IVA
        """
        today = today or date.today()
        discount = Decimal(discount).quantize(CENTS)
        if discount < 0:
            raise BusinessValidationError("Lo sconto non può essere negativo")

        invoice = await self._get_invoice_for_update(db, invoice_id)
        if invoice is None:
            raise NotFoundError(f"Fattura con ID {invoice_id} non trovata")

        gross = invoice.amount + invoice.usage_charge + invoice.late_fee + invoice.vat
        if discount > gross:
            raise BusinessValidationError(
                f"Lo sconto ({discount}) supera l'importo della fattura ({gross})",
                error_code="DISCOUNT_TOO_LARGE",
            )

        customer = await self._get_customer_for_update(db, invoice.customer_id)
        if customer is None:
            raise NotFoundError(f"Cliente con ID {invoice.customer_id} non trovato")

        old_total = invoice.total_amount
        invoice.discount = discount
        invoice.total_amount = gross - discount
        apply_status(invoice, today)
        customer.balance = customer.balance + (invoice.total_amount - old_total)

        await db.commit()
        await db.refresh(invoice)

        logger.info(
            f"Sconto {discount} applicato alla fattura {invoice.invoice_number}: "
            f"totale {old_total} -> {invoice.total_amount}"
        )
        return invoice

    # ------------------------------------------------------------
    # Notifiche (best-effort, dopo il commit)
    # ------------------------------------------------------------
    async def _after_payment(
        self, payment: Payment, invoice: Optional[Invoice], customer: Customer
    ) -> None:
        try:
            await self.notifier.notify(
                customer,
                "payment_received",
                {
                    "amount": payment.amount,
                    "transaction_id": payment.transaction_id,
                    "invoice_number": invoice.invoice_number if invoice else None,
                    "due_amount": invoice.due_amount if invoice else None,
                },
            )
            await self.notifier.notify_admin(
                "new_payment",
                {
                    "payment_id": str(payment.id),
                    "customer_name": customer.name,
                    "amount": str(payment.amount),
                    "method": payment.method,
                    "invoice_number": invoice.invoice_number if invoice else None,
                },
            )
        except Exception:
            logger.warning(
                f"Notifiche non inviate per il pagamento {payment.transaction_id}",
                exc_info=True,
            )

    async def _after_refund(
        self, refund: Payment, original: Payment, customer: Customer, reason: str
    ) -> None:
        try:
            await self.notifier.notify(
                customer,
                "payment_refunded",
                {
                    "amount": original.amount,
                    "transaction_id": refund.transaction_id,
                    "reason": reason,
                },
            )
            await self.notifier.notify_admin(
                "payment_refunded",
                {
                    "payment_id": str(original.id),
                    "refund_id": str(refund.id),
                    "customer_name": customer.name,
                    "amount": str(original.amount),
                    "reason": reason,
                },
            )
        except Exception:
            logger.warning(
                f"Notifiche non inviate per il rimborso {refund.transaction_id}",
                exc_info=True,
            )


__all__ = [
    "PaymentReconciler",
    "PaymentResult",
    "RefundResult",
]
