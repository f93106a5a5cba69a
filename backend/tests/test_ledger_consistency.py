"""
Tests di coerenza del saldo su sessioni reali (SQLite).

Due sessioni distinte simulano richieste concorrenti: ogni operazione deve
rileggere fattura e cliente invece di usare le copie già in memoria.
"""

import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import InvalidRequestError

from app.models import Customer, Invoice, Package, Payment
from app.schemas.payment import PaymentMethod, RecordPaymentInput
from app.services.billing_calculator import BillingCalculator
from app.services.invoice_generator import InvoiceGenerator
from app.services.payment_reconciler import PaymentReconciler

MAY = date(2024, 5, 10)
JUNE = date(2024, 6, 10)


@dataclass
class Ledger:
    customer_id: uuid.UUID
    may_id: uuid.UUID
    june_id: uuid.UUID


@pytest.fixture
def reconciler(mock_notifier):
    return PaymentReconciler(gateway=MagicMock(), notifier=mock_notifier)


@pytest.fixture
async def package(session_factory):
    """Home 100: 50 al mese, 100 GB, IVA 5%."""
    package = Package(
        id=uuid.uuid4(),
        code="HOME100",
        name="Home 100",
        monthly_price=Decimal("50.00"),
        data_limit="100",
        tax_rate=Decimal("5.00"),
        setup_fee=Decimal("0.00"),
    )
    async with session_factory() as db:
        db.add(package)
        await db.commit()
    return package


def make_customer(package, code="CUST2405A1B2C3", balance="0.00"):
    return Customer(
        id=uuid.uuid4(),
        customer_code=code,
        name="Mario Rossi",
        phone="+393331234567",
        package_id=package.id,
        status="ACTIVE",
        balance=Decimal(balance),
    )


def make_invoice(customer, month, due_date, total):
    total = Decimal(total)
    return Invoice(
        id=uuid.uuid4(),
        invoice_number=f"INV-{month.replace('-', '')}-{customer.customer_code}",
        customer_id=customer.id,
        kind="MONTHLY",
        month=month,
        issue_date=due_date.replace(day=1),
        due_date=due_date,
        amount=total,
        total_amount=total,
        paid_amount=Decimal("0.00"),
        due_amount=total,
        status="PENDING",
    )


@pytest.fixture
async def ledger(session_factory, package):
    """Cliente con due fatture aperte da 50 (maggio e giugno), saldo 100."""
    customer = make_customer(package, balance="100.00")
    may = make_invoice(customer, "2024-05", date(2024, 5, 28), "50.00")
    june = make_invoice(customer, "2024-06", date(2024, 6, 28), "50.00")
    async with session_factory() as db:
        db.add_all([customer, may, june])
        await db.commit()
    return Ledger(customer_id=customer.id, may_id=may.id, june_id=june.id)


def cash(customer_id, invoice_id, amount):
    return RecordPaymentInput(
        customer_id=customer_id,
        invoice_id=invoice_id,
        amount=Decimal(amount),
        method=PaymentMethod.CASH,
    )


async def ledger_totals(db, customer_id):
    """(saldo memorizzato, Σ totali fatture - Σ movimenti) letti dal database."""
    balance = (
        await db.execute(select(Customer.balance).where(Customer.id == customer_id))
    ).scalar_one()
    invoiced = (
        await db.execute(
            select(func.coalesce(func.sum(Invoice.total_amount), 0)).where(
                Invoice.customer_id == customer_id
            )
        )
    ).scalar_one()
    paid = (
        await db.execute(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(
                Payment.customer_id == customer_id
            )
        )
    ).scalar_one()
    return Decimal(str(balance)), Decimal(str(invoiced)) - Decimal(str(paid))


class TestConcurrentPayments:

    @pytest.mark.asyncio
    async def test_interleaved_payments_keep_balance(self, session_factory, reconciler, ledger):
        """
        Test due pagamenti dello stesso cliente su sessioni diverse.

        La seconda sessione ha già in memoria il cliente (caricato insieme
        alla fattura) quando la prima conferma il suo pagamento: il saldo
        finale deve comprendere entrambi.
        """
        async with session_factory() as first, session_factory() as second:
            preloaded = await reconciler._get_invoice_for_update(second, ledger.june_id)
            assert preloaded.customer.balance == Decimal("100.00")

            await reconciler.record_payment(first, cash(ledger.customer_id, ledger.may_id, "30.00"), today=MAY)
            result = await reconciler.record_payment(
                second, cash(ledger.customer_id, ledger.june_id, "20.00"), today=MAY
            )

            assert result.customer_balance == Decimal("50.00")
            assert result.invoice.status == "PARTIAL_PAID"

        async with session_factory() as db:
            balance, expected = await ledger_totals(db, ledger.customer_id)
        assert balance == Decimal("50.00")
        assert balance == expected

    @pytest.mark.asyncio
    async def test_payment_sees_invoice_changed_by_other_session(
        self, session_factory, reconciler, ledger
    ):
        """Test due acconti sulla stessa fattura da sessioni diverse: l'incassato si somma."""
        async with session_factory() as first, session_factory() as second:
            await reconciler._get_invoice_for_update(second, ledger.may_id)

            await reconciler.record_payment(first, cash(ledger.customer_id, ledger.may_id, "30.00"), today=MAY)
            result = await reconciler.record_payment(
                second, cash(ledger.customer_id, ledger.may_id, "20.00"), today=MAY
            )

            assert result.invoice.paid_amount == Decimal("50.00")
            assert result.invoice.status == "PAID"

        async with session_factory() as db:
            balance, expected = await ledger_totals(db, ledger.customer_id)
        assert balance == expected == Decimal("50.00")


class TestRefundOnRealSession:

    @pytest.mark.asyncio
    async def test_refund_while_other_payment_stands(self, session_factory, reconciler, ledger):
        async with session_factory() as db:
            first = await reconciler.record_payment(db, cash(ledger.customer_id, ledger.june_id, "20.00"), today=JUNE)
            await reconciler.record_payment(db, cash(ledger.customer_id, ledger.june_id, "10.00"), today=JUNE)

        async with session_factory() as db:
            result = await reconciler.refund_payment(
                db, first.payment.id, "Importo errato", received_by="op-1", today=JUNE
            )

        assert result.invoice.paid_amount == Decimal("10.00")
        assert result.invoice.due_amount == Decimal("40.00")
        assert result.invoice.status == "PARTIAL_PAID"
        assert result.refund.amount == Decimal("-20.00")

        async with session_factory() as db:
            balance, expected = await ledger_totals(db, ledger.customer_id)
        assert balance == Decimal("90.00")
        assert balance == expected


class TestBillingCycle:

    @pytest.fixture
    def generator(self, mock_usage_provider, mock_notifier, mock_exporter, test_settings):
        return InvoiceGenerator(
            calculator=BillingCalculator(),
            usage_provider=mock_usage_provider,
            notifier=mock_notifier,
            exporter=mock_exporter,
            settings=test_settings,
        )

    @pytest.mark.asyncio
    async def test_generate_pay_refund(self, session_factory, package, generator, reconciler):
        """
        Test emissione, due acconti e storno del primo.

        Dopo ogni passo il saldo coincide con Σ totali - Σ movimenti.
        """
        customer = make_customer(package, code="CUST2406D4E5F6")
        async with session_factory() as db:
            db.add(customer)
            await db.commit()

        async with session_factory() as db:
            generation = await generator.generate_monthly_invoices(db, "2024-06", today=date(2024, 6, 1))
        assert generation.generated == 1
        [invoice_id] = generation.invoice_ids

        async with session_factory() as db:
            invoice = await db.get(Invoice, invoice_id)
            assert invoice.total_amount == Decimal("52.50")
            assert invoice.due_date == date(2024, 6, 28)
            assert invoice.status == "PENDING"
            balance, expected = await ledger_totals(db, customer.id)
        assert balance == expected == Decimal("52.50")

        async with session_factory() as db:
            first = await reconciler.record_payment(db, cash(customer.id, invoice_id, "20.00"), today=JUNE)
        async with session_factory() as db:
            await reconciler.record_payment(db, cash(customer.id, invoice_id, "10.00"), today=JUNE)
        async with session_factory() as db:
            balance, expected = await ledger_totals(db, customer.id)
        assert balance == expected == Decimal("22.50")

        async with session_factory() as db:
            result = await reconciler.refund_payment(db, first.payment.id, "Doppio addebito", today=JUNE)

        assert result.invoice.paid_amount == Decimal("10.00")
        assert result.invoice.due_amount == Decimal("42.50")
        assert result.invoice.status == "PARTIAL_PAID"

        async with session_factory() as db:
            balance, expected = await ledger_totals(db, customer.id)
        assert balance == expected == Decimal("42.50")


class TestUnloadedCollections:

    @pytest.mark.asyncio
    async def test_history_collections_are_never_lazy_loaded(self, session_factory, ledger):
        """Test fatture e pagamenti di un cliente si leggono solo con query esplicite."""
        async with session_factory() as db:
            customer = await db.get(Customer, ledger.customer_id)
            invoice = await db.get(Invoice, ledger.may_id)

            with pytest.raises(InvalidRequestError):
                customer.invoices
            with pytest.raises(InvalidRequestError):
                customer.payments
            with pytest.raises(InvalidRequestError):
                invoice.payments
