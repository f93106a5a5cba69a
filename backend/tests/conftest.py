"""
Pytest configuration and fixtures per i test del motore di fatturazione.

I test unitari non usano un database reale: la sessione è un AsyncMock e
le query con lock dei servizi vengono sostituite con patch.object.
I test di coerenza del saldo usano invece session_factory, uno schema
completo su un file SQLite.
"""

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import Settings
from app.models import Base, Customer, Package


# ============================================================
# Fixtures per AsyncSession Mock
# ============================================================


@pytest.fixture
def mock_db():
    """Crea un mock di AsyncSession."""
    db = AsyncMock(spec=AsyncSession)
    db.execute = AsyncMock()
    db.add = MagicMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.flush = AsyncMock()
    db.refresh = AsyncMock()
    return db


@pytest.fixture
def test_settings(tmp_path):
    """Settings di test con le regole tariffarie di default."""
    return Settings(
        app_env="testing",
        export_dir=str(tmp_path / "invoices"),
        invoice_due_day=28,
        setup_fee_due_days=7,
        generation_customer_timeout=5.0,
    )


# ============================================================
# Database reale (SQLite)
# ============================================================


@pytest.fixture
async def session_factory(tmp_path):
    """
    Factory di sessioni su un file SQLite con lo schema completo.

    Ogni sessione usa una propria connessione, come due richieste concorrenti.
    SQLite ignora FOR UPDATE: i test verificano la rilettura delle righe,
    non il blocco.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    await engine.dispose()


# ============================================================
# Collaboratori
# ============================================================


@pytest.fixture
def mock_notifier():
    """Notifier che registra le chiamate."""
    notifier = MagicMock()
    notifier.notify = AsyncMock()
    notifier.notify_admin = AsyncMock()
    return notifier


@pytest.fixture
def mock_exporter():
    """Exporter che restituisce un percorso fittizio."""
    exporter = MagicMock()
    exporter.export_document = AsyncMock(return_value="/tmp/invoice.pdf")
    return exporter


@pytest.fixture
def mock_gateway():
    """Gateway di pagamento con esito configurabile nei singoli test."""
    gateway = MagicMock()
    gateway.charge = AsyncMock()
    gateway.refund = AsyncMock()
    return gateway


@pytest.fixture
def mock_usage_provider():
    provider = MagicMock()
    provider.get_usage_for_period = AsyncMock(return_value=[])
    return provider


# ============================================================
# Mock delle entità (senza sessione)
# ============================================================


class MockPackage:
    """Mock del modello Package: 50 al mese, 100 GB, IVA 5%."""
    def __init__(self, **kwargs):
        self.id = kwargs.get('id', uuid.uuid4())
        self.code = kwargs.get('code', 'HOME100')
        self.name = kwargs.get('name', 'Home 100')
        self.monthly_price = kwargs.get('monthly_price', Decimal("50.00"))
        self.data_limit = kwargs.get('data_limit', "100")
        self.tax_rate = kwargs.get('tax_rate', Decimal("5.00"))
        self.setup_fee = kwargs.get('setup_fee', Decimal("0.00"))
        self.is_active = kwargs.get('is_active', True)


class MockUsage:
    """Mock di BandwidthUsage."""
    def __init__(self, total_mb, **kwargs):
        self.id = kwargs.get('id', uuid.uuid4())
        self.customer_id = kwargs.get('customer_id', uuid.uuid4())
        self.date = kwargs.get('date', date(2024, 6, 1))
        self.total_mb = Decimal(str(total_mb))


class MockCustomer:
    """Mock del modello Customer."""
    def __init__(self, **kwargs):
        self.id = kwargs.get('id', uuid.uuid4())
        self.customer_code = kwargs.get('customer_code', 'CUST2406A1B2C3')
        self.name = kwargs.get('name', 'Mario Rossi')
        self.email = kwargs.get('email', 'mario.rossi@example.com')
        self.phone = kwargs.get('phone', '+393331234567')
        self.address = kwargs.get('address', 'Via Roma 1')
        self.status = kwargs.get('status', 'ACTIVE')
        self.package = kwargs.get('package', MockPackage())
        self.package_id = self.package.id
        self.balance = kwargs.get('balance', Decimal("0.00"))
        self.connection_date = kwargs.get('connection_date', None)
        self.disconnect_date = kwargs.get('disconnect_date', None)


class MockInvoice:
    """Mock di Invoice: lo stato è memorizzato, come nel modello."""
    def __init__(self, **kwargs):
        self.id = kwargs.get('id', uuid.uuid4())
        self.customer_id = kwargs.get('customer_id', uuid.uuid4())
        self.customer = kwargs.get('customer', None)
        self.invoice_number = kwargs.get('invoice_number', 'INV-202406-CUST2406A1B2C3')
        self.kind = kwargs.get('kind', 'MONTHLY')
        self.month = kwargs.get('month', '2024-06')
        self.issue_date = kwargs.get('issue_date', date(2024, 6, 1))
        self.due_date = kwargs.get('due_date', date(2024, 6, 28))
        self.amount = kwargs.get('amount', Decimal("50.00"))
        self.usage_charge = kwargs.get('usage_charge', Decimal("0.00"))
        self.late_fee = kwargs.get('late_fee', Decimal("0.00"))
        self.vat = kwargs.get('vat', Decimal("2.50"))
        self.discount = kwargs.get('discount', Decimal("0.00"))
        self.total_amount = kwargs.get('total_amount', Decimal("52.50"))
        self.paid_amount = kwargs.get('paid_amount', Decimal("0.00"))
        self.due_amount = kwargs.get('due_amount', self.total_amount - self.paid_amount)
        self.status = kwargs.get('status', 'PENDING')
        self.document_url = kwargs.get('document_url', None)
        self.notes = kwargs.get('notes', None)
        self.line_items = kwargs.get('line_items', [])


class MockPayment:
    """Mock di Payment."""
    def __init__(self, **kwargs):
        self.id = kwargs.get('id', uuid.uuid4())
        self.transaction_id = kwargs.get('transaction_id', 'TXN0123456789ABCDEF')
        self.invoice_id = kwargs.get('invoice_id', None)
        self.customer_id = kwargs.get('customer_id', uuid.uuid4())
        self.amount = kwargs.get('amount', Decimal("52.50"))
        self.method = kwargs.get('method', 'CASH')
        self.reference = kwargs.get('reference', None)
        self.paid_at = kwargs.get('paid_at', datetime(2024, 6, 10, 9, 30, tzinfo=timezone.utc))
        self.status = kwargs.get('status', 'COMPLETED')
        self.notes = kwargs.get('notes', None)
        self.received_by = kwargs.get('received_by', None)
        self.refund_of_id = kwargs.get('refund_of_id', None)


@pytest.fixture
def mock_package():
    return MockPackage()


@pytest.fixture
def mock_customer(mock_package):
    return MockCustomer(package=mock_package)


@pytest.fixture
def mock_invoice(mock_customer):
    """Fattura di giugno 2024 da 52.50, non pagata."""
    return MockInvoice(customer_id=mock_customer.id, customer=mock_customer)


@pytest.fixture
def overdue_invoice(mock_customer):
    """Fattura di maggio 2024 scaduta e non pagata."""
    return MockInvoice(
        customer_id=mock_customer.id,
        invoice_number='INV-202405-CUST2406A1B2C3',
        month='2024-05',
        issue_date=date(2024, 5, 1),
        due_date=date(2024, 5, 28),
        total_amount=Decimal("100.00"),
        status='OVERDUE',
    )


# ============================================================
# Entità ORM (necessarie dove i servizi assegnano relazioni)
# ============================================================


@pytest.fixture
def make_orm_customer():
    """Factory di Customer ORM transienti con pacchetto associato."""
    def _make(
        customer_code="CUST2406A1B2C3",
        status="ACTIVE",
        balance=Decimal("0.00"),
        monthly_price=Decimal("50.00"),
        data_limit="100",
        tax_rate=Decimal("5.00"),
        package_active=True,
    ):
        package = Package(
            id=uuid.uuid4(),
            code="HOME100",
            name="Home 100",
            speed_mbps=100,
            monthly_price=monthly_price,
            data_limit=data_limit,
            tax_rate=tax_rate,
            setup_fee=Decimal("0.00"),
            is_active=package_active,
        )
        customer = Customer(
            id=uuid.uuid4(),
            customer_code=customer_code,
            name="Mario Rossi",
            email="mario.rossi@example.com",
            phone="+393331234567",
            status=status,
            package_id=package.id,
            balance=balance,
        )
        customer.package = package
        return customer

    return _make


@pytest.fixture
def june_2024():
    """Data di emissione per il ciclo di giugno 2024."""
    return date(2024, 6, 1)


@pytest.fixture
def after_due(june_2024):
    return june_2024 + timedelta(days=40)
