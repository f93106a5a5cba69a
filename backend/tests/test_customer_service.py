"""
Unit tests per CustomerService: attivazione e cambio di stato.
"""

import uuid
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import BusinessValidationError, ConflictError, NotFoundError
from app.models import Customer, Package
from app.schemas.customer import CustomerCreate, CustomerStatus, CustomerStatusUpdate
from app.services.customer_service import CustomerService, generate_customer_code

from conftest import MockCustomer


@pytest.fixture
def mock_generator():
    generator = MagicMock()
    generator.create_setup_fee_invoice = MagicMock(return_value=MagicMock(name="setup_invoice"))
    generator.finalize_issued_invoice = AsyncMock()
    return generator


@pytest.fixture
def service(mock_generator, mock_notifier):
    return CustomerService(mock_generator, mock_notifier)


@pytest.fixture
def orm_package():
    return Package(
        id=uuid.uuid4(),
        code="HOME100",
        name="Home 100",
        monthly_price=Decimal("50.00"),
        data_limit="100",
        tax_rate=Decimal("5.00"),
        setup_fee=Decimal("25.00"),
        is_active=True,
    )


def result_with(value):
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


class TestCreateCustomer:

    def test_customer_code_format(self):
        code = generate_customer_code(date(2024, 6, 3))

        assert code.startswith("CUST2406")
        assert len(code) == 14

    @pytest.mark.asyncio
    async def test_create_with_package_setup_fee(
        self, service, mock_db, orm_package, mock_generator, mock_notifier
    ):
        """Test attivazione: PENDING, saldo zero, fattura SETUP con il costo del pacchetto."""
        data = CustomerCreate(name="Mario Rossi", phone="+39 333 1234567", package_id=orm_package.id)

        with patch.object(service, "_get_package", AsyncMock(return_value=orm_package)):
            customer = await service.create(mock_db, data, created_by="admin-1", today=date(2024, 6, 3))

        assert isinstance(customer, Customer)
        assert customer.status == "PENDING"
        assert customer.phone == "+393331234567"
        assert customer.customer_code.startswith("CUST2406")
        mock_generator.create_setup_fee_invoice.assert_called_once_with(
            mock_db, customer, Decimal("25.00"), date(2024, 6, 3)
        )
        mock_db.commit.assert_awaited_once()
        mock_generator.finalize_issued_invoice.assert_awaited_once()
        assert mock_notifier.notify.call_args.args[1] == "customer_welcome"

    @pytest.mark.asyncio
    async def test_create_without_setup_fee(
        self, service, mock_db, orm_package, mock_generator
    ):
        data = CustomerCreate(name="Mario Rossi", package_id=orm_package.id, setup_fee=Decimal("0"))

        with patch.object(service, "_get_package", AsyncMock(return_value=orm_package)):
            customer = await service.create(mock_db, data)

        assert customer.balance == Decimal("0.00")
        mock_generator.create_setup_fee_invoice.assert_not_called()
        mock_generator.finalize_issued_invoice.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_package(self, service, mock_db):
        data = CustomerCreate(name="Mario Rossi", package_id=uuid.uuid4())

        with patch.object(service, "_get_package", AsyncMock(return_value=None)):
            with pytest.raises(NotFoundError):
                await service.create(mock_db, data)

        mock_db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_inactive_package(self, service, mock_db, orm_package):
        orm_package.is_active = False
        data = CustomerCreate(name="Mario Rossi", package_id=orm_package.id)

        with patch.object(service, "_get_package", AsyncMock(return_value=orm_package)):
            with pytest.raises(BusinessValidationError):
                await service.create(mock_db, data)

    @pytest.mark.asyncio
    async def test_integrity_error(self, service, mock_db, orm_package):
        mock_db.commit.side_effect = IntegrityError("INSERT", {}, Exception("duplicate"))
        data = CustomerCreate(name="Mario Rossi", package_id=orm_package.id)

        with patch.object(service, "_get_package", AsyncMock(return_value=orm_package)):
            with pytest.raises(ConflictError):
                await service.create(mock_db, data)

        mock_db.rollback.assert_awaited_once()


class TestChangeStatus:

    @pytest.mark.asyncio
    async def test_activate_sets_connection_date(self, service, mock_db, mock_notifier):
        customer = MockCustomer(status="PENDING")
        mock_db.execute.return_value = result_with(customer)

        await service.change_status(
            mock_db,
            customer.id,
            CustomerStatusUpdate(status=CustomerStatus.ACTIVE),
            today=date(2024, 6, 5),
        )

        assert customer.status == "ACTIVE"
        assert customer.connection_date == date(2024, 6, 5)
        assert customer.disconnect_date is None
        assert mock_notifier.notify.call_args.args[1] == "customer_status_changed"

    @pytest.mark.asyncio
    async def test_disconnect_sets_date(self, service, mock_db):
        customer = MockCustomer(status="ACTIVE", connection_date=date(2024, 1, 1))
        mock_db.execute.return_value = result_with(customer)

        await service.change_status(
            mock_db,
            customer.id,
            CustomerStatusUpdate(status=CustomerStatus.DISCONNECTED, reason="Morosità"),
            today=date(2024, 6, 5),
        )

        assert customer.status == "DISCONNECTED"
        assert customer.disconnect_date == date(2024, 6, 5)
        assert customer.connection_date == date(2024, 1, 1)

    @pytest.mark.asyncio
    async def test_back_to_pending_rejected(self, service, mock_db):
        customer = MockCustomer(status="ACTIVE")
        mock_db.execute.return_value = result_with(customer)

        with pytest.raises(BusinessValidationError):
            await service.change_status(
                mock_db, customer.id, CustomerStatusUpdate(status=CustomerStatus.PENDING)
            )

        assert customer.status == "ACTIVE"
        mock_db.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_customer(self, service, mock_db):
        mock_db.execute.return_value = result_with(None)

        with pytest.raises(NotFoundError):
            await service.change_status(
                mock_db, uuid.uuid4(), CustomerStatusUpdate(status=CustomerStatus.SUSPENDED)
            )
