"""
Unit tests per InvoiceService: aggiornamento, promemoria e documenti.
"""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.core.exceptions import InvalidStateError
from app.schemas.invoice import InvoiceUpdate
from app.services.invoice_service import InvoiceService

from conftest import MockCustomer, MockInvoice, MockPayment


def scalars_of(rows):
    result = MagicMock()
    result.scalars.return_value.all.return_value = rows
    return result


@pytest.fixture
def mock_reconciler():
    reconciler = MagicMock()
    reconciler.apply_discount = AsyncMock()
    return reconciler


@pytest.fixture
def pdf_exporter():
    exporter = MagicMock()
    exporter.generate_invoice_pdf = MagicMock(return_value=b"%PDF-fattura")
    exporter.generate_receipt_pdf = MagicMock(return_value=b"%PDF-ricevuta")
    return exporter


@pytest.fixture
def service(mock_reconciler, mock_notifier, pdf_exporter):
    return InvoiceService(mock_reconciler, mock_notifier, pdf_exporter)


class TestUpdate:

    @pytest.mark.asyncio
    async def test_discount_delegated_to_reconciler(self, service, mock_db, mock_invoice, mock_reconciler):
        with patch.object(service, "get_by_id", AsyncMock(return_value=mock_invoice)):
            await service.update(
                mock_db, mock_invoice.id, InvoiceUpdate(discount=Decimal("5.00")), today=date(2024, 6, 10)
            )

        mock_reconciler.apply_discount.assert_awaited_once_with(
            mock_db, mock_invoice.id, Decimal("5.00"), today=date(2024, 6, 10)
        )
        mock_db.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_notes_only(self, service, mock_db, mock_invoice, mock_reconciler):
        with patch.object(service, "get_by_id", AsyncMock(return_value=mock_invoice)):
            invoice = await service.update(mock_db, mock_invoice.id, InvoiceUpdate(notes="Rateizzata"))

        assert invoice.notes == "Rateizzata"
        mock_reconciler.apply_discount.assert_not_called()
        mock_db.commit.assert_awaited_once()


class TestSendReminder:

    @pytest.mark.asyncio
    async def test_overdue_reminder(self, service, mock_db, mock_invoice, mock_notifier):
        mock_invoice.status = "OVERDUE"

        with patch.object(service, "get_by_id", AsyncMock(return_value=mock_invoice)):
            result = await service.send_reminder(mock_db, mock_invoice.id, today=date(2024, 7, 8))

        assert result.sent is True
        assert result.days_overdue == 10
        assert result.due_amount == Decimal("52.50")
        customer, event_type, payload = mock_notifier.notify.call_args.args
        assert event_type == "payment_reminder"
        assert payload["days_overdue"] == 10

    @pytest.mark.asyncio
    async def test_reminder_before_due_date(self, service, mock_db, mock_invoice):
        with patch.object(service, "get_by_id", AsyncMock(return_value=mock_invoice)):
            result = await service.send_reminder(mock_db, mock_invoice.id, today=date(2024, 6, 20))

        assert result.days_overdue == 0

    @pytest.mark.asyncio
    async def test_paid_invoice_rejected(self, service, mock_db, mock_invoice, mock_notifier):
        mock_invoice.status = "PAID"

        with patch.object(service, "get_by_id", AsyncMock(return_value=mock_invoice)):
            with pytest.raises(InvalidStateError):
                await service.send_reminder(mock_db, mock_invoice.id)

        mock_notifier.notify.assert_not_called()

    @pytest.mark.asyncio
    async def test_delivery_failure_reported(self, service, mock_db, mock_invoice, mock_notifier):
        mock_notifier.notify.side_effect = RuntimeError("SMS gateway down")

        with patch.object(service, "get_by_id", AsyncMock(return_value=mock_invoice)):
            result = await service.send_reminder(mock_db, mock_invoice.id, today=date(2024, 6, 20))

        assert result.sent is False


class TestSendOverdueReminders:

    def overdue_invoices(self):
        return [
            MockInvoice(
                invoice_number="INV-202404-CUST1", month="2024-04",
                due_date=date(2024, 4, 28), status="OVERDUE", customer=MockCustomer(name="Anna"),
            ),
            MockInvoice(
                invoice_number="INV-202405-CUST2", month="2024-05",
                due_date=date(2024, 5, 28), status="PARTIAL_PAID", paid_amount=Decimal("20.00"),
                customer=MockCustomer(name="Bruno"),
            ),
        ]

    @pytest.mark.asyncio
    async def test_all_sent(self, service, mock_db, mock_notifier):
        invoices = self.overdue_invoices()
        mock_db.execute.return_value = scalars_of(invoices)

        result = await service.send_overdue_reminders(mock_db, today=date(2024, 6, 7))

        assert result.sent == 2
        assert result.failed == 0
        assert result.errors == []
        payloads = [c.args[2] for c in mock_notifier.notify.call_args_list]
        assert [p["days_overdue"] for p in payloads] == [40, 10]
        assert payloads[1]["due_amount"] == Decimal("32.50")

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_the_batch(self, service, mock_db, mock_notifier):
        """Test un invio fallito: gli altri partono, l'errore è riportato."""
        invoices = self.overdue_invoices()
        mock_db.execute.return_value = scalars_of(invoices)
        mock_notifier.notify.side_effect = [RuntimeError("SMS gateway down"), None]

        result = await service.send_overdue_reminders(mock_db, today=date(2024, 6, 7))

        assert result.sent == 1
        assert result.failed == 1
        [error] = result.errors
        assert error.invoice_number == "INV-202404-CUST1"
        assert error.invoice_id == invoices[0].id
        assert error.message == "SMS gateway down"
        assert mock_notifier.notify.await_count == 2

    @pytest.mark.asyncio
    async def test_nothing_overdue(self, service, mock_db, mock_notifier):
        mock_db.execute.return_value = scalars_of([])

        result = await service.send_overdue_reminders(mock_db, today=date(2024, 6, 7))

        assert (result.sent, result.failed) == (0, 0)
        mock_notifier.notify.assert_not_called()


class TestDocuments:

    @pytest.mark.asyncio
    async def test_invoice_pdf(self, service, mock_db, mock_invoice, pdf_exporter):
        with patch.object(service, "get_by_id", AsyncMock(return_value=mock_invoice)):
            content, filename = await service.get_invoice_pdf(mock_db, mock_invoice.id)

        assert content == b"%PDF-fattura"
        assert filename == f"{mock_invoice.invoice_number}.pdf"
        pdf_exporter.generate_invoice_pdf.assert_called_once_with(mock_invoice)

    @pytest.mark.asyncio
    async def test_receipt_pdf(self, service, mock_db):
        payment = MockPayment(transaction_id="TXNABC")

        with patch.object(service, "get_payment", AsyncMock(return_value=payment)):
            content, filename = await service.get_receipt_pdf(mock_db, payment.id)

        assert content == b"%PDF-ricevuta"
        assert filename == "ricevuta_TXNABC.pdf"
