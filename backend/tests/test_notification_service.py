"""
Tests per TemplateNotifier e AdminEventBus.
"""

import asyncio
from decimal import Decimal

import pytest

from app.services.notification_service import (
    CHANNEL_EMAIL,
    CHANNEL_SMS,
    AdminEventBus,
    TemplateNotifier,
)

from conftest import MockCustomer


@pytest.fixture
def notifier(test_settings):
    return TemplateNotifier(test_settings)


class TestRender:

    def test_invoice_issued(self, notifier):
        customer = MockCustomer(name="Anna Verdi")

        message = notifier.render(
            customer,
            "invoice_issued",
            {
                "invoice_number": "INV-202406-CUST2406A1B2C3",
                "month": "2024-06",
                "total_amount": Decimal("52.50"),
                "due_date": "2024-06-28",
            },
        )

        assert "Anna Verdi" in message
        assert "INV-202406-CUST2406A1B2C3" in message
        assert "52.50 USD" in message

    def test_unapplied_payment_without_residual(self, notifier):
        message = notifier.render(
            MockCustomer(),
            "payment_received",
            {"amount": Decimal("30.00"), "transaction_id": "TXN1", "invoice_number": None, "due_amount": None},
        )

        assert "TXN1" in message
        assert "Residuo" not in message

    def test_unknown_event_uses_generic_text(self, notifier, test_settings):
        message = notifier.render(MockCustomer(), "evento_sconosciuto", {})

        assert message == f"{test_settings.invoice_company_name}: evento_sconosciuto"


class TestResolveChannel:

    def test_sms_preferred(self):
        assert TemplateNotifier.resolve_channel(MockCustomer()) == CHANNEL_SMS

    def test_email_fallback(self):
        assert TemplateNotifier.resolve_channel(MockCustomer(phone=None)) == CHANNEL_EMAIL

    def test_no_contact(self):
        assert TemplateNotifier.resolve_channel(MockCustomer(phone=None, email=None)) is None

    @pytest.mark.asyncio
    async def test_notify_without_contact_is_noop(self, notifier):
        await notifier.notify(MockCustomer(phone=None, email=None), "invoice_issued", {})


class TestAdminEventBus:

    @pytest.mark.asyncio
    async def test_publish_to_subscribers(self):
        bus = AdminEventBus()
        first = bus.subscribe()
        second = bus.subscribe()

        delivered = bus.publish("new_payment", {"amount": "52.50"})

        assert delivered == 2
        event = await asyncio.wait_for(first.get(), timeout=1)
        assert event["type"] == "new_payment"
        assert event["payload"] == {"amount": "52.50"}
        assert second.qsize() == 1

    @pytest.mark.asyncio
    async def test_full_queue_drops_event(self):
        bus = AdminEventBus(max_queue_size=1)
        queue = bus.subscribe()

        assert bus.publish("a", {}) == 1
        assert bus.publish("b", {}) == 0
        assert queue.qsize() == 1

    def test_unsubscribe(self):
        bus = AdminEventBus()
        queue = bus.subscribe()
        bus.unsubscribe(queue)

        assert bus.subscriber_count == 0
        assert bus.publish("a", {}) == 0

    @pytest.mark.asyncio
    async def test_notify_admin_goes_to_bus(self, test_settings):
        bus = AdminEventBus()
        queue = bus.subscribe()
        notifier = TemplateNotifier(test_settings, event_bus=bus)

        await notifier.notify_admin("invoices_generated", {"generated": 3})

        event = queue.get_nowait()
        assert event["type"] == "invoices_generated"
