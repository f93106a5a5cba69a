"""
Unit tests per BillingCalculator.

Verificano il calcolo degli addebiti mensili: canone, traffico oltre
soglia, mora sulle fatture scadute e IVA.
"""

from datetime import date
from decimal import Decimal

import pytest

from app.services.billing_calculator import (
    BillingCalculator,
    BillingPolicy,
    parse_data_allowance,
)

from conftest import MockInvoice, MockPackage, MockUsage

GB = 1024


def usage_gb(gb):
    """Record di traffico giornalieri per un totale di `gb` GB."""
    half = Decimal(gb * GB) / 2
    return [MockUsage(half), MockUsage(half)]


@pytest.fixture
def calculator():
    return BillingCalculator(BillingPolicy())


# ============================================================
# Soglia dati
# ============================================================


class TestParseDataAllowance:
    """Tests per l'interpretazione della soglia del pacchetto."""

    @pytest.mark.parametrize("value", [None, "", "  ", "Unlimited", "UNLIMITED", "unlimited", "n/d"])
    def test_unlimited_values(self, value):
        """Test valori che valgono come traffico illimitato."""
        assert parse_data_allowance(value) is None

    def test_numeric_allowance(self):
        assert parse_data_allowance("100") == Decimal("100")
        assert parse_data_allowance(" 250.5 ") == Decimal("250.5")


# ============================================================
# Calcolo completo
# ============================================================


class TestComputeCharges:
    """Tests per compute_charges."""

    def test_within_allowance(self, calculator):
        """Test 80 GB su pacchetto da 100 GB: solo canone e IVA."""
        breakdown = calculator.compute_charges(
            MockPackage(), usage_gb(80), [], date(2024, 6, 1)
        )

        assert breakdown.base == Decimal("50.00")
        assert breakdown.usage_charge == Decimal("0.00")
        assert breakdown.late_fee == Decimal("0.00")
        assert breakdown.vat == Decimal("2.50")
        assert breakdown.total == Decimal("52.50")
        assert breakdown.usage_gb == Decimal("80.000")

    def test_overage(self, calculator):
        """Test 120 GB su 100 GB a 10/GB: 200 di traffico, totale 262.50."""
        breakdown = calculator.compute_charges(
            MockPackage(), usage_gb(120), [], date(2024, 6, 1)
        )

        assert breakdown.overage_gb == Decimal("20.000")
        assert breakdown.usage_charge == Decimal("200.00")
        assert breakdown.subtotal == Decimal("250.00")
        assert breakdown.vat == Decimal("12.50")
        assert breakdown.total == Decimal("262.50")

    def test_unlimited_package_never_charges_usage(self, calculator):
        """Test pacchetto illimitato: nessun sovrapprezzo anche con traffico elevato."""
        package = MockPackage(data_limit="Unlimited")

        breakdown = calculator.compute_charges(package, usage_gb(5000), [], date(2024, 6, 1))

        assert breakdown.usage_charge == Decimal("0.00")
        assert breakdown.total == Decimal("52.50")

    def test_zero_tax_rate(self, calculator):
        package = MockPackage(tax_rate=Decimal("0"))

        breakdown = calculator.compute_charges(package, [], [], date(2024, 6, 1))

        assert breakdown.vat == Decimal("0.00")
        assert breakdown.total == Decimal("50.00")

    def test_custom_overage_rate(self):
        """Test tariffa oltre soglia configurata."""
        calculator = BillingCalculator(BillingPolicy(overage_rate_per_gb=Decimal("2.50")))

        breakdown = calculator.compute_charges(
            MockPackage(tax_rate=Decimal("0")), usage_gb(110), [], date(2024, 6, 1)
        )

        assert breakdown.usage_charge == Decimal("25.00")

    def test_deterministic(self, calculator):
        """Test stessi input, stesso risultato."""
        args = (MockPackage(), usage_gb(133), [], date(2024, 6, 1))

        assert calculator.compute_charges(*args) == calculator.compute_charges(*args)

    def test_vat_includes_late_fee(self, calculator, overdue_invoice):
        """Test l'IVA si applica anche alla mora."""
        # 100 di residuo, 4 giorni di ritardo al 2% = 8.00
        breakdown = calculator.compute_charges(
            MockPackage(), [], [overdue_invoice], date(2024, 6, 1)
        )

        assert breakdown.late_fee == Decimal("8.00")
        assert breakdown.subtotal == Decimal("58.00")
        assert breakdown.vat == Decimal("2.90")
        assert breakdown.total == Decimal("60.90")


# ============================================================
# Mora
# ============================================================


class TestLateFee:
    """Tests per il calcolo della mora."""

    def test_late_fee_days(self, calculator, overdue_invoice):
        fee = calculator.late_fee([overdue_invoice], date(2024, 6, 7))

        # 10 giorni × 2% × 100
        assert fee == Decimal("20.00")

    def test_late_fee_capped(self, calculator, overdue_invoice):
        """Test la mora matura al massimo per 30 giorni."""
        fee = calculator.late_fee([overdue_invoice], date(2024, 12, 31))

        assert fee == Decimal("60.00")

    def test_only_overdue_status_counts(self, calculator):
        """Test le fatture parzialmente pagate non generano mora."""
        partial = MockInvoice(
            due_date=date(2024, 5, 28),
            total_amount=Decimal("100.00"),
            paid_amount=Decimal("40.00"),
            status="PARTIAL_PAID",
        )

        assert calculator.late_fee([partial], date(2024, 6, 10)) == Decimal("0.00")

    def test_not_yet_due_is_ignored(self, calculator):
        invoice = MockInvoice(due_date=date(2024, 6, 28), status="OVERDUE")

        assert calculator.late_fee([invoice], date(2024, 6, 28)) == Decimal("0.00")

    def test_settled_amount_is_ignored(self, calculator):
        invoice = MockInvoice(
            due_date=date(2024, 5, 28),
            total_amount=Decimal("100.00"),
            paid_amount=Decimal("100.00"),
            status="OVERDUE",
        )

        assert calculator.late_fee([invoice], date(2024, 6, 10)) == Decimal("0.00")

    def test_multiple_invoices_summed(self, calculator, overdue_invoice):
        older = MockInvoice(
            due_date=date(2024, 4, 28),
            total_amount=Decimal("50.00"),
            status="OVERDUE",
        )

        # 100 × 2% × 4 + 50 × 2% × 30 (massimale)
        fee = calculator.late_fee([overdue_invoice, older], date(2024, 6, 1))

        assert fee == Decimal("38.00")


class TestBillingPolicy:
    """Tests per la costruzione della policy dalle impostazioni."""

    def test_from_settings(self, test_settings):
        policy = BillingPolicy.from_settings(test_settings)

        assert policy.overage_rate_per_gb == Decimal("10.00")
        assert policy.late_fee_daily_rate == Decimal("0.02")
        assert policy.late_fee_cap_days == 30
