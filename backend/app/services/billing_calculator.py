"""
Calcolo degli addebiti mensili
Progetto: ISP Billing (Gestionale ISP)

Funzioni pure, senza accesso al database: dato il pacchetto, il traffico
del mese e le fatture scadute del cliente, restituisce la scomposizione
dell'importo da fatturare. La data di riferimento è sempre esplicita.
"""

from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.invoice import InvoiceStatus

CENTS = Decimal("0.01")
MB_PER_GB = Decimal("1024")


def _round(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_data_allowance(data_limit: Optional[str]) -> Optional[Decimal]:
    """
    Interpreta la soglia dati del pacchetto.

    Restituisce i GB inclusi, oppure None per traffico illimitato.
    Stringa vuota, "Unlimited" (in qualsiasi maiuscolo/minuscolo) e
    valori non numerici valgono come illimitato: non solleva mai eccezioni.
    """
    if data_limit is None:
        return None
    text = str(data_limit).strip()
    if not text or text.lower() == "unlimited":
        return None
    try:
        allowance = Decimal(text)
    except InvalidOperation:
        return None
    if not allowance.is_finite():
        return None
    return allowance


class BillingPolicy(BaseModel):
    """Parametri tariffari comuni a tutti i pacchetti."""

    overage_rate_per_gb: Decimal = Field(default=Decimal("10.00"), ge=0)
    late_fee_daily_rate: Decimal = Field(default=Decimal("0.02"), ge=0)
    late_fee_cap_days: int = Field(default=30, ge=0)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_settings(cls, settings) -> "BillingPolicy":
        return cls(
            overage_rate_per_gb=settings.overage_rate_per_gb,
            late_fee_daily_rate=settings.late_fee_daily_rate,
            late_fee_cap_days=settings.late_fee_cap_days,
        )


class ChargeBreakdown(BaseModel):
    """
    Scomposizione dell'importo di una fattura mensile.

    Attributes:
        base: Canone del pacchetto
        usage_charge: Traffico oltre soglia
        late_fee: Mora sulle fatture scadute
        vat: Imposta su base + usage_charge + late_fee
        subtotal: base + usage_charge + late_fee
        total: subtotal + vat
        usage_gb: GB consumati nel periodo
        overage_gb: GB oltre la soglia (0 se illimitato)
    """

    base: Decimal
    usage_charge: Decimal
    late_fee: Decimal
    vat: Decimal
    subtotal: Decimal
    total: Decimal
    usage_gb: Decimal
    overage_gb: Decimal = Decimal("0")

    model_config = ConfigDict(frozen=True)


class BillingCalculator:
    """
    Calcolatore degli addebiti mensili.

    Stessi input producono sempre lo stesso risultato.
    """

    def __init__(self, policy: Optional[BillingPolicy] = None) -> None:
        self.policy = policy or BillingPolicy()

    # ------------------------------------------------------------
    # Componenti
    # ------------------------------------------------------------
    @staticmethod
    def usage_in_gb(usage_records: Iterable) -> Decimal:
        """Somma il traffico (total_mb) dei record e lo converte in GB."""
        total_mb = sum(
            (Decimal(str(r.total_mb or 0)) for r in usage_records),
            Decimal("0"),
        )
        return total_mb / MB_PER_GB

    def usage_charge(self, usage_gb: Decimal, data_limit: Optional[str]) -> tuple[Decimal, Decimal]:
        """
        Addebito per il traffico oltre soglia.

        Returns:
            (GB oltre soglia, importo arrotondato al centesimo)
        """
        allowance = parse_data_allowance(data_limit)
        if allowance is None or usage_gb <= allowance:
            return Decimal("0"), Decimal("0.00")
        overage = usage_gb - allowance
        return overage, _round(overage * self.policy.overage_rate_per_gb)

    def late_fee(self, overdue_invoices: Iterable, today: date) -> Decimal:
        """
        Mora: residuo × tasso giornaliero × giorni di ritardo (fino al massimale).

        Considera solo fatture in stato OVERDUE con scadenza precedente a today.
        """
        fee = Decimal("0")
        for invoice in overdue_invoices:
            if invoice.status != InvoiceStatus.OVERDUE.value:
                continue
            if invoice.due_date >= today:
                continue
            due = Decimal(str(invoice.due_amount))
            if due <= 0:
                continue
            days = min((today - invoice.due_date).days, self.policy.late_fee_cap_days)
            fee += due * self.policy.late_fee_daily_rate * days
        return _round(fee)

    # ------------------------------------------------------------
    # Calcolo completo
    # ------------------------------------------------------------
    def compute_charges(
        self,
        package,
        usage_records: Iterable,
        overdue_invoices: Iterable,
        today: date,
    ) -> ChargeBreakdown:
        """
        Calcola gli addebiti di una fattura mensile.

        Args:
            package: Pacchetto (monthly_price, data_limit, tax_rate)
            usage_records: Record di traffico del periodo (total_mb)
            overdue_invoices: Fatture del cliente da considerare per la mora
            today: Data di riferimento per il calcolo dei giorni di ritardo

        Returns:
            ChargeBreakdown con tutti gli importi arrotondati al centesimo
        """
        base = _round(Decimal(str(package.monthly_price)))
        usage_gb = self.usage_in_gb(usage_records)
        overage_gb, usage_charge = self.usage_charge(usage_gb, package.data_limit)
        late_fee = self.late_fee(overdue_invoices, today)

        subtotal = base + usage_charge + late_fee
        tax_rate = Decimal(str(package.tax_rate or 0))
        vat = _round(subtotal * tax_rate / Decimal("100"))

        return ChargeBreakdown(
            base=base,
            usage_charge=usage_charge,
            late_fee=late_fee,
            vat=vat,
            subtotal=subtotal,
            total=subtotal + vat,
            usage_gb=usage_gb.quantize(Decimal("0.001"), rounding=ROUND_HALF_UP),
            overage_gb=overage_gb.quantize(Decimal("0.001"), rounding=ROUND_HALF_UP),
        )
