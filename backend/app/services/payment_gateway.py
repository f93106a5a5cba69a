"""
Gateway di pagamento esterno
Progetto: ISP Billing (Gestionale ISP)

Interfaccia PaymentGateway e implementazione Stripe (SDK ufficiale).
Le chiamate all'SDK sono bloccanti e vengono eseguite in un thread.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Optional, Protocol

import stripe

from app.core.exceptions import GatewayError
from app.schemas.payment import GatewayConfirmation

logger = logging.getLogger(__name__)

# Stati Stripe che confermano l'addebito/rimborso
_CHARGE_OK = {"succeeded"}
# "pending": rimborso accettato da Stripe, in attesa del regolamento bancario
_REFUND_OK = {"succeeded", "pending"}


class PaymentGateway(Protocol):
    """Interfaccia del gateway di pagamento."""

    async def charge(
        self, amount: Decimal, method: str, metadata: dict[str, Any]
    ) -> GatewayConfirmation:
        ...

    async def refund(
        self,
        original_reference: str,
        amount: Decimal,
        idempotency_key: Optional[str] = None,
    ) -> GatewayConfirmation:
        ...


def _to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


class StripeGateway:
    """
    Gateway Stripe basato su PaymentIntent e Refund.

    metadata di charge deve contenere "payment_token" (id del PaymentMethod
    rilasciato da Stripe al client); "idempotency_key", se presente, diventa
    la chiave di idempotenza della richiesta; gli altri valori sono inoltrati
    come metadata della transazione.
    """

    def __init__(self, api_key: str, currency: str = "USD") -> None:
        self.api_key = api_key
        self.currency = currency.lower()

    def _ensure_configured(self) -> None:
        if not self.api_key:
            raise GatewayError("Gateway Stripe non configurato")

    def _create_intent(self, amount: Decimal, metadata: dict[str, Any]):
        token = metadata.get("payment_token")
        if not token:
            raise GatewayError("Token del metodo di pagamento mancante")
        extra = {
            k: str(v)
            for k, v in metadata.items()
            if k not in ("payment_token", "idempotency_key")
        }
        params: dict[str, Any] = {
            "api_key": self.api_key,
            "amount": _to_minor_units(amount),
            "currency": self.currency,
            "payment_method": token,
            "confirm": True,
            "metadata": extra,
            "automatic_payment_methods": {"enabled": True, "allow_redirects": "never"},
        }
        if extra.get("invoice_number"):
            params["description"] = f"Fattura {extra['invoice_number']}"
        if metadata.get("idempotency_key"):
            params["idempotency_key"] = metadata["idempotency_key"]
        return stripe.PaymentIntent.create(**params)

    def _create_refund(
        self, original_reference: str, amount: Decimal, idempotency_key: Optional[str]
    ):
        params: dict[str, Any] = {
            "api_key": self.api_key,
            "payment_intent": original_reference,
            "amount": _to_minor_units(amount),
        }
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        return stripe.Refund.create(**params)

    async def charge(
        self, amount: Decimal, method: str, metadata: dict[str, Any]
    ) -> GatewayConfirmation:
        """
        Addebita l'importo sul metodo di pagamento del cliente.

        Raises:
            GatewayError: se Stripe rifiuta o non raggiungibile
        """
        self._ensure_configured()
        try:
            intent = await asyncio.to_thread(self._create_intent, amount, metadata)
        except stripe.StripeError as e:
            logger.error(f"Addebito Stripe fallito: {e}")
            raise GatewayError(
                f"Addebito rifiutato dal gateway: {e.user_message or str(e)}"
            ) from e

        return GatewayConfirmation(
            success=intent.status in _CHARGE_OK,
            reference=intent.id,
            amount=Decimal(intent.amount) / 100,
            message=intent.status,
            raw={"status": intent.status, "method": method},
        )

    async def refund(
        self,
        original_reference: str,
        amount: Decimal,
        idempotency_key: Optional[str] = None,
    ) -> GatewayConfirmation:
        """
        Rimborsa (anche parzialmente) un PaymentIntent.

        Un rimborso "pending" è già accettato da Stripe e non più annullabile:
        viene considerato confermato e segnalato nel log.

        Raises:
            GatewayError: se Stripe rifiuta o non raggiungibile
        """
        self._ensure_configured()
        try:
            refund = await asyncio.to_thread(
                self._create_refund, original_reference, amount, idempotency_key
            )
        except stripe.StripeError as e:
            logger.error(f"Rimborso Stripe fallito per {original_reference}: {e}")
            raise GatewayError(
                f"Rimborso rifiutato dal gateway: {e.user_message or str(e)}"
            ) from e

        if refund.status == "pending":
            logger.warning(
                f"Rimborso Stripe {refund.id} per {original_reference} in attesa di regolamento"
            )

        return GatewayConfirmation(
            success=refund.status in _REFUND_OK,
            reference=refund.id,
            amount=Decimal(refund.amount) / 100,
            message=refund.status,
            raw={"status": refund.status, "settled": refund.status == "succeeded"},
        )
