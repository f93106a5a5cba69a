"""
Notifiche a clienti e operatori
Progetto: ISP Billing (Gestionale ISP)

- Notifier: interfaccia usata da generatore e riconciliatore
- TemplateNotifier: rende i messaggi con Jinja2 e li consegna sul canale
  disponibile del cliente (SMS o email); la consegna reale è delegata
  al provider esterno, qui viene tracciata nel log
- AdminEventBus: diffusione in-process degli eventi amministrativi
  (es. nuovo pagamento) verso i sottoscrittori, come le dashboard in tempo reale

Le notifiche sono best-effort: il chiamante registra e ignora gli errori,
senza mai annullare un'operazione già confermata.
"""

import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from jinja2 import Environment, FileSystemLoader, TemplateNotFound

from app.core.config import Settings

logger = logging.getLogger(__name__)

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
NOTIFICATION_TEMPLATES_DIR = os.path.join(BASE_DIR, "templates", "notifications")

CHANNEL_SMS = "sms"
CHANNEL_EMAIL = "email"


class Notifier(Protocol):
    """Interfaccia del collaboratore di notifica."""

    async def notify(self, customer, event_type: str, payload: dict[str, Any]) -> None:
        ...

    async def notify_admin(self, event_type: str, payload: dict[str, Any]) -> None:
        ...


# ------------------------------------------------------------
# Bus eventi amministrativi
# ------------------------------------------------------------
class AdminEventBus:
    """
    Bus eventi in-process per gli operatori.

    Ogni sottoscrittore riceve una coda propria; se la coda è piena
    l'evento viene scartato per quel sottoscrittore.
    """

    def __init__(self, max_queue_size: int = 100) -> None:
        self.max_queue_size = max_queue_size
        self._subscribers: set[asyncio.Queue] = set()

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event_type: str, payload: dict[str, Any]) -> int:
        """
        Pubblica un evento a tutti i sottoscrittori.

        Returns:
            Numero di sottoscrittori che hanno ricevuto l'evento
        """
        event = {
            "type": event_type,
            "payload": payload,
            "published_at": datetime.now(timezone.utc).isoformat(),
        }
        delivered = 0
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Coda eventi admin piena, evento {event_type} scartato")
        return delivered


# ------------------------------------------------------------
# Notifier con template
# ------------------------------------------------------------
class TemplateNotifier:
    """
    Notifier predefinito.

    Il messaggio è reso dal template notifications/<event_type>.txt;
    per eventi senza template si usa un testo generico.
    """

    def __init__(
        self,
        settings: Settings,
        event_bus: Optional[AdminEventBus] = None,
        templates_dir: str = NOTIFICATION_TEMPLATES_DIR,
    ) -> None:
        self.settings = settings
        self.event_bus = event_bus or AdminEventBus()
        self.env = Environment(
            loader=FileSystemLoader(templates_dir),
            keep_trailing_newline=False,
        )

    def render(self, customer, event_type: str, payload: dict[str, Any]) -> str:
        """Rende il testo della notifica per il cliente."""
        context = {
            "company_name": self.settings.invoice_company_name,
            "currency": self.settings.currency,
            "customer": customer,
            **payload,
        }
        try:
            template = self.env.get_template(f"{event_type}.txt")
        except TemplateNotFound:
            return f"{self.settings.invoice_company_name}: {event_type}"
        return template.render(context).strip()

    @staticmethod
    def resolve_channel(customer) -> Optional[str]:
        """SMS se il cliente ha un telefono, altrimenti email."""
        if getattr(customer, "phone", None):
            return CHANNEL_SMS
        if getattr(customer, "email", None):
            return CHANNEL_EMAIL
        return None

    async def notify(self, customer, event_type: str, payload: dict[str, Any]) -> None:
        channel = self.resolve_channel(customer)
        if channel is None:
            logger.info(
                f"Cliente {customer.customer_code} senza recapiti, notifica {event_type} non inviata"
            )
            return

        message = self.render(customer, event_type, payload)
        recipient = customer.phone if channel == CHANNEL_SMS else customer.email
        logger.info(
            f"Notifica {event_type} via {channel} a {recipient}: {message}",
            extra={"customer_code": customer.customer_code, "event_type": event_type},
        )

    async def notify_admin(self, event_type: str, payload: dict[str, Any]) -> None:
        delivered = self.event_bus.publish(event_type, payload)
        logger.debug(f"Evento admin {event_type} inviato a {delivered} sottoscrittori")
