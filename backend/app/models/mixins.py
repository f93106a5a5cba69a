"""
Mixin SQLAlchemy per modelli
Progetto: ISP Billing (Gestionale ISP)

Mixin riutilizzabili per aggiungere funzionalità comuni ai modelli.
"""

import datetime
import uuid
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Numeric, Uuid
from sqlalchemy import event
from sqlalchemy.orm import Mapped, mapped_column, Session
from sqlalchemy.sql import func


# Precisione comune a tutti gli importi monetari
Money = Numeric(12, 2)

ZERO = Decimal("0.00")


class ActiveFlagMixin:
    """
    Mixin per entità di catalogo attivabili/disattivabili.

    Un record disattivato resta referenziabile dallo storico
    (es. fatture emesse su un pacchetto non più in vendita).
    """

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        doc="False = non più utilizzabile per nuove fatturazioni",
    )


class TimestampMixin:
    """
    Mixin per gestione automatica timestamp creazione e aggiornamento.

    Aggiunge i campi:
    - created_at: data/ora di creazione record (impostato automaticamente)
    - updated_at: data/ora ultimo aggiornamento (aggiornato automaticamente)
    """

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        doc="Data/ora di creazione del record",
    )

    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        doc="Data/ora ultimo aggiornamento del record",
    )


class UUIDMixin:
    """
    Mixin per ID UUID primary key generato lato applicazione.
    """

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        doc="UUID primary key",
    )


# ------------------------------------------------------------
# Event Listeners
# ------------------------------------------------------------
@event.listens_for(Session, "before_flush")
def update_timestamp(session: Session, flush_context, instances) -> None:
    """
    Aggiorna updated_at sugli oggetti nuovi e su quelli effettivamente modificati.

    Args:
        session: Sessione SQLAlchemy
        flush_context: Contesto del flush
        instances: Oggetti instances (non usato)
    """
    now = datetime.datetime.now(datetime.timezone.utc)

    for obj in session.dirty:
        if isinstance(obj, TimestampMixin) and session.is_modified(
            obj, include_collections=False
        ):
            obj.updated_at = now

    for obj in session.new:
        if isinstance(obj, TimestampMixin):
            obj.updated_at = now
