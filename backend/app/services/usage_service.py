"""
Lettura del traffico dati per la fatturazione
Progetto: ISP Billing (Gestionale ISP)
"""

import uuid
from datetime import date
from typing import Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.usage import BandwidthUsage


class UsageProvider(Protocol):
    """Interfaccia del collaboratore che fornisce il traffico di un periodo."""

    async def get_usage_for_period(
        self,
        db: AsyncSession,
        customer_id: uuid.UUID,
        start: date,
        end: date,
    ) -> Sequence:
        ...


class SqlUsageProvider:
    """Legge i record giornalieri dalla tabella bandwidth_usage."""

    async def get_usage_for_period(
        self,
        db: AsyncSession,
        customer_id: uuid.UUID,
        start: date,
        end: date,
    ) -> Sequence[BandwidthUsage]:
        """
        Restituisce i record del cliente con start <= date < end.
        """
        result = await db.execute(
            select(BandwidthUsage)
            .where(
                BandwidthUsage.customer_id == customer_id,
                BandwidthUsage.date >= start,
                BandwidthUsage.date < end,
            )
            .order_by(BandwidthUsage.date)
        )
        return result.scalars().all()
