"""
Modello SQLAlchemy per il traffico dati
Progetto: ISP Billing (Gestionale ISP)

Righe giornaliere di misurazione del traffico, scritte dal sistema di
raccolta e lette in sola lettura dalla fatturazione.
"""

from __future__ import annotations

import datetime
import uuid
from decimal import Decimal

from sqlalchemy import Date, ForeignKey, Numeric, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base
from app.models.mixins import TimestampMixin, UUIDMixin


class BandwidthUsage(Base, UUIDMixin, TimestampMixin):
    """
    Traffico giornaliero di un cliente, in MB.

    Attributes:
        customer_id: Cliente misurato
        date: Giorno di riferimento
        upload_mb: Traffico in upload
        download_mb: Traffico in download
        total_mb: Traffico complessivo
    """

    __tablename__ = "bandwidth_usage"

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("customers.id", ondelete="RESTRICT"),
        nullable=False,
    )

    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)

    upload_mb: Mapped[Decimal] = mapped_column(
        Numeric(14, 3), nullable=False, default=Decimal("0")
    )
    download_mb: Mapped[Decimal] = mapped_column(
        Numeric(14, 3), nullable=False, default=Decimal("0")
    )
    total_mb: Mapped[Decimal] = mapped_column(
        Numeric(14, 3), nullable=False, default=Decimal("0")
    )

    __table_args__ = (
        UniqueConstraint("customer_id", "date", name="uq_bandwidth_usage_customer_date"),
    )

    def __repr__(self) -> str:
        return f"<BandwidthUsage(customer={self.customer_id}, date={self.date}, total_mb={self.total_mb})>"
