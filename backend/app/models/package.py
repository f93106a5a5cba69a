"""
Modello SQLAlchemy per l'entità Package
Progetto: ISP Billing (Gestionale ISP)

Rappresenta un piano tariffario del catalogo (canone, soglia dati, IVA).
"""


from __future__ import annotations
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import CheckConstraint, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models import Base
from app.models.mixins import ActiveFlagMixin, Money, TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from app.models.customer import Customer


UNLIMITED_DATA = "Unlimited"


class Package(Base, UUIDMixin, TimestampMixin, ActiveFlagMixin):
    """
    Modello per i pacchetti di connettività.

    Le modifiche di prezzo valgono solo per le fatture future: le fatture
    già emesse conservano gli importi calcolati al momento dell'emissione.

    Attributes:
        code: Codice univoco del pacchetto
        name: Nome commerciale
        monthly_price: Canone mensile
        data_limit: Soglia dati mensile in GB, oppure "Unlimited"
        tax_rate: Aliquota IVA in percentuale
        setup_fee: Costo di attivazione
        is_active: Pacchetto vendibile e fatturabile
    """

    __tablename__ = "packages"

    code: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        unique=True,
        doc="Codice univoco del pacchetto",
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        doc="Nome commerciale del pacchetto",
    )

    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    speed_mbps: Mapped[Optional[int]] = mapped_column(
        nullable=True,
        doc="Velocità nominale in Mbps (informativa)",
    )

    monthly_price: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        doc="Canone mensile",
    )

    data_limit: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=UNLIMITED_DATA,
        doc="Soglia dati mensile in GB oppure 'Unlimited'",
    )

    tax_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        default=Decimal("0.00"),
        doc="Aliquota IVA in percentuale",
    )

    setup_fee: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        default=Decimal("0.00"),
        doc="Costo di attivazione addebitato all'onboarding",
    )

    customers: Mapped[List["Customer"]] = relationship(
        "Customer",
        back_populates="package",
    )

    __table_args__ = (
        CheckConstraint("monthly_price >= 0", name="ck_packages_price_positive"),
        CheckConstraint(
            "tax_rate >= 0 AND tax_rate <= 100", name="ck_packages_tax_rate_range"
        ),
        CheckConstraint("setup_fee >= 0", name="ck_packages_setup_fee_positive"),
    )

    def __repr__(self) -> str:
        return f"<Package(code={self.code}, price={self.monthly_price}, limit={self.data_limit})>"
