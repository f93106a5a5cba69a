"""
Modelli SQLAlchemy per la Fatturazione
Progetto: ISP Billing (Gestionale ISP)

Contiene:
- Invoice: Fattura mensile o di attivazione
- InvoiceLineItem: Righe della fattura (canone, traffico extra, mora, IVA)
- Payment: Pagamenti e rimborsi registrati
"""

from __future__ import annotations

import datetime
import uuid
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models import Base
from app.models.mixins import Money, TimestampMixin, UUIDMixin, ZERO

# Import per type hinting relazioni (evita circular import)
if TYPE_CHECKING:
    from app.models.customer import Customer


class Invoice(Base, UUIDMixin, TimestampMixin):
    """
    Modello per le fatture.

    Una fattura MONTHLY è emessa una sola volta per cliente e mese
    (vincolo uq_invoices_customer_month); una fattura SETUP addebita
    il costo di attivazione e non ha mese di competenza.

    Gli importi calcolati non cambiano dopo l'emissione: variano solo
    paid_amount, due_amount, status (per effetto dei pagamenti) e
    discount/total_amount (per effetto di uno sconto).

    Attributes:
        invoice_number: Numero fattura univoco
        customer_id: UUID del cliente
        kind: MONTHLY o SETUP
        month: Mese di competenza (YYYY-MM), NULL per SETUP
        issue_date: Data emissione
        due_date: Data scadenza
        amount: Canone base o costo di attivazione
        usage_charge: Addebito per traffico oltre soglia
        late_fee: Mora su fatture scadute
        vat: Imposta
        discount: Sconto applicato
        total_amount: amount + usage_charge + late_fee + vat - discount
        paid_amount: Totale incassato
        due_amount: total_amount - paid_amount
        status: PENDING, PARTIAL_PAID, PAID, OVERDUE
        document_url: Riferimento al documento esportato
        notes: Note libere

    Relationships:
        customer: Cliente intestatario
        line_items: Righe della fattura (ordinate)
        payments: Pagamenti e rimborsi applicati
    """

    __tablename__ = "invoices"

    # ------------------------------------------------------------
    # Colonne Identificazione
    # ------------------------------------------------------------
    invoice_number: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        unique=True,
        doc="Numero fattura (INV-<yyyymm>-<codice> o SET-<codice>)",
    )

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("customers.id", ondelete="RESTRICT"),
        nullable=False,
        doc="UUID del cliente intestatario",
    )

    kind: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default="MONTHLY",
        doc="MONTHLY (canone) o SETUP (attivazione)",
    )

    month: Mapped[Optional[str]] = mapped_column(
        String(7),
        nullable=True,
        doc="Mese di competenza YYYY-MM",
    )

    issue_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        doc="Data emissione",
    )

    due_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        doc="Data scadenza",
    )

    # ------------------------------------------------------------
    # Colonne Importi
    # ------------------------------------------------------------
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    usage_charge: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    late_fee: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    vat: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    discount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)

    total_amount: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        doc="Totale fattura",
    )

    paid_amount: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        default=ZERO,
        doc="Totale incassato (al netto dei rimborsi)",
    )

    due_amount: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        doc="Residuo da incassare, negativo in caso di pagamento in eccesso",
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="PENDING",
        doc="PENDING, PARTIAL_PAID, PAID, OVERDUE",
    )

    # ------------------------------------------------------------
    # Colonne Documento
    # ------------------------------------------------------------
    document_url: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        doc="Riferimento al documento esportato (PDF)",
    )

    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    # ------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------
    customer: Mapped["Customer"] = relationship(
        "Customer",
        back_populates="invoices",
        lazy="selectin",
        doc="Cliente intestatario",
    )

    line_items: Mapped[List["InvoiceLineItem"]] = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.line_number",
        lazy="selectin",
        doc="Righe della fattura",
    )

    payments: Mapped[List["Payment"]] = relationship(
        "Payment",
        back_populates="invoice",
        lazy="raise",
        doc="Pagamenti e rimborsi applicati alla fattura",
    )

    # ------------------------------------------------------------
    # Properties Calcolate
    # ------------------------------------------------------------
    @property
    def is_settled(self) -> bool:
        """True se la fattura è saldata."""
        return self.status == "PAID"

    # ------------------------------------------------------------
    # Indici e Vincoli
    # ------------------------------------------------------------
    __table_args__ = (
        UniqueConstraint("customer_id", "month", name="uq_invoices_customer_month"),
        Index("ix_invoices_customer_id", "customer_id"),
        Index("ix_invoices_status", "status"),
        Index("ix_invoices_due_date", "due_date"),
        CheckConstraint("kind IN ('MONTHLY', 'SETUP')", name="ck_invoices_kind"),
        CheckConstraint(
            "status IN ('PENDING', 'PARTIAL_PAID', 'PAID', 'OVERDUE')",
            name="ck_invoices_status",
        ),
        CheckConstraint(
            "(kind = 'SETUP') OR (month IS NOT NULL)",
            name="ck_invoices_monthly_has_month",
        ),
        CheckConstraint("amount >= 0", name="ck_invoices_amount_positive"),
        CheckConstraint("discount >= 0", name="ck_invoices_discount_positive"),
        CheckConstraint(
            "due_amount = total_amount - paid_amount",
            name="ck_invoices_due_consistent",
        ),
    )

    def __repr__(self) -> str:
        return f"<Invoice(number={self.invoice_number}, total={self.total_amount}, status={self.status})>"


class InvoiceLineItem(Base, UUIDMixin, TimestampMixin):
    """
    Modello per le righe della fattura.

    Le righe sono create insieme alla fattura e non vengono più modificate.
    """

    __tablename__ = "invoice_line_items"

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        doc="UUID della fattura padre",
    )

    line_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        doc="BASE, OVERAGE, LATE_FEE, TAX, SETUP",
    )

    description: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )

    quantity: Mapped[Decimal] = mapped_column(
        Numeric(12, 3),
        nullable=False,
        default=Decimal("1"),
    )

    unit_price: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
    )

    total: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
    )

    line_number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        doc="Numero progressivo riga nella fattura",
    )

    invoice: Mapped["Invoice"] = relationship(
        "Invoice",
        back_populates="line_items",
    )

    __table_args__ = (
        Index("ix_invoice_line_items_invoice_number", "invoice_id", "line_number"),
        CheckConstraint(
            "line_type IN ('BASE', 'OVERAGE', 'LATE_FEE', 'TAX', 'SETUP')",
            name="ck_invoice_line_items_line_type",
        ),
        CheckConstraint("quantity > 0", name="ck_invoice_line_items_quantity_positive"),
    )

    def __repr__(self) -> str:
        return f"<InvoiceLineItem(type={self.line_type}, total={self.total})>"


class Payment(Base, UUIDMixin, TimestampMixin):
    """
    Modello per i movimenti di incasso.

    Importo positivo = pagamento, negativo = rimborso. Un rimborso punta al
    pagamento originale tramite refund_of_id (univoco: un pagamento si
    rimborsa al massimo una volta). invoice_id NULL indica un pagamento non
    applicato a una fattura, che incide solo sul saldo del cliente.

    Attributes:
        transaction_id: Identificativo univoco (TXN..., STRIPE_..., REFUND_...)
        invoice_id: Fattura a cui è applicato (opzionale)
        customer_id: Cliente pagante
        amount: Importo firmato
        method: Metodo di pagamento
        reference: Riferimento esterno (ricevuta, id gateway)
        paid_at: Data/ora dell'incasso
        status: Stato del movimento (COMPLETED)
        refund_of_id: Pagamento rimborsato da questo movimento
    """

    __tablename__ = "payments"

    transaction_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
        doc="Identificativo univoco della transazione",
    )

    invoice_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("invoices.id", ondelete="RESTRICT"),
        nullable=True,
        doc="Fattura a cui è applicato il pagamento",
    )

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("customers.id", ondelete="RESTRICT"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        doc="Importo: positivo = pagamento, negativo = rimborso",
    )

    method: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    reference: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    paid_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="COMPLETED",
    )

    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    received_by: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        doc="Operatore che ha registrato il movimento (None = gateway)",
    )

    refund_of_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("payments.id", ondelete="RESTRICT"),
        nullable=True,
        unique=True,
        doc="Pagamento originale stornato da questo rimborso",
    )

    # ------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------
    customer: Mapped["Customer"] = relationship(
        "Customer",
        back_populates="payments",
        lazy="selectin",
    )

    invoice: Mapped[Optional["Invoice"]] = relationship(
        "Invoice",
        back_populates="payments",
        lazy="selectin",
    )

    @property
    def is_refund(self) -> bool:
        """True se il movimento è un rimborso."""
        return self.refund_of_id is not None or self.amount < 0

    __table_args__ = (
        Index("ix_payments_customer_id", "customer_id"),
        Index("ix_payments_invoice_id", "invoice_id"),
        Index("ix_payments_paid_at", "paid_at"),
        CheckConstraint("amount <> 0", name="ck_payments_amount_not_zero"),
        CheckConstraint(
            "method IN ('CASH', 'BANK_TRANSFER', 'MOBILE_BANKING', 'CREDIT_CARD', "
            "'STRIPE', 'SSLCOMMERZ', 'OTHER')",
            name="ck_payments_method",
        ),
    )

    def __repr__(self) -> str:
        return f"<Payment(txn={self.transaction_id}, amount={self.amount}, method={self.method})>"
