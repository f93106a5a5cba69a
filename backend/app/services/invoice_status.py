"""
Macchina a stati della fattura
Progetto: ISP Billing (Gestionale ISP)

Lo stato di una fattura è sempre derivato da residuo, totale e scadenza:
va ricalcolato a ogni variazione di paid_amount/due_amount.
"""

from datetime import date
from decimal import Decimal

from app.schemas.invoice import InvoiceStatus


def resolve_status(
    due_amount: Decimal,
    total_amount: Decimal,
    due_date: date,
    today: date,
) -> InvoiceStatus:
    """
    Ricava lo stato della fattura.

    - residuo <= 0: PAID
    - 0 < residuo < totale: PARTIAL_PAID
    - residuo == totale e scadenza superata: OVERDUE
    - altrimenti: PENDING
    """
    if due_amount <= 0:
        return InvoiceStatus.PAID
    if due_amount < total_amount:
        return InvoiceStatus.PARTIAL_PAID
    if due_amount == total_amount and today > due_date:
        return InvoiceStatus.OVERDUE
    return InvoiceStatus.PENDING


def apply_status(invoice, today: date) -> bool:
    """
    Ricalcola due_amount e status della fattura.

    Returns:
        True se lo stato memorizzato è cambiato
    """
    invoice.due_amount = invoice.total_amount - invoice.paid_amount
    new_status = resolve_status(
        invoice.due_amount, invoice.total_amount, invoice.due_date, today
    ).value
    changed = invoice.status != new_status
    invoice.status = new_status
    return changed
