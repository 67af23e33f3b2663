"""Balance/status derivation and the single write path for invoice money fields.

Every code path that changes ``paid``, ``balance`` or ``status`` on an invoice
goes through :func:`apply_paid` or :func:`apply_void`. ``Invoice.save`` rejects
rows whose stored balance/status disagree with :func:`derive_balance_status`.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from django.db import models
from django.utils import timezone

ZERO = Decimal('0.00')
CENT = Decimal('0.01')
# Largest value a DecimalField(max_digits=12, decimal_places=2) column holds.
MAX_MONEY = Decimal('9999999999.99')


class InvoiceStatus(models.TextChoices):
    ISSUED = 'ISSUED', 'Issued'
    PARTIALLY_PAID = 'PARTIALLY_PAID', 'Partially paid'
    PAID = 'PAID', 'Paid'
    VOID = 'VOID', 'Void'

    @property
    def is_terminal(self) -> bool:
        return self is InvoiceStatus.VOID

    @property
    def accepts_payments(self) -> bool:
        return self is not InvoiceStatus.VOID


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value if value is not None else '0'))
    except (InvalidOperation, ValueError):
        raise ValueError(f'Not a decimal amount: {value!r}')


def quantize_money(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def derive_balance_status(total, paid) -> tuple[Decimal, InvoiceStatus]:
    total = quantize_money(total)
    paid = quantize_money(paid)
    balance = total - paid
    if balance < ZERO:
        balance = ZERO

    if balance == ZERO:
        return balance, InvoiceStatus.PAID
    if paid > ZERO:
        return balance, InvoiceStatus.PARTIALLY_PAID
    return balance, InvoiceStatus.ISSUED


def initial_state(total) -> dict:
    """Field values for a brand new invoice of ``total``."""
    total = quantize_money(total)
    balance, status = derive_balance_status(total, ZERO)
    return {'total': total, 'paid': ZERO, 'balance': balance, 'status': status}


def apply_paid(invoice, paid):
    """Store a new ``paid`` amount and the balance/status derived from it.

    The caller holds the invoice row lock. Never floors ``paid`` here: callers
    that subtract (reversal) decide the floor themselves.
    """
    if InvoiceStatus(invoice.status).is_terminal:
        raise ValueError('VOID invoices cannot change paid amount.')

    invoice.paid = quantize_money(paid)
    invoice.balance, invoice.status = derive_balance_status(invoice.total, invoice.paid)
    invoice.save(update_fields=['paid', 'balance', 'status', 'updated_at'])
    return invoice


def apply_void(invoice, *, actor, reason: str):
    invoice.status = InvoiceStatus.VOID
    invoice.balance = ZERO
    invoice.voided_at = timezone.now()
    invoice.voided_by = actor
    invoice.void_reason = reason[:255]
    invoice.save(
        update_fields=['status', 'balance', 'voided_at', 'voided_by', 'void_reason', 'updated_at']
    )
    return invoice
