from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from functools import partial

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Prefetch, Sum
from django.utils import timezone
from django.utils.crypto import get_random_string

from apps.core.academics.models import SchoolClass
from apps.core.schools.services import TenantContext
from apps.core.students.models import Student
from apps.core.users.audit import log_audit_event

from .exceptions import (
    ActivePaymentsError,
    AlreadyReversedError,
    ConflictError,
    DuplicateInvoiceError,
    InvoiceVoidError,
    NotFoundError,
    OverpaymentError,
    PolicyError,
    ReceiptCollisionError,
    ValidationError,
)
from .ledger import (
    MAX_MONEY,
    ZERO,
    InvoiceStatus,
    apply_paid,
    apply_void,
    initial_state,
    quantize_money,
    to_decimal,
)
from .models import FeePlan, Invoice, InvoiceLine, Payment, PaymentState

logger = logging.getLogger(__name__)

NUMBER_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'


def _parse_id(value, field_name):
    if value in (None, ''):
        raise ValidationError(f'{field_name} is required.', field=field_name)
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f'Invalid {field_name}', field=field_name)
    if parsed <= 0:
        raise ValidationError(f'Invalid {field_name}', field=field_name)
    return parsed


def _parse_year(value):
    try:
        year = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError('year must be a whole number.', field='year')
    if year < 1900 or year > 9999:
        raise ValidationError('year is out of range.', field='year')
    return year


def _required_text(value, field_name, message=None):
    text = str(value or '').strip()
    if not text:
        raise ValidationError(message or f'{field_name} is required.', field=field_name)
    return text


def parse_amount(value) -> Decimal:
    try:
        amount = to_decimal(value)
    except ValueError:
        raise ValidationError('amount must be a number > 0.', field='amount')
    if isinstance(value, bool) or not amount.is_finite() or amount <= 0:
        raise ValidationError('amount must be a number > 0.', field='amount')
    try:
        quantized = quantize_money(amount)
    except InvalidOperation:
        quantized = None
    if quantized is None or quantized > MAX_MONEY:
        raise ValidationError(f'amount cannot exceed {MAX_MONEY}.', field='amount')
    if quantized != amount:
        raise ValidationError('amount cannot have more than 2 decimal places.', field='amount')
    return quantized


def normalize_method(value) -> str:
    method = str(value or Payment.METHOD_CASH).strip().upper()
    if method not in Payment.METHODS:
        raise ValidationError(
            f"Invalid method. Use one of: {', '.join(Payment.METHODS)}",
            field='method',
        )
    return method


def _make_invoice_no(year) -> str:
    return f"{settings.FEES_INVOICE_PREFIX}-{year}-{get_random_string(6, NUMBER_ALPHABET)}"


def _make_receipt_no() -> str:
    date_part = timezone.localdate().strftime('%Y%m%d')
    return f"{settings.FEES_RECEIPT_PREFIX}-{date_part}-{get_random_string(6, NUMBER_ALPHABET)}"


def _audit_on_commit(context, action, target=None, details=None):
    transaction.on_commit(partial(log_audit_event, context, action, target=target, details=details))


def _active_paid(invoice) -> Decimal:
    value = invoice.payments.filter(is_reversed=False).aggregate(total=Sum('amount')).get('total')
    return quantize_money(value or ZERO)


def _locked_invoice(context: TenantContext, invoice_id) -> Invoice:
    invoice = (
        Invoice.objects.for_tenant(context)
        .select_for_update()
        .filter(pk=invoice_id)
        .first()
    )
    if invoice is None:
        raise NotFoundError('Invoice not found.')
    return invoice


def _invoice_queryset(context: TenantContext):
    payments = Payment.objects.order_by('-received_at', '-id')
    return (
        Invoice.objects.for_tenant(context)
        .select_related('student', 'school_class', 'fee_plan')
        .prefetch_related('lines', Prefetch('payments', queryset=payments))
    )


@transaction.atomic
def _create_invoice(context, *, student, school_class, plan, plan_items, year, term):
    if Invoice.objects.for_tenant(context).filter(student=student, year=year, term=term).exists():
        raise DuplicateInvoiceError()

    total = sum((item.amount for item in plan_items), ZERO)
    invoice = Invoice.objects.create(
        school=context.school,
        student=student,
        school_class=school_class,
        fee_plan=plan,
        year=year,
        term=term,
        invoice_no=_make_invoice_no(year),
        created_by=context.actor if getattr(context.actor, 'is_authenticated', False) else None,
        **initial_state(total),
    )
    InvoiceLine.objects.bulk_create(
        [
            InvoiceLine(
                invoice=invoice,
                fee_item=item.fee_item,
                description=item.fee_item.name,
                amount=quantize_money(item.amount),
            )
            for item in plan_items
        ]
    )

    _audit_on_commit(
        context,
        'FEES_INVOICE_GENERATED',
        target=invoice,
        details={
            'studentId': student.pk,
            'classId': school_class.pk,
            'year': year,
            'term': term,
            'total': invoice.total,
        },
    )
    return invoice


def generate_invoice(context: TenantContext, *, student_id, class_id, year, term, fee_plan_id) -> Invoice:
    """Bill one student for one year/term from a fee plan.

    Lines are copied from the plan, so later plan edits never touch the invoice.
    """
    student_id = _parse_id(student_id, 'studentId')
    class_id = _parse_id(class_id, 'classId')
    year = _parse_year(year)
    term = _required_text(term, 'term')
    fee_plan_id = _parse_id(fee_plan_id, 'feePlanId')

    student = Student.objects.for_tenant(context).filter(pk=student_id).first()
    if student is None:
        raise ValidationError('Invalid studentId', field='studentId')
    school_class = SchoolClass.objects.for_tenant(context).filter(pk=class_id).first()
    if school_class is None:
        raise ValidationError('Invalid classId', field='classId')

    plan = FeePlan.objects.for_tenant(context).filter(pk=fee_plan_id).first()
    if plan is None:
        raise NotFoundError('Fee plan not found.')

    if not settings.FEES_ALLOW_CROSS_PERIOD_PLANS:
        if (plan.school_class_id, plan.year, plan.term) != (school_class.pk, year, term):
            raise ValidationError(
                'Fee plan does not match the requested class/year/term.',
                field='feePlanId',
                plan={'classId': plan.school_class_id, 'year': plan.year, 'term': plan.term},
            )

    plan_items = list(plan.items.select_related('fee_item').order_by('position', 'id'))
    if not plan_items:
        raise ValidationError('Fee plan has no items.', field='feePlanId')

    try:
        invoice = _create_invoice(
            context,
            student=student,
            school_class=school_class,
            plan=plan,
            plan_items=plan_items,
            year=year,
            term=term,
        )
    except IntegrityError:
        if Invoice.objects.for_tenant(context).filter(student=student, year=year, term=term).exists():
            raise DuplicateInvoiceError()
        raise ConflictError('Invoice number collision. Retry.', code='duplicate_key')

    logger.info(
        'Invoice %s generated total=%s student=%s %s',
        invoice.invoice_no,
        invoice.total,
        student.pk,
        context.describe(),
    )
    return get_invoice(context, invoice.pk)


def _existing_payment(context: TenantContext, client_txn_id):
    return (
        Payment.objects.for_tenant(context)
        .select_related('invoice')
        .filter(client_txn_id=client_txn_id)
        .first()
    )


def _replay(context: TenantContext, payment: Payment) -> dict:
    logger.info(
        'Idempotent replay of payment %s key=%s %s',
        payment.pk,
        payment.client_txn_id,
        context.describe(),
    )
    log_audit_event(
        context,
        'FEES_PAYMENT_IDEMPOTENT',
        target=payment,
        details={'clientTxnId': payment.client_txn_id, 'invoiceId': payment.invoice_id},
    )
    invoice = Invoice.objects.for_tenant(context).get(pk=payment.invoice_id)
    return {'payment': payment, 'invoice': invoice, 'idempotent': True}


@transaction.atomic
def _record_payment(context, *, invoice_id, amount, method, reference, client_txn_id):
    invoice = _locked_invoice(context, invoice_id)

    if not invoice.state.accepts_payments:
        raise InvoiceVoidError()

    if amount > invoice.balance:
        raise OverpaymentError(
            f'Overpayment not allowed. Balance is {invoice.balance}.',
            balance=str(invoice.balance),
        )

    payment = Payment.objects.create(
        school=context.school,
        invoice=invoice,
        client_txn_id=client_txn_id,
        amount=amount,
        method=method,
        reference=reference,
        receipt_no=_make_receipt_no(),
        received_at=timezone.now(),
        received_by=context.actor if getattr(context.actor, 'is_authenticated', False) else None,
    )
    apply_paid(invoice, _active_paid(invoice))

    _audit_on_commit(
        context,
        'FEES_PAYMENT_POSTED',
        target=payment,
        details={
            'invoiceId': invoice.pk,
            'amount': amount,
            'method': method,
            'receiptNo': payment.receipt_no,
            'clientTxnId': client_txn_id,
        },
    )
    return payment, invoice


def post_payment(context: TenantContext, *, invoice_id, amount, method=None, reference='', client_txn_id=None) -> dict:
    """Record a payment against an invoice.

    Returns ``{'payment', 'invoice', 'idempotent'}``. A repeated ``client_txn_id``
    returns the stored payment instead of writing a second one.
    """
    client_txn_id = str(client_txn_id).strip()[:100] if client_txn_id not in (None, '') else None
    if client_txn_id:
        existing = _existing_payment(context, client_txn_id)
        if existing is not None:
            return _replay(context, existing)

    invoice_id = _parse_id(invoice_id, 'invoiceId')
    amount = parse_amount(amount)
    method = normalize_method(method)
    reference = str(reference or '').strip()[:120]

    try:
        payment, invoice = _record_payment(
            context,
            invoice_id=invoice_id,
            amount=amount,
            method=method,
            reference=reference,
            client_txn_id=client_txn_id,
        )
    except IntegrityError:
        # A concurrent request with the same key won the unique constraint.
        if client_txn_id:
            existing = _existing_payment(context, client_txn_id)
            if existing is not None:
                return _replay(context, existing)
        logger.warning('Payment key collision invoice=%s %s', invoice_id, context.describe())
        raise ReceiptCollisionError()

    logger.info(
        'Payment %s posted amount=%s invoice=%s balance=%s %s',
        payment.receipt_no,
        amount,
        invoice.pk,
        invoice.balance,
        context.describe(),
    )
    return {'payment': payment, 'invoice': invoice, 'idempotent': False}


@transaction.atomic
def reverse_payment(context: TenantContext, *, payment_id, reason) -> dict:
    reason = _required_text(reason, 'reason', 'Reversal reason is required.')
    payment_id = _parse_id(payment_id, 'paymentId')

    located = Payment.objects.for_tenant(context).filter(pk=payment_id).values('invoice_id').first()
    if located is None:
        raise NotFoundError('Payment not found.')

    # Invoice row first, then the payment row.
    invoice = _locked_invoice(context, located['invoice_id'])
    payment = Payment.objects.for_tenant(context).select_for_update().get(pk=payment_id)
    if payment.state == PaymentState.REVERSED:
        raise AlreadyReversedError()

    payment.is_reversed = True
    payment.reversed_at = timezone.now()
    payment.reversal_reason = reason[:255]
    payment.save(update_fields=['is_reversed', 'reversed_at', 'reversal_reason'])

    if not invoice.state.is_terminal:
        apply_paid(invoice, _active_paid(invoice))

    _audit_on_commit(
        context,
        'FEES_PAYMENT_REVERSED',
        target=payment,
        details={'invoiceId': invoice.pk, 'amount': payment.amount, 'reason': payment.reversal_reason},
    )
    logger.info(
        'Payment %s reversed invoice=%s balance=%s %s',
        payment.receipt_no,
        invoice.pk,
        invoice.balance,
        context.describe(),
    )
    return {'payment': payment, 'invoice': invoice}


@transaction.atomic
def void_invoice(context: TenantContext, *, invoice_id, reason) -> Invoice:
    reason = _required_text(reason, 'reason', 'Void reason is required.')
    invoice_id = _parse_id(invoice_id, 'invoiceId')

    invoice = _locked_invoice(context, invoice_id)
    if invoice.state.is_terminal:
        raise PolicyError('Invoice is already VOID.', code='already_void')

    active = invoice.payments.select_for_update().filter(is_reversed=False)
    active_count = active.count()
    if active_count:
        raise ActivePaymentsError(activePayments=active_count, paid=str(invoice.paid))

    apply_void(
        invoice,
        actor=context.actor if getattr(context.actor, 'is_authenticated', False) else None,
        reason=reason,
    )

    _audit_on_commit(
        context,
        'FEES_INVOICE_VOIDED',
        target=invoice,
        details={'reason': invoice.void_reason, 'total': invoice.total},
    )
    logger.info('Invoice %s voided %s', invoice.invoice_no, context.describe())
    return invoice


def list_invoices(context: TenantContext, *, student_id=None, class_id=None, year=None, term=None, status=None):
    queryset = _invoice_queryset(context)
    if student_id not in (None, ''):
        queryset = queryset.filter(student_id=_parse_id(student_id, 'studentId'))
    if class_id not in (None, ''):
        queryset = queryset.filter(school_class_id=_parse_id(class_id, 'classId'))
    if year not in (None, ''):
        queryset = queryset.filter(year=_parse_year(year))
    if term not in (None, ''):
        queryset = queryset.filter(term=str(term).strip())
    if status not in (None, ''):
        normalized = str(status).strip().upper()
        if normalized not in InvoiceStatus.values:
            raise ValidationError(
                f"Invalid status. Use one of: {', '.join(InvoiceStatus.values)}",
                field='status',
            )
        queryset = queryset.filter(status=normalized)
    return queryset.order_by('-created_at', '-id')


def get_invoice(context: TenantContext, invoice_id) -> Invoice:
    invoice = _invoice_queryset(context).filter(pk=_parse_id(invoice_id, 'invoiceId')).first()
    if invoice is None:
        raise NotFoundError('Invoice not found.')
    return invoice


def get_payment(context: TenantContext, payment_id) -> Payment:
    payment = (
        Payment.objects.for_tenant(context)
        .select_related('invoice__student', 'invoice__school_class', 'received_by')
        .filter(pk=_parse_id(payment_id, 'paymentId'))
        .first()
    )
    if payment is None:
        raise NotFoundError('Payment not found.')
    return payment


def _student_or_404(context, student_id) -> Student:
    student = Student.objects.for_tenant(context).filter(pk=_parse_id(student_id, 'studentId')).first()
    if student is None:
        raise NotFoundError('Student not found.')
    return student


def _student_invoices(context, student, year, term):
    year = _parse_year(year) if year not in (None, '') else None
    term = str(term).strip() if term not in (None, '') else None
    queryset = (
        _invoice_queryset(context)
        .filter(student=student)
        .exclude(status=InvoiceStatus.VOID)
    )
    if year is not None:
        queryset = queryset.filter(year=year)
    if term:
        queryset = queryset.filter(term=term)
    return year, term, queryset


def _totals(invoices) -> dict:
    totals = {'totalBilled': ZERO, 'totalPaid': ZERO, 'totalBalance': ZERO, 'invoiceCount': 0}
    for invoice in invoices:
        totals['totalBilled'] += invoice.total
        totals['totalPaid'] += invoice.paid
        totals['totalBalance'] += invoice.balance
        totals['invoiceCount'] += 1
    return totals


def student_summary(context: TenantContext, *, student_id, year=None, term=None) -> dict:
    student = _student_or_404(context, student_id)
    year, term, queryset = _student_invoices(context, student, year, term)
    invoices = list(queryset.order_by('-created_at', '-id'))
    return {
        'student': student,
        'filters': {'year': year, 'term': term},
        'totals': _totals(invoices),
        'latestInvoice': invoices[0] if invoices else None,
    }


def student_statement(context: TenantContext, *, student_id, year=None, term=None) -> dict:
    """Non-void invoices for a student plus a time-ordered billing/payment timeline."""
    student = _student_or_404(context, student_id)
    year, term, queryset = _student_invoices(context, student, year, term)
    invoices = list(queryset.order_by('created_at', 'id'))

    timeline = []
    for invoice in invoices:
        timeline.append(
            {
                'type': 'INVOICE',
                'at': invoice.created_at,
                'ref': invoice.pk,
                'invoiceNo': invoice.invoice_no,
                'year': invoice.year,
                'term': invoice.term,
                'amount': invoice.total,
                'status': invoice.status,
            }
        )
        for payment in invoice.payments.all():
            if payment.is_reversed:
                continue
            timeline.append(
                {
                    'type': 'PAYMENT',
                    'at': payment.received_at,
                    'ref': payment.pk,
                    'receiptNo': payment.receipt_no,
                    'method': payment.method,
                    'reference': payment.reference,
                    'amount': payment.amount,
                }
            )
    timeline.sort(key=lambda event: (event['at'], event['type'] != 'INVOICE', event['ref']))

    return {
        'student': student,
        'filters': {'year': year, 'term': term},
        'totals': _totals(invoices),
        'invoices': invoices,
        'timeline': timeline,
    }
