"""Read-only fee rollups.

Each report builds one :class:`Report`; the JSON view and the file export both
render ``report.rows``, so the two never drift apart.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.conf import settings
from django.utils.text import slugify

from apps.core.academics.models import SchoolClass
from apps.core.schools.services import TenantContext

from .exceptions import ValidationError
from .ledger import MAX_MONEY, ZERO, InvoiceStatus, quantize_money, to_decimal
from .models import Invoice, Payment


@dataclass(frozen=True)
class Column:
    key: str
    header: str
    width: int = 14


@dataclass
class Report:
    name: str
    sheet_title: str
    columns: list[Column]
    rows: list[dict]
    filters: dict = field(default_factory=dict)
    summary: dict = field(default_factory=dict)

    @property
    def filename(self):
        parts = [self.name] + [str(value) for value in self.filters.values() if value not in (None, '')]
        return slugify('-'.join(parts)) or self.name

    @property
    def headers(self):
        return [column.header for column in self.columns]

    def values(self, row):
        return [row.get(column.key) for column in self.columns]


CLASS_SUMMARY_COLUMNS = [
    Column('classId', 'Class ID', 12),
    Column('className', 'Class', 18),
    Column('stream', 'Stream', 10),
    Column('classYear', 'Class Year', 10),
    Column('term', 'Term', 10),
    Column('year', 'Year', 10),
    Column('invoiceCount', 'Invoice Count', 14),
    Column('totalBilled', 'Total Billed', 14),
    Column('totalPaid', 'Total Paid', 14),
    Column('totalBalance', 'Total Balance', 14),
    Column('issued', 'ISSUED', 10),
    Column('partiallyPaid', 'PARTIALLY_PAID', 16),
    Column('paid', 'PAID', 10),
]

DEFAULTERS_COLUMNS = [
    Column('invoiceId', 'Invoice ID', 12),
    Column('admissionNo', 'Admission No', 14),
    Column('studentName', 'Student Name', 22),
    Column('total', 'Total', 12),
    Column('paid', 'Paid', 12),
    Column('balance', 'Balance', 12),
    Column('status', 'Status', 16),
    Column('createdAt', 'Created At', 24),
]

COLLECTIONS_COLUMNS = [
    Column('receiptNo', 'Receipt No', 24),
    Column('amount', 'Amount', 12),
    Column('method', 'Method', 10),
    Column('reference', 'Reference', 20),
    Column('receivedAt', 'Date', 24),
]


def _period_filters(context, class_id, year, term):
    if class_id in (None, '') or year in (None, '') or term in (None, ''):
        raise ValidationError('classId, year, and term are required.')
    try:
        class_pk = int(str(class_id).strip())
        year = int(str(year).strip())
    except (TypeError, ValueError):
        raise ValidationError('classId and year must be whole numbers.')

    school_class = SchoolClass.objects.for_tenant(context).filter(pk=class_pk).first()
    if school_class is None:
        raise ValidationError('Invalid classId', field='classId')
    return school_class, year, str(term).strip()


def _billed_invoices(context, school_class, year, term):
    return (
        Invoice.objects.for_tenant(context)
        .filter(school_class=school_class, year=year, term=term)
        .exclude(status=InvoiceStatus.VOID)
    )


def class_summary(context: TenantContext, *, class_id, year, term) -> Report:
    school_class, year, term = _period_filters(context, class_id, year, term)
    invoices = list(
        _billed_invoices(context, school_class, year, term).values('total', 'paid', 'balance', 'status')
    )

    status_counts = Counter(invoice['status'] for invoice in invoices)
    totals = {
        'invoiceCount': len(invoices),
        'totalBilled': quantize_money(sum((row['total'] for row in invoices), ZERO)),
        'totalPaid': quantize_money(sum((row['paid'] for row in invoices), ZERO)),
        'totalBalance': quantize_money(sum((row['balance'] for row in invoices), ZERO)),
    }
    row = {
        'classId': school_class.pk,
        'className': school_class.name,
        'stream': school_class.stream,
        'classYear': school_class.year,
        'term': term,
        'year': year,
        **totals,
        'issued': status_counts.get(InvoiceStatus.ISSUED.value, 0),
        'partiallyPaid': status_counts.get(InvoiceStatus.PARTIALLY_PAID.value, 0),
        'paid': status_counts.get(InvoiceStatus.PAID.value, 0),
    }
    return Report(
        name='fees-class-summary',
        sheet_title='Class Summary',
        columns=CLASS_SUMMARY_COLUMNS,
        rows=[row],
        filters={'className': school_class.label, 'term': term, 'year': year},
        summary={
            'classId': school_class.pk,
            'year': year,
            'term': term,
            **totals,
            'statusCounts': {status: status_counts.get(status, 0) for status in InvoiceStatus.values if status != InvoiceStatus.VOID},
        },
    )


def _clamp_limit(limit):
    default = settings.FEES_DEFAULTERS_DEFAULT_LIMIT
    try:
        value = int(str(limit).strip()) if limit not in (None, '') else default
    except (TypeError, ValueError):
        value = default
    return min(max(value, 1), settings.FEES_DEFAULTERS_MAX_LIMIT)


def _min_balance(value):
    if value in (None, ''):
        return quantize_money(settings.FEES_DEFAULTERS_DEFAULT_MIN_BALANCE)
    try:
        amount = to_decimal(value)
    except ValueError:
        raise ValidationError('minBalance must be a number.', field='minBalance')
    if not amount.is_finite():
        raise ValidationError('minBalance must be a number.', field='minBalance')
    try:
        threshold = quantize_money(amount)
    except InvalidOperation:
        threshold = None
    if threshold is None or abs(threshold) > MAX_MONEY:
        raise ValidationError(f'minBalance must be between -{MAX_MONEY} and {MAX_MONEY}.', field='minBalance')
    return threshold


def defaulters(context: TenantContext, *, class_id, year, term, min_balance=None, limit=None) -> Report:
    school_class, year, term = _period_filters(context, class_id, year, term)
    threshold = _min_balance(min_balance)
    limit = _clamp_limit(limit)

    invoices = (
        _billed_invoices(context, school_class, year, term)
        .filter(balance__gt=threshold)
        .select_related('student')
        .order_by('-balance', 'id')[:limit]
    )
    rows = [
        {
            'invoiceId': invoice.pk,
            'admissionNo': invoice.student.admission_number,
            'studentName': invoice.student.full_name,
            'total': invoice.total,
            'paid': invoice.paid,
            'balance': invoice.balance,
            'status': invoice.status,
            'createdAt': invoice.created_at,
        }
        for invoice in invoices
    ]
    return Report(
        name='fees-defaulters',
        sheet_title='Defaulters',
        columns=DEFAULTERS_COLUMNS,
        rows=rows,
        filters={'className': school_class.label, 'term': term, 'year': year},
        summary={
            'classId': school_class.pk,
            'year': year,
            'term': term,
            'minBalance': threshold,
            'limit': limit,
            'count': len(rows),
        },
    )


def _parse_day(value, field_name):
    if value in (None, ''):
        raise ValidationError('from and to are required (YYYY-MM-DD).', field=field_name)
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationError(f'{field_name} must be a date in YYYY-MM-DD format.', field=field_name)


def school_timezone(school):
    try:
        return ZoneInfo(school.timezone or 'UTC')
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo('UTC')


def collection_window(school, date_from, date_to):
    """Aware ``[start, end)`` bounds covering both calendar days in the school's zone."""
    tz = school_timezone(school)
    start = datetime.combine(date_from, time.min, tzinfo=tz)
    try:
        end = datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=tz)
    except OverflowError:
        raise ValidationError(f'to must be before {date.max.isoformat()}.', field='to')
    return start, end


def collections(context: TenantContext, *, date_from, date_to) -> Report:
    day_from = _parse_day(date_from, 'from')
    day_to = _parse_day(date_to, 'to')
    if day_from > day_to:
        raise ValidationError('from must be on or before to.', field='from')

    start, end = collection_window(context.school, day_from, day_to)
    payments = (
        Payment.objects.for_tenant(context)
        .filter(is_reversed=False, received_at__gte=start, received_at__lt=end)
        .order_by('-received_at', '-id')
    )

    rows = []
    total = ZERO
    by_method: dict[str, Decimal] = {}
    for payment in payments:
        rows.append(
            {
                'receiptNo': payment.receipt_no,
                'amount': payment.amount,
                'method': payment.method,
                'reference': payment.reference,
                'receivedAt': payment.received_at,
            }
        )
        total += payment.amount
        by_method[payment.method] = by_method.get(payment.method, ZERO) + payment.amount

    return Report(
        name='fees-collections',
        sheet_title='Collections',
        columns=COLLECTIONS_COLUMNS,
        rows=rows,
        filters={'from': day_from.isoformat(), 'to': day_to.isoformat()},
        summary={
            'from': day_from.isoformat(),
            'to': day_to.isoformat(),
            'totalCollected': quantize_money(total),
            'byMethod': {method: quantize_money(amount) for method, amount in sorted(by_method.items())},
            'count': len(rows),
        },
    )
