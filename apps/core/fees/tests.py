import csv
from datetime import date, datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from io import BytesIO, StringIO
from unittest import mock

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from django.utils import timezone
from openpyxl import load_workbook
from rest_framework.test import APIClient

from apps.core.academics.models import SchoolClass
from apps.core.schools.models import School, Subscription
from apps.core.schools.services import build_tenant_context
from apps.core.students.models import Student
from apps.core.users.models import AuditLog

from . import reports, services
from .exceptions import (
    ActivePaymentsError,
    AlreadyReversedError,
    DuplicateInvoiceError,
    InvoiceVoidError,
    NotFoundError,
    OverpaymentError,
    PolicyError,
    ReceiptCollisionError,
    ValidationError,
)
from .exports import plain_rows, report_to_csv_bytes
from .ledger import InvoiceStatus, derive_balance_status
from .models import FeeItem, FeePlan, FeePlanItem, Invoice, InvoiceLine, Payment, PaymentState


class BalanceEngineTests(SimpleTestCase):
    def test_derivation_grid(self):
        cases = [
            ('5000', '0', Decimal('5000.00'), InvoiceStatus.ISSUED),
            ('5000', '2000', Decimal('3000.00'), InvoiceStatus.PARTIALLY_PAID),
            ('5000', '4999.99', Decimal('0.01'), InvoiceStatus.PARTIALLY_PAID),
            ('5000', '5000', Decimal('0.00'), InvoiceStatus.PAID),
            ('5000', '6000', Decimal('0.00'), InvoiceStatus.PAID),
            ('0', '0', Decimal('0.00'), InvoiceStatus.PAID),
        ]
        for total, paid, balance, status in cases:
            with self.subTest(total=total, paid=paid):
                self.assertEqual(derive_balance_status(Decimal(total), Decimal(paid)), (balance, status))

    def test_derivation_is_deterministic_and_never_void(self):
        for total in range(0, 3001, 250):
            for paid in range(0, 3501, 250):
                first = derive_balance_status(total, paid)
                self.assertEqual(first, derive_balance_status(total, paid))
                self.assertNotEqual(first[1], InvoiceStatus.VOID)
                self.assertEqual(first[0], max(Decimal(total - paid), Decimal('0')))


class FeesBaseTestCase(TestCase):
    year = 2026
    term = '1'

    def setUp(self):
        user_model = get_user_model()

        self.school = School.objects.create(name='Fee School', code='fee_school')
        self.subscription = Subscription.objects.create(
            school=self.school,
            plan_code='STANDARD',
            status=Subscription.STATUS_ACTIVE,
            entitlements={Subscription.FEES_READ: True, Subscription.FEES_WRITE: True},
        )
        self.school_class = SchoolClass.objects.create(
            school=self.school,
            name='Grade 4',
            stream='East',
            year=self.year,
            display_order=4,
        )
        self.student = self.make_student('FEE-001', 'Amina', 'Otieno')
        self.student_two = self.make_student('FEE-002', 'Brian', 'Kamau')
        self.student_three = self.make_student('FEE-003', 'Cheri', 'Wanjiru')

        self.school_admin = user_model.objects.create_user(
            username='fees_admin',
            password='pass12345',
            role='schooladmin',
            school=self.school,
        )
        self.accountant = user_model.objects.create_user(
            username='fees_accountant',
            password='pass12345',
            role='accountant',
            school=self.school,
        )
        self.teacher = user_model.objects.create_user(
            username='fees_teacher',
            password='pass12345',
            role='teacher',
            school=self.school,
        )

        self.tuition = FeeItem.objects.create(school=self.school, name='Tuition', code='TUI')
        self.activity = FeeItem.objects.create(school=self.school, name='Activity', code='ACT')
        self.plan = self.make_plan(self.school_class, self.term, [(self.tuition, '4000.00'), (self.activity, '1000.00')])

        self.context = build_tenant_context(school=self.school, actor=self.school_admin)
        self.bursar_context = build_tenant_context(school=self.school, actor=self.accountant)

        self.other_school = School.objects.create(name='Other School', code='other_school')
        self.other_class = SchoolClass.objects.create(school=self.other_school, name='Grade 4', stream='East')
        self.other_student = Student.objects.create(
            school=self.other_school,
            admission_number='OTH-001',
            first_name='Dan',
            current_class=self.other_class,
        )
        other_item = FeeItem.objects.create(school=self.other_school, name='Tuition')
        self.other_plan = FeePlan.objects.create(
            school=self.other_school,
            school_class=self.other_class,
            year=self.year,
            term=self.term,
        )
        FeePlanItem.objects.create(plan=self.other_plan, fee_item=other_item, amount=Decimal('700.00'))
        self.other_context = build_tenant_context(school=self.other_school)

    def make_student(self, admission_number, first_name, last_name=''):
        return Student.objects.create(
            school=self.school,
            admission_number=admission_number,
            first_name=first_name,
            last_name=last_name,
            current_class=self.school_class,
        )

    def make_plan(self, school_class, term, items):
        plan = FeePlan.objects.create(
            school=self.school,
            school_class=school_class,
            year=self.year,
            term=term,
            title=f'{school_class.label} T{term}',
        )
        for position, (fee_item, amount) in enumerate(items):
            FeePlanItem.objects.create(plan=plan, fee_item=fee_item, amount=Decimal(amount), position=position)
        return plan

    def generate(self, student=None, plan=None, term=None, context=None):
        plan = plan or self.plan
        return services.generate_invoice(
            context or self.context,
            student_id=(student or self.student).pk,
            class_id=plan.school_class_id,
            year=self.year,
            term=term or plan.term,
            fee_plan_id=plan.pk,
        )

    def pay(self, invoice, amount, **kwargs):
        return services.post_payment(self.bursar_context, invoice_id=invoice.pk, amount=amount, **kwargs)

    def assertLedgerConsistent(self, invoice):
        invoice.refresh_from_db()
        active = sum(
            (payment.amount for payment in invoice.payments.filter(is_reversed=False)),
            Decimal('0.00'),
        )
        self.assertEqual(invoice.paid, active)
        if invoice.status != InvoiceStatus.VOID:
            self.assertEqual(invoice.balance, max(invoice.total - invoice.paid, Decimal('0.00')))


class InvoiceGenerationTests(FeesBaseTestCase):
    def test_generate_snapshots_plan_lines(self):
        invoice = self.generate()

        self.assertEqual(invoice.status, InvoiceStatus.ISSUED)
        self.assertEqual(invoice.total, Decimal('5000.00'))
        self.assertEqual(invoice.paid, Decimal('0.00'))
        self.assertEqual(invoice.balance, Decimal('5000.00'))
        self.assertTrue(invoice.invoice_no.startswith(f'INV-{self.year}-'))
        self.assertEqual(
            [(line.description, line.amount) for line in invoice.lines.all()],
            [('Tuition', Decimal('4000.00')), ('Activity', Decimal('1000.00'))],
        )

        FeePlanItem.objects.filter(plan=self.plan, fee_item=self.tuition).update(amount=Decimal('9999.00'))
        self.tuition.name = 'Tuition (renamed)'
        self.tuition.save()

        invoice.refresh_from_db()
        self.assertEqual(invoice.total, Decimal('5000.00'))
        self.assertEqual(sum(line.amount for line in invoice.lines.all()), invoice.total)
        self.assertEqual(invoice.lines.first().description, 'Tuition')

    def test_duplicate_generation_is_a_conflict(self):
        self.generate()
        with self.assertRaises(DuplicateInvoiceError) as ctx:
            self.generate()
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertFalse(ctx.exception.retryable)
        self.assertEqual(Invoice.objects.filter(student=self.student).count(), 1)

    def test_missing_fields_are_rejected(self):
        with self.assertRaises(ValidationError):
            services.generate_invoice(
                self.context,
                student_id=self.student.pk,
                class_id=self.school_class.pk,
                year=self.year,
                term='  ',
                fee_plan_id=self.plan.pk,
            )
        with self.assertRaises(ValidationError):
            services.generate_invoice(
                self.context,
                student_id=None,
                class_id=self.school_class.pk,
                year=self.year,
                term=self.term,
                fee_plan_id=self.plan.pk,
            )

    def test_references_must_resolve_inside_tenant(self):
        with self.assertRaises(ValidationError):
            self.generate(student=self.other_student)

        with self.assertRaises(NotFoundError):
            services.generate_invoice(
                self.context,
                student_id=self.student.pk,
                class_id=self.school_class.pk,
                year=self.year,
                term=self.term,
                fee_plan_id=self.other_plan.pk,
            )

        with self.assertRaises(ValidationError):
            services.generate_invoice(
                self.context,
                student_id=self.student.pk,
                class_id=self.other_class.pk,
                year=self.year,
                term=self.term,
                fee_plan_id=self.plan.pk,
            )
        self.assertFalse(Invoice.objects.exists())

    def test_plan_must_match_requested_period(self):
        with self.assertRaises(ValidationError):
            self.generate(term='2')

    @override_settings(FEES_ALLOW_CROSS_PERIOD_PLANS=True)
    def test_cross_period_plan_reuse_when_enabled(self):
        invoice = self.generate(term='2')
        self.assertEqual(invoice.term, '2')
        self.assertEqual(invoice.total, Decimal('5000.00'))

    def test_plan_without_items_is_rejected(self):
        empty = FeePlan.objects.create(school=self.school, school_class=self.school_class, year=self.year, term='3')
        with self.assertRaises(ValidationError):
            self.generate(plan=empty)

    def test_generation_audit_runs_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True):
            invoice = self.generate()
        log = AuditLog.objects.get(action='FEES_INVOICE_GENERATED')
        self.assertEqual(log.school, self.school)
        self.assertEqual(log.user, self.school_admin)
        self.assertEqual(log.target_id, str(invoice.pk))
        self.assertEqual(log.details['total'], '5000.00')


class PaymentLedgerTests(FeesBaseTestCase):
    def setUp(self):
        super().setUp()
        self.invoice = self.generate()

    def test_partial_then_full_payment(self):
        result = self.pay(self.invoice, '2000')
        self.assertFalse(result['idempotent'])
        self.assertEqual(result['invoice'].status, InvoiceStatus.PARTIALLY_PAID)
        self.assertEqual(result['invoice'].balance, Decimal('3000.00'))
        self.assertTrue(result['payment'].receipt_no.startswith('RCPT-'))
        self.assertEqual(result['payment'].received_by, self.accountant)

        result = self.pay(self.invoice, Decimal('3000'))
        self.assertEqual(result['invoice'].status, InvoiceStatus.PAID)
        self.assertEqual(result['invoice'].balance, Decimal('0.00'))
        self.assertEqual(result['invoice'].paid, Decimal('5000.00'))
        self.assertLedgerConsistent(self.invoice)

    def test_reversal_restores_invoice(self):
        payment = self.pay(self.invoice, '3000')['payment']

        result = services.reverse_payment(self.bursar_context, payment_id=payment.pk, reason='wrong student')

        self.assertTrue(result['payment'].is_reversed)
        self.assertEqual(result['payment'].reversal_reason, 'wrong student')
        self.assertIsNotNone(result['payment'].reversed_at)
        self.assertEqual(result['invoice'].status, InvoiceStatus.ISSUED)
        self.assertEqual(result['invoice'].paid, Decimal('0.00'))
        self.assertEqual(result['invoice'].balance, self.invoice.total)
        self.assertLedgerConsistent(self.invoice)

    def test_reversal_touches_only_reversal_and_ledger_fields(self):
        payment = self.pay(self.invoice, '1500')['payment']
        self.pay(self.invoice, '500')
        payment_before = Payment.objects.filter(pk=payment.pk).values().get()
        invoice_before = Invoice.objects.filter(pk=self.invoice.pk).values().get()

        services.reverse_payment(self.bursar_context, payment_id=payment.pk, reason='duplicate entry')

        payment_after = Payment.objects.filter(pk=payment.pk).values().get()
        invoice_after = Invoice.objects.filter(pk=self.invoice.pk).values().get()
        payment_changed = {key for key in payment_before if payment_before[key] != payment_after[key]}
        invoice_changed = {key for key in invoice_before if invoice_before[key] != invoice_after[key]}

        self.assertEqual(payment_changed, {'is_reversed', 'reversed_at', 'reversal_reason'})
        self.assertTrue(invoice_changed <= {'paid', 'balance', 'status', 'updated_at'})
        self.assertEqual(invoice_after['paid'], Decimal('500.00'))
        self.assertEqual(invoice_after['balance'], Decimal('4500.00'))

    def test_reversal_is_one_way(self):
        payment = self.pay(self.invoice, '1000')['payment']
        self.assertEqual(payment.state, PaymentState.POSTED)
        services.reverse_payment(self.bursar_context, payment_id=payment.pk, reason='typo')
        payment.refresh_from_db()
        self.assertEqual(payment.state, PaymentState.REVERSED)

        with self.assertRaises(AlreadyReversedError) as ctx:
            services.reverse_payment(self.bursar_context, payment_id=payment.pk, reason='again')
        self.assertEqual(ctx.exception.status_code, 400)

        payment.refresh_from_db()
        self.assertEqual(payment.reversal_reason, 'typo')
        self.assertLedgerConsistent(self.invoice)

    def test_reversal_requires_reason_and_tenant(self):
        payment = self.pay(self.invoice, '1000')['payment']
        with self.assertRaises(ValidationError):
            services.reverse_payment(self.bursar_context, payment_id=payment.pk, reason='   ')
        with self.assertRaises(NotFoundError):
            services.reverse_payment(self.other_context, payment_id=payment.pk, reason='not mine')
        payment.refresh_from_db()
        self.assertFalse(payment.is_reversed)

    def test_overpayment_is_rejected_without_side_effects(self):
        with self.assertRaises(OverpaymentError) as ctx:
            self.pay(self.invoice, '6000')

        self.assertEqual(ctx.exception.extra['balance'], '5000.00')
        self.assertIn('Balance is 5000.00', ctx.exception.message)
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.status, InvoiceStatus.ISSUED)
        self.assertEqual(self.invoice.balance, Decimal('5000.00'))
        self.assertFalse(Payment.objects.exists())

    def test_overpayment_checked_against_current_balance(self):
        self.pay(self.invoice, '4000')
        with self.assertRaises(OverpaymentError):
            self.pay(self.invoice, '1000.01')
        self.pay(self.invoice, '1000.00')
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.status, InvoiceStatus.PAID)

    def test_amount_and_method_validation(self):
        for amount in ('0', '-5', 'abc', 'NaN', 'Infinity', '1.005', '1e40', '10000000000', None, True):
            with self.subTest(amount=amount):
                with self.assertRaises(ValidationError):
                    self.pay(self.invoice, amount)

        with self.assertRaises(ValidationError):
            self.pay(self.invoice, '100', method='BITCOIN')

        self.assertEqual(self.pay(self.invoice, '100', method=' mpesa ')['payment'].method, 'MPESA')
        self.assertEqual(self.pay(self.invoice, '100')['payment'].method, 'CASH')
        self.assertEqual(Payment.objects.count(), 2)

    def test_unknown_or_foreign_invoice_is_not_found(self):
        other_invoice = self.generate(student=self.other_student, plan=self.other_plan, context=self.other_context)
        with self.assertRaises(NotFoundError):
            self.pay(other_invoice, '100')
        with self.assertRaises(NotFoundError):
            services.post_payment(self.bursar_context, invoice_id=999999, amount='100')

    def test_idempotent_replay_returns_original_payment(self):
        first = self.pay(self.invoice, '2000', client_txn_id='abc')
        second = self.pay(self.invoice, '2000', client_txn_id='abc')

        self.assertFalse(first['idempotent'])
        self.assertTrue(second['idempotent'])
        self.assertEqual(first['payment'].pk, second['payment'].pk)
        self.assertEqual(self.invoice.payments.count(), 1)
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.paid, Decimal('2000.00'))
        self.assertTrue(AuditLog.objects.filter(action='FEES_PAYMENT_IDEMPOTENT').exists())

    def test_idempotency_key_is_per_school(self):
        self.pay(self.invoice, '100', client_txn_id='shared-key')
        other_invoice = self.generate(student=self.other_student, plan=self.other_plan, context=self.other_context)
        result = services.post_payment(self.other_context, invoice_id=other_invoice.pk, amount='100', client_txn_id='shared-key')
        self.assertFalse(result['idempotent'])
        self.assertEqual(Payment.objects.filter(client_txn_id='shared-key').count(), 2)

    def test_concurrent_duplicate_key_falls_back_to_stored_payment(self):
        first = self.pay(self.invoice, '1000', client_txn_id='race-1')

        # The pre-check misses the row a concurrent request just committed.
        with mock.patch.object(services, '_existing_payment', side_effect=[None, first['payment']]):
            result = self.pay(self.invoice, '1000', client_txn_id='race-1')

        self.assertTrue(result['idempotent'])
        self.assertEqual(result['payment'].pk, first['payment'].pk)
        self.assertEqual(Payment.objects.count(), 1)
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.paid, Decimal('1000.00'))

    def test_receipt_number_collision_is_retryable_conflict(self):
        with mock.patch.object(services, '_make_receipt_no', return_value='RCPT-20260101-AAAAAA'):
            self.pay(self.invoice, '1000')
            with self.assertRaises(ReceiptCollisionError) as ctx:
                self.pay(self.invoice, '500')

        self.assertEqual(ctx.exception.status_code, 409)
        self.assertTrue(ctx.exception.as_payload()['retryable'])
        self.assertLedgerConsistent(self.invoice)
        self.assertEqual(self.invoice.paid, Decimal('1000.00'))

    def test_paid_matches_active_payments_through_mixed_history(self):
        first = self.pay(self.invoice, '1200')['payment']
        self.pay(self.invoice, '800')
        services.reverse_payment(self.bursar_context, payment_id=first.pk, reason='bounced cheque')
        self.pay(self.invoice, '4200')
        self.assertLedgerConsistent(self.invoice)
        self.assertEqual(self.invoice.status, InvoiceStatus.PAID)

    def test_payment_audit_runs_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True):
            payment = self.pay(self.invoice, '250', method='bank', reference='TX-1')['payment']
        log = AuditLog.objects.get(action='FEES_PAYMENT_POSTED')
        self.assertEqual(log.user, self.accountant)
        self.assertEqual(log.target_model, 'Payment')
        self.assertEqual(log.target_id, str(payment.pk))
        self.assertEqual(log.details['method'], 'BANK')

    def test_failed_payment_emits_no_audit(self):
        with self.captureOnCommitCallbacks(execute=True):
            with self.assertRaises(OverpaymentError):
                self.pay(self.invoice, '9000')
        self.assertFalse(AuditLog.objects.filter(action='FEES_PAYMENT_POSTED').exists())


class InvoiceVoidTests(FeesBaseTestCase):
    def setUp(self):
        super().setUp()
        self.invoice = self.generate()

    def test_void_blocked_until_payments_reversed(self):
        payment = self.pay(self.invoice, '1000')['payment']

        with self.assertRaises(ActivePaymentsError) as ctx:
            services.void_invoice(self.context, invoice_id=self.invoice.pk, reason='student left')
        self.assertIn('Reverse payments first', ctx.exception.message)
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.status, InvoiceStatus.PARTIALLY_PAID)

        services.reverse_payment(self.bursar_context, payment_id=payment.pk, reason='refund')
        invoice = services.void_invoice(self.context, invoice_id=self.invoice.pk, reason='student left')

        self.assertEqual(invoice.status, InvoiceStatus.VOID)
        self.assertEqual(invoice.balance, Decimal('0.00'))
        self.assertEqual(invoice.void_reason, 'student left')
        self.assertEqual(invoice.voided_by, self.school_admin)
        self.assertIsNotNone(invoice.voided_at)
        self.assertEqual(invoice.lines.count(), 2)

    def test_void_is_terminal(self):
        services.void_invoice(self.context, invoice_id=self.invoice.pk, reason='billing error')

        with self.assertRaises(InvoiceVoidError):
            self.pay(self.invoice, '100')
        with self.assertRaises(PolicyError):
            services.void_invoice(self.context, invoice_id=self.invoice.pk, reason='again')
        self.assertFalse(Payment.objects.exists())

    def test_void_requires_reason_and_tenant(self):
        with self.assertRaises(ValidationError):
            services.void_invoice(self.context, invoice_id=self.invoice.pk, reason='')
        with self.assertRaises(NotFoundError):
            services.void_invoice(self.other_context, invoice_id=self.invoice.pk, reason='not mine')
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.status, InvoiceStatus.ISSUED)


class LedgerModelInvariantTests(FeesBaseTestCase):
    def setUp(self):
        super().setUp()
        self.invoice = self.generate()

    def test_status_cannot_be_written_directly(self):
        invoice = Invoice.objects.get(pk=self.invoice.pk)
        invoice.status = InvoiceStatus.PAID
        with self.assertRaises(DjangoValidationError):
            invoice.save()

        invoice = Invoice.objects.get(pk=self.invoice.pk)
        invoice.balance = Decimal('10.00')
        with self.assertRaises(DjangoValidationError):
            invoice.save()

    def test_total_is_fixed(self):
        invoice = Invoice.objects.get(pk=self.invoice.pk)
        invoice.total = Decimal('6000.00')
        invoice.balance = Decimal('6000.00')
        with self.assertRaises(DjangoValidationError):
            invoice.save()

    def test_void_invoice_cannot_be_reopened(self):
        services.void_invoice(self.context, invoice_id=self.invoice.pk, reason='cancelled')
        invoice = Invoice.objects.get(pk=self.invoice.pk)
        invoice.status = InvoiceStatus.ISSUED
        invoice.balance = invoice.total
        with self.assertRaises(DjangoValidationError):
            invoice.save()

    def test_payment_cannot_be_unreversed_or_edited(self):
        payment = self.pay(self.invoice, '700')['payment']

        payment.amount = Decimal('600.00')
        with self.assertRaises(DjangoValidationError):
            payment.save()

        services.reverse_payment(self.bursar_context, payment_id=payment.pk, reason='error')
        payment = Payment.objects.get(pk=payment.pk)
        payment.is_reversed = False
        with self.assertRaises(DjangoValidationError):
            payment.save()

    def test_financial_records_cannot_be_deleted(self):
        payment = self.pay(self.invoice, '100')['payment']
        with self.assertRaises(DjangoValidationError):
            payment.delete()
        with self.assertRaises(DjangoValidationError):
            self.invoice.delete()
        with self.assertRaises(DjangoValidationError):
            self.invoice.lines.first().delete()
        self.assertTrue(Payment.objects.filter(pk=payment.pk).exists())

    def test_invoice_lines_are_immutable(self):
        line = InvoiceLine.objects.filter(invoice=self.invoice).first()
        line.amount = Decimal('1.00')
        with self.assertRaises(DjangoValidationError):
            line.save()

    def test_fee_item_delete_is_soft(self):
        self.tuition.delete()
        self.tuition.refresh_from_db()
        self.assertFalse(self.tuition.is_active)
        self.assertEqual(self.invoice.lines.filter(fee_item=self.tuition).count(), 1)


class ReportTests(FeesBaseTestCase):
    def setUp(self):
        super().setUp()
        self.invoice_one = self.generate(self.student)
        self.invoice_two = self.generate(self.student_two)
        self.invoice_three = self.generate(self.student_three)
        self.void_student = self.make_student('FEE-004', 'Dora')
        self.invoice_void = self.generate(self.void_student)
        services.void_invoice(self.context, invoice_id=self.invoice_void.pk, reason='duplicate')

        self.pay(self.invoice_two, '2000', method='MPESA')
        self.pay(self.invoice_three, '5000', method='CASH')
        reversed_payment = self.pay(self.invoice_one, '300', method='BANK')['payment']
        services.reverse_payment(self.bursar_context, payment_id=reversed_payment.pk, reason='bounced')

    def test_class_summary_excludes_void(self):
        report = reports.class_summary(self.context, class_id=self.school_class.pk, year=self.year, term=self.term)

        self.assertEqual(report.summary['invoiceCount'], 3)
        self.assertEqual(report.summary['totalBilled'], Decimal('15000.00'))
        self.assertEqual(report.summary['totalPaid'], Decimal('7000.00'))
        self.assertEqual(report.summary['totalBalance'], Decimal('8000.00'))
        self.assertEqual(report.summary['statusCounts'], {'ISSUED': 1, 'PARTIALLY_PAID': 1, 'PAID': 1})
        row = report.rows[0]
        self.assertEqual((row['className'], row['stream'], row['classYear']), ('Grade 4', 'East', self.year))
        self.assertEqual((row['issued'], row['partiallyPaid'], row['paid']), (1, 1, 1))
        self.assertEqual(report.filename, 'fees-class-summary-grade-4-east-1-2026')

    def test_report_filters_are_required(self):
        with self.assertRaises(ValidationError):
            reports.class_summary(self.context, class_id=self.school_class.pk, year=None, term=self.term)
        with self.assertRaises(ValidationError):
            reports.defaulters(self.context, class_id='', year=self.year, term=self.term)
        with self.assertRaises(ValidationError):
            reports.class_summary(self.other_context, class_id=self.school_class.pk, year=self.year, term=self.term)

    def test_defaulters_ordered_by_balance(self):
        report = reports.defaulters(self.context, class_id=self.school_class.pk, year=self.year, term=self.term)

        self.assertEqual([row['invoiceId'] for row in report.rows], [self.invoice_one.pk, self.invoice_two.pk])
        self.assertEqual(report.rows[0]['studentName'], 'Amina Otieno')
        self.assertEqual(report.rows[0]['balance'], Decimal('5000.00'))
        self.assertEqual(report.summary['minBalance'], Decimal('1.00'))
        self.assertEqual(report.summary['limit'], 50)

    def test_defaulters_threshold_and_limit(self):
        report = reports.defaulters(
            self.context,
            class_id=self.school_class.pk,
            year=self.year,
            term=self.term,
            min_balance='3000',
        )
        self.assertEqual([row['invoiceId'] for row in report.rows], [self.invoice_one.pk])

        self.assertEqual(
            reports.defaulters(self.context, class_id=self.school_class.pk, year=self.year, term=self.term, limit='0').summary['limit'],
            1,
        )
        self.assertEqual(
            reports.defaulters(self.context, class_id=self.school_class.pk, year=self.year, term=self.term, limit='9000').summary['limit'],
            500,
        )
        with self.assertRaises(ValidationError):
            reports.defaulters(self.context, class_id=self.school_class.pk, year=self.year, term=self.term, min_balance='lots')

    def test_defaulters_threshold_outside_money_range(self):
        for value in ('1e40', '-1e40', '10000000000'):
            with self.subTest(min_balance=value):
                with self.assertRaises(ValidationError) as ctx:
                    reports.defaulters(
                        self.context,
                        class_id=self.school_class.pk,
                        year=self.year,
                        term=self.term,
                        min_balance=value,
                    )
                self.assertEqual(ctx.exception.extra['field'], 'minBalance')

        report = reports.defaulters(
            self.context,
            class_id=self.school_class.pk,
            year=self.year,
            term=self.term,
            min_balance='9999999999.99',
        )
        self.assertEqual(report.rows, [])

    def test_collections_excludes_reversed(self):
        today = timezone.now().astimezone(dt_timezone.utc).date().isoformat()
        report = reports.collections(self.context, date_from=today, date_to=today)

        self.assertEqual(len(report.rows), 2)
        self.assertEqual(report.summary['totalCollected'], Decimal('7000.00'))
        self.assertEqual(report.summary['byMethod'], {'CASH': Decimal('5000.00'), 'MPESA': Decimal('2000.00')})
        self.assertEqual(report.filename, f'fees-collections-{today}-{today}')

        other = reports.collections(self.other_context, date_from=today, date_to=today)
        self.assertEqual(other.rows, [])

    def test_collections_date_validation(self):
        with self.assertRaises(ValidationError):
            reports.collections(self.context, date_from='2026-02-01', date_to=None)
        with self.assertRaises(ValidationError):
            reports.collections(self.context, date_from='2026-02-30', date_to='2026-03-01')
        with self.assertRaises(ValidationError):
            reports.collections(self.context, date_from='2026-03-02', date_to='2026-03-01')
        with self.assertRaises(ValidationError) as ctx:
            reports.collections(self.context, date_from='2026-01-01', date_to='9999-12-31')
        self.assertEqual(ctx.exception.extra['field'], 'to')

    def test_collection_window_uses_school_timezone(self):
        self.school.timezone = 'Africa/Nairobi'
        start, end = reports.collection_window(self.school, date(2026, 3, 1), date(2026, 3, 2))
        self.assertEqual(start.astimezone(dt_timezone.utc), datetime(2026, 2, 28, 21, 0, tzinfo=dt_timezone.utc))
        self.assertEqual(end.astimezone(dt_timezone.utc), datetime(2026, 3, 2, 21, 0, tzinfo=dt_timezone.utc))

    def test_structured_and_csv_rows_match(self):
        report = reports.defaulters(self.context, class_id=self.school_class.pk, year=self.year, term=self.term)
        json_rows = plain_rows(report)

        csv_rows = list(csv.reader(StringIO(report_to_csv_bytes(report).decode('utf-8'))))
        self.assertEqual(csv_rows[0], report.headers)
        self.assertEqual(
            csv_rows[1:],
            [[str(row[column.key]) for column in report.columns] for row in json_rows],
        )


class FeesApiTestCase(FeesBaseTestCase):
    def setUp(self):
        super().setUp()
        self.api = APIClient()
        self.api.force_authenticate(user=self.school_admin)

    def login(self, user):
        self.api.force_authenticate(user=user)

    def generate_via_api(self, student=None):
        return self.api.post(
            reverse('fees:invoice_generate'),
            {
                'studentId': (student or self.student).pk,
                'classId': self.school_class.pk,
                'year': self.year,
                'term': self.term,
                'feePlanId': self.plan.pk,
            },
            format='json',
        )


class FeesApiTests(FeesApiTestCase):
    def test_generate_invoice(self):
        response = self.generate_via_api()

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body['status'], 'ISSUED')
        self.assertEqual(body['total'], '5000.00')
        self.assertEqual(body['balance'], '5000.00')
        self.assertEqual(len(body['lines']), 2)
        self.assertEqual(body['payments'], [])

        duplicate = self.generate_via_api()
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json()['code'], 'duplicate_invoice')

    def test_generate_missing_field(self):
        response = self.api.post(
            reverse('fees:invoice_generate'),
            {'studentId': self.student.pk, 'classId': self.school_class.pk, 'year': self.year},
            format='json',
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn('term', response.json()['message'])

    def test_generate_unknown_plan_is_404(self):
        response = self.api.post(
            reverse('fees:invoice_generate'),
            {
                'studentId': self.student.pk,
                'classId': self.school_class.pk,
                'year': self.year,
                'term': self.term,
                'feePlanId': self.other_plan.pk,
            },
            format='json',
        )
        self.assertEqual(response.status_code, 404)

    def test_payment_flow(self):
        invoice_id = self.generate_via_api().json()['id']
        self.login(self.accountant)

        response = self.api.post(
            reverse('fees:payment_create'),
            {'invoiceId': invoice_id, 'amount': '2000', 'method': 'mpesa', 'clientTxnId': 'abc'},
            format='json',
        )
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertFalse(body['idempotent'])
        self.assertEqual(body['payment']['method'], 'MPESA')
        self.assertEqual(body['payment']['amount'], '2000.00')
        self.assertEqual(body['invoice']['status'], 'PARTIALLY_PAID')
        self.assertEqual(body['invoice']['balance'], '3000.00')

        replay = self.api.post(
            reverse('fees:payment_create'),
            {'invoiceId': invoice_id, 'amount': '2000', 'method': 'mpesa', 'clientTxnId': 'abc'},
            format='json',
        )
        self.assertEqual(replay.status_code, 201)
        self.assertTrue(replay.json()['idempotent'])
        self.assertEqual(replay.json()['payment']['id'], body['payment']['id'])
        self.assertEqual(replay.json()['invoice']['paid'], '2000.00')

        payment_id = body['payment']['id']
        reverse_response = self.api.post(
            reverse('fees:payment_reverse', args=[payment_id]),
            {'reason': 'wrong student'},
            format='json',
        )
        self.assertEqual(reverse_response.status_code, 200)
        self.assertTrue(reverse_response.json()['payment']['isReversed'])
        self.assertEqual(reverse_response.json()['invoice']['status'], 'ISSUED')
        self.assertEqual(reverse_response.json()['invoice']['balance'], '5000.00')

        again = self.api.post(
            reverse('fees:payment_reverse', args=[payment_id]),
            {'reason': 'again'},
            format='json',
        )
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.json()['code'], 'already_reversed')

    def test_payment_errors(self):
        invoice_id = self.generate_via_api().json()['id']
        url = reverse('fees:payment_create')

        overpay = self.api.post(url, {'invoiceId': invoice_id, 'amount': '6000'}, format='json')
        self.assertEqual(overpay.status_code, 400)
        self.assertEqual(overpay.json()['code'], 'overpayment')
        self.assertEqual(overpay.json()['balance'], '5000.00')

        bad_amount = self.api.post(url, {'invoiceId': invoice_id, 'amount': '-1'}, format='json')
        self.assertEqual(bad_amount.status_code, 400)

        bad_method = self.api.post(url, {'invoiceId': invoice_id, 'amount': '10', 'method': 'gold'}, format='json')
        self.assertEqual(bad_method.status_code, 400)
        self.assertIn('method', bad_method.json()['message'])

        missing = self.api.post(url, {'invoiceId': 987654, 'amount': '10'}, format='json')
        self.assertEqual(missing.status_code, 404)
        self.assertFalse(Payment.objects.exists())

    def test_void_endpoint(self):
        invoice_id = self.generate_via_api().json()['id']
        payment = self.pay(Invoice.objects.get(pk=invoice_id), '100')['payment']
        url = reverse('fees:invoice_void', args=[invoice_id])

        self.assertEqual(self.api.post(url, {}, format='json').status_code, 400)

        blocked = self.api.post(url, {'reason': 'left school'}, format='json')
        self.assertEqual(blocked.status_code, 400)
        self.assertEqual(blocked.json()['code'], 'active_payments')
        self.assertIn('Reverse payments first', blocked.json()['message'])

        services.reverse_payment(self.bursar_context, payment_id=payment.pk, reason='refund')
        response = self.api.post(url, {'reason': 'left school'}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'VOID')
        self.assertEqual(response.json()['balance'], '0.00')
        self.assertEqual(response.json()['voidReason'], 'left school')

    def test_invoice_list_and_detail(self):
        invoice = self.generate()
        self.generate(self.student_two)
        self.login(self.accountant)

        listing = self.api.get(reverse('fees:invoice_list'), {'studentId': self.student.pk})
        self.assertEqual(listing.status_code, 200)
        self.assertEqual([row['id'] for row in listing.json()], [invoice.pk])

        self.assertEqual(self.api.get(reverse('fees:invoice_list'), {'status': 'bogus'}).status_code, 400)

        detail = self.api.get(reverse('fees:invoice_detail', args=[invoice.pk]))
        self.assertEqual(detail.status_code, 200)
        self.assertEqual(detail.json()['invoiceNo'], invoice.invoice_no)

    def test_other_tenant_ids_are_not_found(self):
        foreign = self.generate(student=self.other_student, plan=self.other_plan, context=self.other_context)
        foreign_payment = services.post_payment(self.other_context, invoice_id=foreign.pk, amount='100')['payment']

        self.assertEqual(self.api.get(reverse('fees:invoice_detail', args=[foreign.pk])).status_code, 404)
        self.assertEqual(
            self.api.post(reverse('fees:invoice_void', args=[foreign.pk]), {'reason': 'x'}, format='json').status_code,
            404,
        )
        self.assertEqual(
            self.api.post(reverse('fees:payment_create'), {'invoiceId': foreign.pk, 'amount': '1'}, format='json').status_code,
            404,
        )
        self.assertEqual(
            self.api.post(reverse('fees:payment_reverse', args=[foreign_payment.pk]), {'reason': 'x'}, format='json').status_code,
            404,
        )
        self.assertEqual(self.api.get(reverse('fees:payment_receipt', args=[foreign_payment.pk])).status_code, 404)
        self.assertEqual(self.api.get(reverse('fees:student_statement', args=[self.other_student.pk])).status_code, 404)


class FeesGuardTests(FeesApiTestCase):
    def test_roles(self):
        self.login(self.accountant)
        self.assertEqual(self.generate_via_api().status_code, 403)

        self.login(self.teacher)
        response = self.api.get(reverse('fees:invoice_list'))
        self.assertEqual(response.status_code, 403)
        self.assertIn('message', response.json())

    def test_unauthenticated(self):
        self.api.force_authenticate(user=None)
        self.assertIn(self.api.get(reverse('fees:invoice_list')).status_code, (401, 403))

    def test_superadmin_selects_school_by_header(self):
        superadmin = get_user_model().objects.create_superuser('root', 'root@example.com', 'pass12345')
        self.login(superadmin)

        missing = self.api.get(reverse('fees:invoice_list'))
        self.assertEqual(missing.status_code, 403)
        self.assertEqual(missing.json()['code'], 'tenant_required')

        unknown = self.api.get(reverse('fees:invoice_list'), HTTP_X_SCHOOL_ID='no_such_school')
        self.assertEqual(unknown.status_code, 404)

        response = self.generate_via_api_with_header('fee_school')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(Invoice.objects.get().school, self.school)

    def generate_via_api_with_header(self, school_key):
        return self.api.post(
            reverse('fees:invoice_generate'),
            {
                'studentId': self.student.pk,
                'classId': self.school_class.pk,
                'year': self.year,
                'term': self.term,
                'feePlanId': self.plan.pk,
            },
            format='json',
            HTTP_X_SCHOOL_ID=school_key,
        )

    def test_read_only_subscription_blocks_writes(self):
        self.subscription.status = Subscription.STATUS_CANCELED
        self.subscription.save()

        response = self.generate_via_api()
        self.assertEqual(response.status_code, 402)
        self.assertEqual(response.json()['code'], 'read_only')
        self.assertEqual(response.json()['subscriptionStatus'], 'CANCELED')

        report = self.api.get(
            reverse('fees:report_class_summary'),
            {'classId': self.school_class.pk, 'year': self.year, 'term': self.term},
        )
        self.assertEqual(report.status_code, 200)

    def test_expired_subscription_blocks_writes(self):
        self.subscription.current_period_end = timezone.now() - timedelta(days=1)
        self.subscription.save()
        self.assertEqual(self.generate_via_api().status_code, 402)

    def test_missing_entitlement(self):
        self.subscription.entitlements = {Subscription.FEES_READ: True}
        self.subscription.save()
        response = self.generate_via_api()
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()['code'], 'entitlement_missing')

    def test_no_subscription(self):
        Subscription.objects.all().delete()
        self.assertEqual(self.generate_via_api().status_code, 403)

    def test_inactive_school(self):
        self.school.is_active = False
        self.school.save()
        response = self.api.get(reverse('fees:invoice_list'))
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()['code'], 'school_inactive')


class FeesReportApiTests(FeesApiTestCase):
    def setUp(self):
        super().setUp()
        self.generate(self.student)
        invoice_two = self.generate(self.student_two)
        self.pay(invoice_two, '1250.50', method='BANK')
        self.login(self.accountant)
        self.params = {'classId': self.school_class.pk, 'year': self.year, 'term': self.term}

    def test_class_summary_json(self):
        response = self.api.get(reverse('fees:report_class_summary'), self.params)
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['invoiceCount'], 2)
        self.assertEqual(body['totalBilled'], '10000.00')
        self.assertEqual(body['totalPaid'], '1250.50')
        self.assertEqual(body['statusCounts']['PARTIALLY_PAID'], 1)
        self.assertEqual(len(body['rows']), 1)
        self.assertTrue(AuditLog.objects.filter(action='REPORTS_FEES_CLASS_SUMMARY_VIEWED').exists())

    def test_missing_filters_are_400(self):
        response = self.api.get(reverse('fees:report_defaulters'), {'classId': self.school_class.pk})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            self.api.get(reverse('fees:report_collections'), {'from': '2026-01-01'}).status_code,
            400,
        )

    def test_out_of_range_inputs_are_400(self):
        response = self.api.get(reverse('fees:report_defaulters'), {**self.params, 'minBalance': '1e40'})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['field'], 'minBalance')

        response = self.api.get(reverse('fees:report_collections'), {'from': '2026-01-01', 'to': '9999-12-31'})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['field'], 'to')

    def test_export_type_is_validated(self):
        response = self.api.get(reverse('fees:report_defaulters'), {**self.params, 'export': 'pdf'})
        self.assertEqual(response.status_code, 400)

    def test_defaulters_json_csv_xlsx_equivalence(self):
        url = reverse('fees:report_defaulters')
        json_rows = self.api.get(url, self.params).json()['rows']

        csv_response = self.api.get(url, {**self.params, 'export': 'CSV'})
        self.assertEqual(csv_response.status_code, 200)
        self.assertEqual(csv_response['Content-Type'], 'text/csv')
        self.assertIn('fees-defaulters-grade-4-east-1-2026.csv', csv_response['Content-Disposition'])
        csv_rows = list(csv.DictReader(StringIO(csv_response.content.decode('utf-8'))))

        xlsx_response = self.api.get(url, {**self.params, 'export': 'xlsx'})
        self.assertEqual(xlsx_response.status_code, 200)
        sheet = load_workbook(BytesIO(xlsx_response.content)).active
        self.assertEqual(sheet.title, 'Defaulters')
        xlsx_rows = list(sheet.iter_rows(min_row=2, values_only=True))

        self.assertEqual(len(json_rows), 2)
        self.assertEqual(len(csv_rows), len(json_rows))
        self.assertEqual(len(xlsx_rows), len(json_rows))
        for json_row, csv_row, xlsx_row in zip(json_rows, csv_rows, xlsx_rows):
            self.assertEqual(str(json_row['invoiceId']), csv_row['Invoice ID'])
            self.assertEqual(json_row['admissionNo'], csv_row['Admission No'])
            self.assertEqual(json_row['balance'], csv_row['Balance'])
            self.assertEqual(json_row['createdAt'], csv_row['Created At'])
            self.assertEqual(json_row['invoiceId'], xlsx_row[0])
            self.assertEqual(Decimal(json_row['balance']), Decimal(str(xlsx_row[5])))
            self.assertEqual(json_row['status'], xlsx_row[6])

    def test_collections_json_and_csv(self):
        today = timezone.now().astimezone(dt_timezone.utc).date().isoformat()
        url = reverse('fees:report_collections')
        body = self.api.get(url, {'from': today, 'to': today}).json()
        self.assertEqual(body['totalCollected'], '1250.50')
        self.assertEqual(body['byMethod'], {'BANK': '1250.50'})
        self.assertEqual(len(body['rows']), 1)

        csv_response = self.api.get(url, {'from': today, 'to': today, 'export': 'csv'})
        csv_rows = list(csv.DictReader(StringIO(csv_response.content.decode('utf-8'))))
        self.assertEqual([row['Receipt No'] for row in csv_rows], [row['receiptNo'] for row in body['rows']])
        self.assertEqual(csv_rows[0]['Amount'], '1250.50')

    def _export_rows(self, url, params, sheet_title):
        csv_response = self.api.get(url, {**params, 'export': 'csv'})
        self.assertEqual(csv_response.status_code, 200)
        csv_rows = list(csv.DictReader(StringIO(csv_response.content.decode('utf-8'))))

        xlsx_response = self.api.get(url, {**params, 'export': 'xlsx'})
        self.assertEqual(xlsx_response.status_code, 200)
        sheet = load_workbook(BytesIO(xlsx_response.content)).active
        self.assertEqual(sheet.title, sheet_title)
        rows = list(sheet.iter_rows(values_only=True))
        xlsx_rows = [dict(zip(rows[0], row)) for row in rows[1:]]
        return csv_rows, xlsx_rows

    def test_class_summary_json_csv_xlsx_equivalence(self):
        url = reverse('fees:report_class_summary')
        json_rows = self.api.get(url, self.params).json()['rows']
        csv_rows, xlsx_rows = self._export_rows(url, self.params, 'Class Summary')

        self.assertEqual(len(json_rows), 1)
        self.assertEqual(len(csv_rows), 1)
        self.assertEqual(len(xlsx_rows), 1)
        json_row, csv_row, xlsx_row = json_rows[0], csv_rows[0], xlsx_rows[0]

        self.assertEqual(str(json_row['classId']), csv_row['Class ID'])
        self.assertEqual(json_row['classId'], xlsx_row['Class ID'])
        self.assertEqual(json_row['className'], csv_row['Class'])
        self.assertEqual(json_row['className'], xlsx_row['Class'])
        self.assertEqual(json_row['invoiceCount'], 2)
        self.assertEqual(str(json_row['invoiceCount']), csv_row['Invoice Count'])
        self.assertEqual(json_row['invoiceCount'], xlsx_row['Invoice Count'])
        for key, header in (('totalBilled', 'Total Billed'), ('totalPaid', 'Total Paid'), ('totalBalance', 'Total Balance')):
            with self.subTest(column=header):
                self.assertEqual(json_row[key], csv_row[header])
                self.assertEqual(Decimal(json_row[key]), Decimal(str(xlsx_row[header])))
        for key, header in (('issued', 'ISSUED'), ('partiallyPaid', 'PARTIALLY_PAID'), ('paid', 'PAID')):
            with self.subTest(column=header):
                self.assertEqual(str(json_row[key]), csv_row[header])
                self.assertEqual(json_row[key], xlsx_row[header])

    def test_collections_json_csv_xlsx_equivalence(self):
        self.pay(self.generate(self.student_three), '300', method='MPESA', reference='QX12')
        today = timezone.now().astimezone(dt_timezone.utc).date().isoformat()
        url = reverse('fees:report_collections')
        params = {'from': today, 'to': today}
        body = self.api.get(url, params).json()
        csv_rows, xlsx_rows = self._export_rows(url, params, 'Collections')

        self.assertEqual(body['count'], 2)
        self.assertEqual(len(csv_rows), len(body['rows']))
        self.assertEqual(len(xlsx_rows), len(body['rows']))
        for json_row, csv_row, xlsx_row in zip(body['rows'], csv_rows, xlsx_rows):
            self.assertEqual(json_row['receiptNo'], csv_row['Receipt No'])
            self.assertEqual(json_row['receiptNo'], xlsx_row['Receipt No'])
            self.assertEqual(json_row['amount'], csv_row['Amount'])
            self.assertEqual(Decimal(json_row['amount']), Decimal(str(xlsx_row['Amount'])))
            self.assertEqual(json_row['method'], csv_row['Method'])
            self.assertEqual(json_row['method'], xlsx_row['Method'])
            self.assertEqual(json_row['receivedAt'], csv_row['Date'])
            self.assertEqual(json_row['receivedAt'], xlsx_row['Date'])
        self.assertEqual(
            sum(Decimal(str(row['Amount'])) for row in xlsx_rows),
            Decimal(body['totalCollected']),
        )


class ReceiptAndStatementTests(FeesApiTestCase):
    def setUp(self):
        super().setUp()
        self.invoice = self.generate()
        self.payment = self.pay(self.invoice, '1500', method='CHEQUE', reference='CHQ-9')['payment']
        self.login(self.accountant)

    def test_receipt_json_shows_reversal(self):
        url = reverse('fees:payment_receipt', args=[self.payment.pk])
        body = self.api.get(url).json()
        self.assertFalse(body['isReversed'])
        self.assertEqual(body['status'], 'POSTED')
        self.assertEqual(body['amount'], '1500.00')
        self.assertEqual(body['student']['admissionNo'], 'FEE-001')
        self.assertEqual(body['invoice']['balance'], '3500.00')

        services.reverse_payment(self.bursar_context, payment_id=self.payment.pk, reason='cheque bounced')
        body = self.api.get(url).json()
        self.assertTrue(body['isReversed'])
        self.assertEqual(body['status'], 'REVERSED')
        self.assertEqual(body['reversalReason'], 'cheque bounced')
        self.assertIsNotNone(body['reversedAt'])

    def test_receipt_pdf(self):
        response = self.api.get(reverse('fees:payment_receipt_pdf', args=[self.payment.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'application/pdf')
        self.assertTrue(response.content.startswith(b'%PDF'))

        services.reverse_payment(self.bursar_context, payment_id=self.payment.pk, reason='cheque bounced')
        reversed_pdf = self.api.get(reverse('fees:payment_receipt_pdf', args=[self.payment.pk]))
        self.assertTrue(reversed_pdf.content.startswith(b'%PDF'))
        self.assertNotEqual(reversed_pdf.content, response.content)

    def test_statement_totals_and_timeline(self):
        second = self.pay(self.invoice, '500')['payment']
        services.reverse_payment(self.bursar_context, payment_id=second.pk, reason='typo')

        response = self.api.get(reverse('fees:student_statement', args=[self.student.pk]), {'year': self.year})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['student']['admissionNo'], 'FEE-001')
        self.assertEqual(body['totals']['totalBilled'], '5000.00')
        self.assertEqual(body['totals']['totalPaid'], '1500.00')
        self.assertEqual(body['totals']['totalBalance'], '3500.00')
        self.assertEqual(body['totals']['invoiceCount'], 1)
        self.assertEqual([event['type'] for event in body['timeline']], ['INVOICE', 'PAYMENT'])
        self.assertEqual(body['timeline'][1]['receiptNo'], self.payment.receipt_no)
        self.assertEqual(len(body['invoices'][0]['payments']), 2)
        self.assertTrue(AuditLog.objects.filter(action='FEES_STATEMENT_VIEWED', target_id=str(self.student.pk)).exists())

    def test_statement_skips_void_invoices(self):
        services.reverse_payment(self.bursar_context, payment_id=self.payment.pk, reason='refund')
        services.void_invoice(self.context, invoice_id=self.invoice.pk, reason='left')
        body = self.api.get(reverse('fees:student_statement', args=[self.student.pk])).json()
        self.assertEqual(body['totals']['invoiceCount'], 0)
        self.assertEqual(body['timeline'], [])

    def test_student_summary(self):
        body = self.api.get(reverse('fees:student_summary', args=[self.student.pk])).json()
        self.assertEqual(body['totals']['totalPaid'], '1500.00')
        self.assertEqual(body['latestInvoice']['id'], self.invoice.pk)
        self.assertEqual(
            AuditLog.objects.filter(action='FEES_SUMMARY_VIEWED', target_id=str(self.student.pk)).count(),
            1,
        )
