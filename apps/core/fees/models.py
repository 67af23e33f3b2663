from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q

from apps.core.academics.models import SchoolClass
from apps.core.schools.models import School
from apps.core.students.models import Student
from apps.core.utils.managers import SchoolManager

from .ledger import ZERO, InvoiceStatus, derive_balance_status, quantize_money


class FinancialRecordModel(models.Model):
    class Meta:
        abstract = True

    def delete(self, *args, **kwargs):
        raise ValidationError('Financial records cannot be deleted. Use void or reversal workflow.')


class FeeItem(models.Model):
    school = models.ForeignKey(
        School,
        on_delete=models.CASCADE,
        related_name='fee_items',
    )
    objects = SchoolManager()

    name = models.CharField(max_length=120)
    code = models.CharField(max_length=30, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['school', 'name'],
                name='unique_fee_item_name_per_school',
            ),
        ]
        indexes = [
            models.Index(fields=['school', 'is_active'], name='fee_item_school_active_idx'),
        ]

    def clean(self):
        super().clean()
        if self.name:
            self.name = self.name.strip()
        if not self.name:
            raise ValidationError({'name': 'Fee item name is required.'})

    def delete(self, *args, **kwargs):
        # Invoice lines keep pointing at retired items.
        if self.is_active:
            self.is_active = False
            self.save(update_fields=['is_active'])

    def __str__(self):
        return f"{self.name} ({self.school.code})"


class FeePlan(models.Model):
    school = models.ForeignKey(
        School,
        on_delete=models.CASCADE,
        related_name='fee_plans',
    )
    objects = SchoolManager()

    school_class = models.ForeignKey(
        SchoolClass,
        on_delete=models.PROTECT,
        related_name='fee_plans',
    )
    year = models.PositiveIntegerField()
    term = models.CharField(max_length=20)
    title = models.CharField(max_length=150, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-year', 'term', 'school_class__display_order', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['school', 'school_class', 'year', 'term'],
                name='unique_fee_plan_per_class_period',
            ),
        ]

    def clean(self):
        super().clean()
        self.term = (self.term or '').strip()
        if not self.term:
            raise ValidationError({'term': 'Term is required.'})
        if self.school_class_id and self.school_class.school_id != self.school_id:
            raise ValidationError({'school_class': 'Class must belong to selected school.'})

    def __str__(self):
        return self.title or f"{self.school_class.label} {self.year} T{self.term}"


class FeePlanItem(models.Model):
    plan = models.ForeignKey(
        FeePlan,
        on_delete=models.CASCADE,
        related_name='items',
    )
    fee_item = models.ForeignKey(
        FeeItem,
        on_delete=models.PROTECT,
        related_name='plan_items',
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    required = models.BooleanField(default=True)
    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['position', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['plan', 'fee_item'],
                name='unique_fee_item_per_plan',
            ),
            models.CheckConstraint(
                condition=Q(amount__gte=0),
                name='fee_plan_item_amount_non_negative',
            ),
        ]

    def clean(self):
        super().clean()
        if self.amount is None or self.amount < 0:
            raise ValidationError({'amount': 'Amount must be zero or greater.'})
        if self.fee_item_id and self.plan_id and self.fee_item.school_id != self.plan.school_id:
            raise ValidationError({'fee_item': 'Fee item must belong to the plan school.'})

    def __str__(self):
        return f"{self.fee_item.name}: {self.amount}"


class Invoice(FinancialRecordModel):
    school = models.ForeignKey(
        School,
        on_delete=models.CASCADE,
        related_name='invoices',
    )
    objects = SchoolManager()

    student = models.ForeignKey(
        Student,
        on_delete=models.PROTECT,
        related_name='invoices',
    )
    school_class = models.ForeignKey(
        SchoolClass,
        on_delete=models.PROTECT,
        related_name='invoices',
    )
    fee_plan = models.ForeignKey(
        FeePlan,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='invoices',
    )
    year = models.PositiveIntegerField()
    term = models.CharField(max_length=20)
    invoice_no = models.CharField(max_length=40)

    status = models.CharField(max_length=20, choices=InvoiceStatus.choices, default=InvoiceStatus.ISSUED)
    total = models.DecimalField(max_digits=12, decimal_places=2)
    paid = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    balance = models.DecimalField(max_digits=12, decimal_places=2)

    voided_at = models.DateTimeField(null=True, blank=True)
    voided_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='voided_invoices',
    )
    void_reason = models.CharField(max_length=255, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='created_invoices',
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at', '-id']
        constraints = [
            models.UniqueConstraint(
                fields=['school', 'student', 'year', 'term'],
                name='unique_invoice_per_student_period',
            ),
            models.UniqueConstraint(
                fields=['school', 'invoice_no'],
                name='unique_invoice_no_per_school',
            ),
            models.CheckConstraint(
                condition=Q(total__gte=0) & Q(paid__gte=0) & Q(balance__gte=0),
                name='invoice_amounts_non_negative',
            ),
        ]
        indexes = [
            models.Index(fields=['school', 'school_class', 'year', 'term'], name='invoice_period_idx'),
            models.Index(fields=['school', 'status', 'balance'], name='invoice_status_balance_idx'),
            models.Index(fields=['school', 'student'], name='invoice_student_idx'),
        ]

    @property
    def state(self) -> InvoiceStatus:
        return InvoiceStatus(self.status)

    def clean(self):
        super().clean()
        if self.student_id and self.student.school_id != self.school_id:
            raise ValidationError({'student': 'Student must belong to selected school.'})
        if self.school_class_id and self.school_class.school_id != self.school_id:
            raise ValidationError({'school_class': 'Class must belong to selected school.'})
        if self.fee_plan_id and self.fee_plan.school_id != self.school_id:
            raise ValidationError({'fee_plan': 'Fee plan must belong to selected school.'})

    def _check_ledger_state(self):
        state = InvoiceStatus(self.status)
        if state.is_terminal:
            if quantize_money(self.balance) != ZERO:
                raise ValidationError('VOID invoices carry a zero balance.')
        elif (quantize_money(self.balance), state) != derive_balance_status(self.total, self.paid):
            raise ValidationError('Invoice balance and status must be derived from total and paid.')

        if self._state.adding or not self.pk:
            return

        previous = Invoice.objects.filter(pk=self.pk).values('status', 'total').first()
        if not previous:
            return
        if quantize_money(previous['total']) != quantize_money(self.total):
            raise ValidationError('Invoice total is fixed at creation.')
        if previous['status'] == InvoiceStatus.VOID and not state.is_terminal:
            raise ValidationError('VOID invoices cannot be reopened.')

    def save(self, *args, **kwargs):
        self._check_ledger_state()
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.invoice_no} - {self.student.admission_number}"


class InvoiceLine(FinancialRecordModel):
    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.PROTECT,
        related_name='lines',
    )
    fee_item = models.ForeignKey(
        FeeItem,
        on_delete=models.PROTECT,
        related_name='invoice_lines',
    )
    description = models.CharField(max_length=120)
    amount = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        ordering = ['id']
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gte=0),
                name='invoice_line_amount_non_negative',
            ),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError('Invoice lines are immutable once generated.')
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.description}: {self.amount}"


class PaymentState(models.TextChoices):
    POSTED = 'POSTED', 'Posted'
    REVERSED = 'REVERSED', 'Reversed'


class Payment(FinancialRecordModel):
    METHOD_CASH = 'CASH'
    METHOD_MPESA = 'MPESA'
    METHOD_BANK = 'BANK'
    METHOD_CHEQUE = 'CHEQUE'
    METHOD_OTHER = 'OTHER'
    METHOD_CHOICES = (
        (METHOD_CASH, 'Cash'),
        (METHOD_MPESA, 'M-Pesa'),
        (METHOD_BANK, 'Bank'),
        (METHOD_CHEQUE, 'Cheque'),
        (METHOD_OTHER, 'Other'),
    )
    METHODS = tuple(code for code, _ in METHOD_CHOICES)

    school = models.ForeignKey(
        School,
        on_delete=models.CASCADE,
        related_name='fee_payments',
    )
    objects = SchoolManager()

    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.PROTECT,
        related_name='payments',
    )
    client_txn_id = models.CharField(max_length=100, null=True, blank=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    method = models.CharField(max_length=10, choices=METHOD_CHOICES, default=METHOD_CASH)
    reference = models.CharField(max_length=120, blank=True)
    receipt_no = models.CharField(max_length=40)
    received_at = models.DateTimeField()
    received_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='received_payments',
    )
    is_reversed = models.BooleanField(default=False)
    reversed_at = models.DateTimeField(null=True, blank=True)
    reversal_reason = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-received_at', '-id']
        constraints = [
            models.UniqueConstraint(
                fields=['school', 'client_txn_id'],
                condition=Q(client_txn_id__isnull=False),
                name='unique_payment_client_txn_per_school',
            ),
            models.UniqueConstraint(
                fields=['school', 'receipt_no'],
                name='unique_receipt_no_per_school',
            ),
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name='payment_amount_positive',
            ),
        ]
        indexes = [
            models.Index(fields=['school', 'invoice', 'is_reversed'], name='payment_invoice_state_idx'),
            models.Index(fields=['school', 'is_reversed', 'received_at'], name='payment_collected_idx'),
        ]

    @property
    def state(self) -> PaymentState:
        return PaymentState.REVERSED if self.is_reversed else PaymentState.POSTED

    def clean(self):
        super().clean()
        if self.invoice_id and self.invoice.school_id != self.school_id:
            raise ValidationError({'invoice': 'Invoice must belong to selected school.'})
        if self.amount is None or self.amount <= 0:
            raise ValidationError({'amount': 'Payment amount must be greater than zero.'})
        if self.method not in self.METHODS:
            raise ValidationError({'method': f"Method must be one of: {', '.join(self.METHODS)}."})

    def _check_transition(self):
        if self.is_reversed:
            if not self.reversed_at:
                raise ValidationError({'reversed_at': 'Reversal timestamp is required for reversed payment.'})
            if not (self.reversal_reason or '').strip():
                raise ValidationError({'reversal_reason': 'Reversal reason is required.'})

        if self._state.adding or not self.pk:
            return

        previous = Payment.objects.filter(pk=self.pk).first()
        if not previous:
            return

        immutable_fields = [
            'school_id',
            'invoice_id',
            'client_txn_id',
            'amount',
            'method',
            'reference',
            'receipt_no',
            'received_at',
            'received_by_id',
        ]
        if any(getattr(previous, field) != getattr(self, field) for field in immutable_fields):
            raise ValidationError('Payments are immutable. Reverse and re-enter instead of editing.')

        if previous.is_reversed:
            if not self.is_reversed:
                raise ValidationError('Reversed payment cannot be reverted.')
            reversal_fields = ['reversed_at', 'reversal_reason']
            if any(getattr(previous, field) != getattr(self, field) for field in reversal_fields):
                raise ValidationError('Payment reversal details cannot be changed.')

    def save(self, *args, **kwargs):
        self._check_transition()
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.receipt_no} - {self.amount}"
