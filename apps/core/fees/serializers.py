from decimal import Decimal

from rest_framework import serializers

from .models import Invoice, InvoiceLine, Payment


class GenerateInvoiceSerializer(serializers.Serializer):
    studentId = serializers.IntegerField(min_value=1)
    classId = serializers.IntegerField(min_value=1)
    year = serializers.IntegerField(min_value=1900, max_value=9999)
    term = serializers.CharField(max_length=20, trim_whitespace=True)
    feePlanId = serializers.IntegerField(min_value=1)


class PostPaymentSerializer(serializers.Serializer):
    invoiceId = serializers.IntegerField(min_value=1)
    amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        min_value=Decimal('0.01'),
        error_messages={'min_value': 'amount must be a number > 0.'},
    )
    method = serializers.CharField(max_length=10, required=False, allow_blank=True)
    reference = serializers.CharField(max_length=120, required=False, allow_blank=True, allow_null=True)
    clientTxnId = serializers.CharField(max_length=100, required=False, allow_blank=True, allow_null=True)


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, trim_whitespace=True)


class InvoiceLineSerializer(serializers.ModelSerializer):
    feeItemId = serializers.IntegerField(source='fee_item_id', read_only=True)

    class Meta:
        model = InvoiceLine
        fields = ['id', 'feeItemId', 'description', 'amount']


class PaymentSerializer(serializers.ModelSerializer):
    invoiceId = serializers.IntegerField(source='invoice_id', read_only=True)
    clientTxnId = serializers.CharField(source='client_txn_id', read_only=True)
    receiptNo = serializers.CharField(source='receipt_no', read_only=True)
    receivedAt = serializers.DateTimeField(source='received_at', read_only=True)
    receivedBy = serializers.IntegerField(source='received_by_id', read_only=True)
    isReversed = serializers.BooleanField(source='is_reversed', read_only=True)
    reversedAt = serializers.DateTimeField(source='reversed_at', read_only=True)
    reversalReason = serializers.CharField(source='reversal_reason', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)

    class Meta:
        model = Payment
        fields = [
            'id',
            'invoiceId',
            'clientTxnId',
            'amount',
            'method',
            'reference',
            'receiptNo',
            'receivedAt',
            'receivedBy',
            'isReversed',
            'reversedAt',
            'reversalReason',
            'createdAt',
        ]


class InvoiceSummarySerializer(serializers.ModelSerializer):
    studentId = serializers.IntegerField(source='student_id', read_only=True)
    classId = serializers.IntegerField(source='school_class_id', read_only=True)
    feePlanId = serializers.IntegerField(source='fee_plan_id', read_only=True)
    invoiceNo = serializers.CharField(source='invoice_no', read_only=True)
    voidedAt = serializers.DateTimeField(source='voided_at', read_only=True)
    voidedBy = serializers.IntegerField(source='voided_by_id', read_only=True)
    voidReason = serializers.CharField(source='void_reason', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = Invoice
        fields = [
            'id',
            'invoiceNo',
            'studentId',
            'classId',
            'feePlanId',
            'year',
            'term',
            'status',
            'total',
            'paid',
            'balance',
            'voidedAt',
            'voidedBy',
            'voidReason',
            'createdAt',
            'updatedAt',
        ]


class InvoiceSerializer(InvoiceSummarySerializer):
    lines = InvoiceLineSerializer(many=True, read_only=True)
    payments = PaymentSerializer(many=True, read_only=True)

    class Meta(InvoiceSummarySerializer.Meta):
        fields = InvoiceSummarySerializer.Meta.fields + ['lines', 'payments']


class StudentBriefSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    admissionNo = serializers.CharField(source='admission_number')
    firstName = serializers.CharField(source='first_name')
    lastName = serializers.CharField(source='last_name')
    classId = serializers.IntegerField(source='current_class_id', allow_null=True)
