from django.contrib import admin

from .models import FeeItem, FeePlan, FeePlanItem, Invoice, InvoiceLine, Payment


class LedgerReadOnlyAdmin(admin.ModelAdmin):
    """Ledger rows change only through the fee services."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(FeeItem)
class FeeItemAdmin(admin.ModelAdmin):
    list_display = ('name', 'code', 'school', 'is_active')
    list_filter = ('school', 'is_active')
    search_fields = ('name', 'code')


class FeePlanItemInline(admin.TabularInline):
    model = FeePlanItem
    extra = 1
    fields = ('position', 'fee_item', 'amount', 'required')


@admin.register(FeePlan)
class FeePlanAdmin(admin.ModelAdmin):
    list_display = ('__str__', 'school_class', 'year', 'term', 'school')
    list_filter = ('school', 'year', 'term')
    search_fields = ('title', 'school_class__name')
    inlines = [FeePlanItemInline]


class InvoiceLineInline(admin.TabularInline):
    model = InvoiceLine
    extra = 0
    fields = ('fee_item', 'description', 'amount')
    readonly_fields = fields
    can_delete = False


@admin.register(Invoice)
class InvoiceAdmin(LedgerReadOnlyAdmin):
    list_display = ('invoice_no', 'student', 'school_class', 'year', 'term', 'status', 'total', 'paid', 'balance')
    list_filter = ('school', 'status', 'year', 'term')
    search_fields = ('invoice_no', 'student__admission_number', 'student__first_name', 'student__last_name')
    list_select_related = ('student', 'school_class')
    inlines = [InvoiceLineInline]


@admin.register(Payment)
class PaymentAdmin(LedgerReadOnlyAdmin):
    list_display = ('receipt_no', 'invoice', 'amount', 'method', 'received_at', 'is_reversed')
    list_filter = ('school', 'method', 'is_reversed')
    search_fields = ('receipt_no', 'reference', 'client_txn_id', 'invoice__invoice_no')
    list_select_related = ('invoice',)
