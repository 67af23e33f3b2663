from django.contrib import admin

from .models import School, Subscription


@admin.register(School)
class SchoolAdmin(admin.ModelAdmin):
    list_display = ('name', 'code', 'timezone', 'is_active')
    list_filter = ('is_active',)
    search_fields = ('name', 'code', 'email')


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = ('school', 'plan_code', 'status', 'current_period_end', 'created_at')
    list_filter = ('status', 'plan_code')
    search_fields = ('school__name', 'school__code')
