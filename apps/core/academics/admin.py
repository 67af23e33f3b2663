from django.contrib import admin

from .models import SchoolClass


@admin.register(SchoolClass)
class SchoolClassAdmin(admin.ModelAdmin):
    list_display = ('name', 'stream', 'year', 'school', 'display_order', 'is_active')
    list_filter = ('school', 'year', 'is_active')
    search_fields = ('name', 'stream', 'code', 'school__name')
