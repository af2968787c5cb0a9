from django.contrib import admin
from .models import Service, Order, Invoice


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ['name', 'base_price', 'is_active', 'created_at']
    list_filter = ['is_active']
    search_fields = ['name']
    readonly_fields = ['id', 'created_at', 'updated_at']


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ['id', 'patient', 'service', 'final_price', 'has_invoice', 'created_at']
    list_filter = ['service', 'created_at']
    readonly_fields = ['id', 'created_at', 'updated_at']

    @admin.display(boolean=True, description='Invoiced')
    def has_invoice(self, obj):
        return hasattr(obj, 'invoice')


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    """
    Invoice admin.

    Amount and order are fixed once the invoice exists; only status and
    due date can be edited.
    """
    list_display = ['id', 'order', 'patient', 'total_amount', 'status', 'due_date', 'created_at']
    list_filter = ['status', 'created_at']
    readonly_fields = ['id', 'order', 'patient', 'total_amount', 'created_at', 'updated_at']
