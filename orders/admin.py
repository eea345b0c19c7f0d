"""
Django Admin configuration for order models.
"""
from django.contrib import admin
from .models import Order, OrderItem, OrderNumberCounter


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ['product', 'name', 'quantity', 'unit_price', 'subtotal']
    can_delete = False

    def subtotal(self, obj):
        return obj.subtotal
    subtotal.short_description = 'Subtotal'


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = [
        'order_number', 'user', 'status', 'payment_method', 'total_price',
        'is_paid', 'refund_status', 'created_at'
    ]
    list_filter = ['status', 'payment_method', 'is_paid', 'refund_status', 'created_at']
    search_fields = ['order_number', 'user__username', 'user__email', 'payment_id', 'gateway_order_id']
    ordering = ['-created_at']
    # Payment and refund state only changes through the payment services
    readonly_fields = [
        'order_number', 'items_price', 'tax_price', 'shipping_price', 'discount_amount', 'total_price',
        'is_paid', 'paid_at', 'payment_id', 'gateway_order_id', 'payment_status',
        'refund_status', 'refund_id', 'refund_amount', 'refund_processed_at',
        'shipping_order_id', 'shipping_shipment_id', 'created_at', 'updated_at'
    ]
    raw_id_fields = ['user']
    inlines = [OrderItemInline]


@admin.register(OrderNumberCounter)
class OrderNumberCounterAdmin(admin.ModelAdmin):
    list_display = ['day', 'last_value']
    ordering = ['-day']
