"""
Serializers for order models and order API requests.
"""
from decimal import Decimal

from rest_framework import serializers

from .checkout import (
    LineItemRequest,
    OrderRequest,
    normalize_checkout_payload,
    normalize_payment_method,
)
from .models import Order, OrderItem


class OrderItemSerializer(serializers.ModelSerializer):
    """Serializer for OrderItem snapshots."""
    subtotal = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        read_only=True
    )

    class Meta:
        model = OrderItem
        fields = ['id', 'product', 'name', 'image', 'quantity', 'unit_price', 'subtotal']


class OrderSerializer(serializers.ModelSerializer):
    """
    Serializer for Order model with nested items, payment result and refund.
    """
    items = OrderItemSerializer(many=True, read_only=True)
    payment_result = serializers.SerializerMethodField()
    refund_details = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'user', 'status', 'payment_method',
            'items', 'shipping_address', 'coupon_code', 'notes',
            'items_price', 'tax_price', 'shipping_price', 'discount_amount', 'total_price',
            'is_paid', 'paid_at', 'gateway_order_id', 'payment_result',
            'refund_status', 'refund_details',
            'shipping_order_id', 'shipping_shipment_id', 'shipping_status',
            'tracking_number', 'courier', 'estimated_delivery',
            'shipped_at', 'delivered_at', 'cancelled_at', 'cancellation_reason',
            'created_at', 'updated_at'
        ]
        read_only_fields = fields

    def get_payment_result(self, obj):
        result = obj.payment_result
        if result and result['update_time']:
            result['update_time'] = result['update_time'].isoformat()
        return result

    def get_refund_details(self, obj):
        details = obj.refund_details
        if details is None:
            return None
        if details['amount'] is not None:
            details['amount'] = str(details['amount'])
        if details['processed_at']:
            details['processed_at'] = details['processed_at'].isoformat()
        return details


class OrderListSerializer(serializers.ModelSerializer):
    """Compact serializer for listing orders."""
    item_count = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'status', 'payment_method', 'total_price',
            'is_paid', 'refund_status', 'item_count', 'created_at'
        ]

    def get_item_count(self, obj):
        # Use prefetched items count if available
        if hasattr(obj, '_prefetched_objects_cache') and 'items' in obj._prefetched_objects_cache:
            return len(obj.items.all())
        return obj.items.count()


class OrderItemCreateSerializer(serializers.Serializer):
    """
    One checkout line: a catalog reference, or an inline name/price snapshot.
    """
    product_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    name = serializers.CharField(max_length=200, required=False)
    price = serializers.DecimalField(
        max_digits=10,
        decimal_places=2,
        min_value=Decimal('0.01'),
        required=False
    )
    image = serializers.CharField(max_length=500, required=False, allow_blank=True)
    quantity = serializers.IntegerField(min_value=1)

    def validate(self, attrs):
        if not attrs.get('product_id') and (not attrs.get('name') or attrs.get('price') is None):
            raise serializers.ValidationError(
                "Each item needs a product_id, or an inline name and price"
            )
        return attrs


class ShippingAddressSerializer(serializers.Serializer):
    address = serializers.CharField(max_length=300)
    city = serializers.CharField(max_length=100)
    state = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')
    postal_code = serializers.CharField(max_length=20)
    country = serializers.CharField(max_length=100, required=False, default='India')
    phone = serializers.CharField(max_length=20, required=False, allow_blank=True, default='')


class OrderCreateSerializer(serializers.Serializer):
    """
    Serializer for creating orders via POST /orders/

    Request format (historical aliases such as orderItems, shippingAddress,
    paymentMethod, subtotal, deliveryCharges and total are accepted too):
    {
        "items": [
            {"product_id": 1, "quantity": 2},
            {"name": "Gift wrap", "price": "49.00", "quantity": 1}
        ],
        "shipping_address": {"address": "...", "city": "...", "postal_code": "..."},
        "payment_method": "razorpay",
        "coupon_code": "WELCOME10",
        "items_price": "...", "tax_price": "...", "shipping_price": "...", "total_price": "..."
    }
    """
    items = OrderItemCreateSerializer(many=True)
    shipping_address = ShippingAddressSerializer()
    payment_method = serializers.CharField(max_length=30)
    coupon_code = serializers.CharField(max_length=50, required=False, allow_blank=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    items_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'), required=False)
    tax_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'), required=False)
    shipping_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'), required=False)
    total_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'), required=False)

    def to_internal_value(self, data):
        return super().to_internal_value(normalize_checkout_payload(data))

    def validate_items(self, value):
        if not value:
            raise serializers.ValidationError("At least one item is required")
        return value

    def validate_payment_method(self, value):
        method = normalize_payment_method(value)
        if method is None:
            raise serializers.ValidationError(f"Unsupported payment method: {value}")
        return method

    def to_order_request(self) -> OrderRequest:
        data = self.validated_data
        return OrderRequest(
            items=tuple(
                LineItemRequest(
                    quantity=item['quantity'],
                    product_id=item.get('product_id'),
                    name=item.get('name', ''),
                    price=item.get('price'),
                    image=item.get('image', ''),
                )
                for item in data['items']
            ),
            shipping_address=dict(data['shipping_address']),
            payment_method=data['payment_method'],
            coupon_code=data.get('coupon_code', ''),
            notes=data.get('notes', ''),
            items_price=data.get('items_price'),
            tax_price=data.get('tax_price'),
            shipping_price=data.get('shipping_price'),
            total_price=data.get('total_price'),
        )


class OrderStatusUpdateSerializer(serializers.Serializer):
    status = serializers.CharField(max_length=20)
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class OrderCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class ShippingDetailsSerializer(serializers.Serializer):
    tracking_number = serializers.CharField(max_length=64)
    courier = serializers.CharField(max_length=100)
    estimated_delivery = serializers.DateTimeField(required=False, allow_null=True)
    shipped_at = serializers.DateTimeField(required=False, allow_null=True)
