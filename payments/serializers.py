"""
Serializers for payment API requests.
"""
from decimal import Decimal

from rest_framework import serializers

from orders.checkout import remap_aliases

CONFIRMATION_ALIASES = {
    'order_id': ('order_id', 'orderId'),
    'gateway_order_id': ('gateway_order_id', 'gatewayOrderId', 'razorpay_order_id'),
    'gateway_payment_id': ('gateway_payment_id', 'gatewayPaymentId', 'razorpay_payment_id'),
    'gateway_signature': ('gateway_signature', 'gatewaySignature', 'razorpay_signature'),
}


class PaymentIntentSerializer(serializers.Serializer):
    order_id = serializers.IntegerField(min_value=1)

    def to_internal_value(self, data):
        if isinstance(data, dict):
            data = remap_aliases(data, {'order_id': ('order_id', 'orderId')})
        return super().to_internal_value(data)


class PaymentConfirmationSerializer(serializers.Serializer):
    """
    Client confirmation after checkout:
    {gatewayOrderId?, gatewayPaymentId, gatewaySignature?, orderId?}
    """
    order_id = serializers.IntegerField(min_value=1, required=False)
    gateway_order_id = serializers.CharField(max_length=64, required=False)
    gateway_payment_id = serializers.CharField(max_length=64)
    gateway_signature = serializers.CharField(max_length=128, required=False)

    def to_internal_value(self, data):
        if isinstance(data, dict):
            data = remap_aliases(data, CONFIRMATION_ALIASES)
        return super().to_internal_value(data)

    def validate(self, attrs):
        if not attrs.get('order_id') and not attrs.get('gateway_order_id'):
            raise serializers.ValidationError("Provide order_id or gateway_order_id")
        return attrs


class RefundRequestSerializer(serializers.Serializer):
    order_id = serializers.IntegerField(min_value=1)
    amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        min_value=Decimal('0.01'),
        required=False
    )
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True, default='')

    def to_internal_value(self, data):
        if isinstance(data, dict):
            data = remap_aliases(data, {
                'order_id': ('order_id', 'orderId'),
                'amount': ('amount',),
                'reason': ('reason',),
            })
        return super().to_internal_value(data)
