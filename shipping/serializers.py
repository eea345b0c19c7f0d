"""
Serializers for shipping API requests.
"""
from decimal import Decimal

from rest_framework import serializers

from orders.checkout import remap_aliases


class ServiceabilitySerializer(serializers.Serializer):
    pickup_postcode = serializers.CharField(max_length=10)
    delivery_postcode = serializers.CharField(max_length=10)
    cod = serializers.BooleanField(required=False, default=False)
    weight = serializers.DecimalField(
        max_digits=6,
        decimal_places=2,
        min_value=Decimal('0.01'),
        required=False,
        default=Decimal('1')
    )

    def to_internal_value(self, data):
        if isinstance(data, dict):
            data = remap_aliases(data, {
                'pickup_postcode': ('pickup_postcode', 'pickupPostcode', 'origin'),
                'delivery_postcode': ('delivery_postcode', 'deliveryPostcode', 'pincode'),
                'cod': ('cod', 'cashOnDelivery'),
                'weight': ('weight',),
            })
        return super().to_internal_value(data)
