"""
Order API Views.

Implements:
- GET /orders/ - Own orders (staff: all orders, filterable by status)
- POST /orders/ - Checkout, creates a PENDING order
- GET /orders/{id}/ - Order detail with items
- PATCH /orders/{id}/status/ - Operator status change (staff)
- POST /orders/{id}/cancel/ - Cancel an order (owner or staff)
- PATCH /orders/{id}/shipping/ - Record courier details (staff)
- GET /orders/{id}/track/ - Tracking timeline
"""
import logging

from rest_framework import generics, status
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import OrderValidationError

from . import services
from .models import Order
from .serializers import (
    OrderSerializer,
    OrderListSerializer,
    OrderCreateSerializer,
    OrderStatusUpdateSerializer,
    OrderCancelSerializer,
    ShippingDetailsSerializer,
)

logger = logging.getLogger(__name__)


class OrderListCreateView(generics.ListCreateAPIView):
    """
    GET: List orders, newest first
    POST: Create a new order

    Query Parameters (GET):
        - status: Filter by status (pending, processing, shipped, ...)
        - user_id: Filter by customer (staff only)

    Request Body (POST): see OrderCreateSerializer
    """

    def get_serializer_class(self):
        if self.request.method == 'POST':
            return OrderCreateSerializer
        return OrderListSerializer

    def get_queryset(self):
        queryset = Order.objects.prefetch_related('items')

        user = self.request.user
        if user.is_staff:
            user_id = self.request.query_params.get('user_id', '').strip()
            if user_id:
                try:
                    user_id = int(user_id)
                except ValueError:
                    raise OrderValidationError(f"user_id must be an integer, got {user_id!r}")
                queryset = queryset.filter(user_id=user_id)
        else:
            queryset = queryset.filter(user=user)

        status_filter = self.request.query_params.get('status', '').lower()
        if status_filter in Order.Status.values:
            queryset = queryset.filter(status=status_filter)

        return queryset.order_by('-created_at')

    def create(self, request, *args, **kwargs):
        """
        Returns:
            - 201: Order created (pending, unpaid)
            - 400: Validation error or totals that do not add up
            - 404: Referenced product not found
        """
        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = services.create_order(request.user, serializer.to_order_request())

        order = Order.objects.prefetch_related('items').get(pk=order.pk)
        return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)


class OrderDetailView(APIView):
    """GET: Order details with items; owner or staff."""

    def get(self, request, pk):
        order = services.get_order_for_user(pk, request.user)
        return Response(OrderSerializer(order).data)


class OrderStatusView(APIView):
    """
    PATCH: Move an order to processing, shipped, delivered or cancelled.

    Request Body:
    {"status": "shipped", "notes": "Handed to courier"}
    """
    permission_classes = [IsAdminUser]

    def patch(self, request, pk):
        serializer = OrderStatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = services.transition_status(
            pk,
            serializer.validated_data['status'],
            request.user,
            notes=serializer.validated_data['notes']
        )
        return Response(OrderSerializer(order).data)


class OrderCancelView(APIView):
    """
    POST: Cancel an order before delivery.

    A paid order is left with a pending refund.
    """

    def post(self, request, pk):
        serializer = OrderCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = services.cancel_order(pk, request.user, reason=serializer.validated_data['reason'])
        return Response({
            'message': 'Order cancelled successfully',
            'order': OrderSerializer(order).data,
        })


class OrderShippingView(APIView):
    """
    PATCH: Record courier and tracking number; shipped_at marks it shipped.
    """
    permission_classes = [IsAdminUser]

    def patch(self, request, pk):
        serializer = ShippingDetailsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = services.update_shipping_details(
            pk,
            data['tracking_number'],
            data['courier'],
            estimated_delivery=data.get('estimated_delivery'),
            shipped_at=data.get('shipped_at')
        )
        return Response(OrderSerializer(order).data)


class OrderTrackView(APIView):
    def get(self, request, pk):
        return Response(services.track_order(pk, request.user))
