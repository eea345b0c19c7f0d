"""
Payment API Views.

Implements:
- POST /payments/intents/ - Create a gateway payment intent for an order
- POST /payments/verify/ - Client confirmation after checkout
- GET /payments/status/{order_id}/ - Local and live payment status
- POST /payments/refunds/ - Refund a paid order (staff)
- GET /payments/methods/ - Available payment methods
- POST /webhooks/razorpay/ - Gateway event ingestion
"""
import logging

from rest_framework import status
from rest_framework.permissions import AllowAny, IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from core.rate_limiting import rate_limit
from orders.serializers import OrderSerializer
from . import services
from .serializers import (
    PaymentConfirmationSerializer,
    PaymentIntentSerializer,
    RefundRequestSerializer,
)
from .webhooks import handle_gateway_event

logger = logging.getLogger(__name__)


class PaymentIntentView(APIView):
    """
    POST: Mint a remote payment intent for one of the caller's unpaid orders.

    Request Body:
    {"order_id": 12}

    Returns:
        - 201: {intent_id, amount (minor units), currency, key, order_id, order_number}
        - 409: Order paid, cancelled or already holding a live intent
        - 502: Gateway failure
    """

    @rate_limit('payment-intent', max_requests=10, window_seconds=60)
    def post(self, request):
        serializer = PaymentIntentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        intent = services.create_payment_intent(serializer.validated_data['order_id'], request.user)
        return Response(intent, status=status.HTTP_201_CREATED)


class PaymentVerifyView(APIView):
    """
    POST: Confirm a payment the customer completed with the gateway.

    Request Body:
    {
        "orderId": 12,
        "gatewayOrderId": "order_...",
        "gatewayPaymentId": "pay_...",
        "gatewaySignature": "<hex hmac>"
    }

    Repeating a confirmation for the same payment returns the paid order
    unchanged.
    """

    @rate_limit('payment-verify', max_requests=10, window_seconds=60)
    def post(self, request):
        serializer = PaymentConfirmationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = services.confirm_payment(
            request.user,
            data['gateway_payment_id'],
            order_id=data.get('order_id'),
            gateway_order_id=data.get('gateway_order_id'),
            signature=data.get('gateway_signature')
        )
        return Response({
            'message': 'Payment verified successfully',
            'order': OrderSerializer(order).data,
        })


class PaymentStatusView(APIView):
    """GET: Payment state of an order, with live gateway details when paid online."""

    def get(self, request, order_id):
        return Response(services.get_payment_status(order_id, request.user))


class RefundView(APIView):
    """
    POST: Refund a paid order through the gateway (staff only).

    Request Body:
    {"order_id": 12, "amount": "709.97", "reason": "Damaged in transit"}

    amount defaults to the full order total.
    """
    permission_classes = [IsAdminUser]

    def post(self, request):
        serializer = RefundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = services.process_refund(
            data['order_id'],
            request.user,
            amount=data.get('amount'),
            reason=data.get('reason', '')
        )
        return Response({
            'message': 'Refund processed successfully',
            'refund': OrderSerializer(order).data['refund_details'],
            'order_id': order.pk,
            'order_number': order.order_number,
        })


class PaymentMethodsView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        return Response({'payment_methods': services.PAYMENT_METHODS})


class GatewayWebhookView(APIView):
    """
    POST: Gateway event delivery.

    Authenticated only by the X-Razorpay-Signature HMAC over the raw body.
    Returns 200 for every verified event, 400 for a bad signature or body.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        ack = handle_gateway_event(
            request.body,
            request.headers.get('X-Razorpay-Signature')
        )
        return Response(ack, status=status.HTTP_200_OK)
