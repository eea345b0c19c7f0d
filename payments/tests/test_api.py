"""
API tests for the payment endpoints, including the two end-to-end flows:

1. checkout -> intent -> signed confirmation -> cancel -> full refund
2. checkout -> payment-failed webhook without any client confirmation
"""
import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

from django.test import override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from core.exceptions import UpstreamServiceError
from orders.models import Order
from orders.tests.factories import make_order, make_paid_order, make_user, patch_courier, patch_notifications
from payments.signatures import compute_signature

CHECKOUT = {
    'items': [{'name': 'Handloom saree', 'price': '709.97', 'quantity': 1}],
    'shipping_address': {
        'address': '12 MG Road',
        'city': 'Bengaluru',
        'postal_code': '560001',
        'phone': '9845012345',
    },
    'payment_method': 'razorpay',
    'items_price': '709.97',
    'tax_price': '0.00',
    'shipping_price': '0.00',
    'total_price': '709.97',
}


class PaymentAPITestCase(APITestCase):

    def setUp(self):
        self.gateway = MagicMock()
        patcher = patch('payments.services.get_gateway_client', return_value=self.gateway)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.notify = patch_notifications(self)
        self.courier = patch_courier(self)
        self.user = make_user()
        self.staff = make_user('operator', is_staff=True)
        self.client.force_authenticate(self.user)

    def test_end_to_end_payment_cancel_and_refund(self):
        response = self.client.post(reverse('orders:order-list'), CHECKOUT, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        order_id = response.data['id']
        self.assertEqual(response.data['total_price'], '709.97')

        self.gateway.create_order.return_value = {'id': 'order_G1', 'amount': 70997, 'currency': 'INR'}
        response = self.client.post(reverse('payments:payment-intent'), {'orderId': order_id}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(response.data['amount'], 70997)

        self.gateway.fetch_payment.return_value = {
            'id': 'pay_1', 'order_id': 'order_G1', 'status': 'captured', 'amount': 70997,
        }
        response = self.client.post(reverse('payments:payment-verify'), {
            'orderId': order_id,
            'gatewayOrderId': 'order_G1',
            'gatewayPaymentId': 'pay_1',
            'gatewaySignature': compute_signature('test-key-secret', 'order_G1|pay_1'),
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertTrue(response.data['order']['is_paid'])
        self.assertEqual(response.data['order']['status'], 'processing')

        response = self.client.post(reverse('orders:order-cancel', args=[order_id]), {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['order']['refund_status'], 'pending')

        self.gateway.refund_payment.return_value = {'id': 'rfnd_1', 'amount': 70997, 'status': 'processed'}
        self.client.force_authenticate(self.staff)
        response = self.client.post(reverse('payments:payment-refund'), {'order_id': order_id}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data['refund']['status'], 'completed')
        self.assertEqual(response.data['refund']['amount'], '709.97')

        order = Order.objects.get(pk=order_id)
        self.assertEqual(order.refund_status, Order.RefundStatus.COMPLETED)
        self.assertEqual(order.refund_amount, Decimal('709.97'))
        self.assertEqual(order.status, Order.Status.CANCELLED)

    def test_end_to_end_failed_payment_webhook(self):
        response = self.client.post(reverse('orders:order-list'), CHECKOUT, format='json')
        order_id = response.data['id']
        self.gateway.create_order.return_value = {'id': 'order_G2'}
        self.client.post(reverse('payments:payment-intent'), {'order_id': order_id}, format='json')

        body = json.dumps({
            'event': 'payment.failed',
            'payload': {'payment': {'entity': {
                'id': 'pay_9', 'order_id': 'order_G2', 'status': 'failed',
                'error_description': 'Payment was cancelled by the user',
            }}},
        }).encode()
        self.client.force_authenticate(None)
        response = self.client.post(
            reverse('payments:gateway-webhook'),
            data=body,
            content_type='application/json',
            HTTP_X_RAZORPAY_SIGNATURE=compute_signature('test-webhook-secret', body)
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        order = Order.objects.get(pk=order_id)
        self.assertEqual(order.status, Order.Status.CANCELLED)
        self.assertFalse(order.is_paid)

    def test_verify_requires_payment_id(self):
        response = self.client.post(reverse('payments:payment-verify'), {'orderId': 1}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_verify_requires_an_order_reference(self):
        response = self.client.post(reverse('payments:payment-verify'), {'gatewayPaymentId': 'pay_1'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_rejected_payment_returns_402(self):
        order = make_order(self.user, gateway_order_id='order_G1')
        self.gateway.fetch_payment.return_value = {'id': 'pay_1', 'order_id': 'order_G1', 'status': 'failed'}

        response = self.client.post(reverse('payments:payment-verify'), {
            'orderId': order.pk, 'gatewayPaymentId': 'pay_1',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_402_PAYMENT_REQUIRED)
        self.assertEqual(response.data['error'], 'Payment Rejected')

    def test_refund_requires_staff(self):
        order = make_paid_order(self.user, payment_id='pay_1')

        response = self.client.post(reverse('payments:payment-refund'), {'order_id': order.pk}, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.gateway.refund_payment.assert_not_called()

    def test_refund_of_unpaid_order_returns_conflict(self):
        order = make_order(self.user)
        self.client.force_authenticate(self.staff)

        response = self.client.post(reverse('payments:payment-refund'), {'order_id': order.pk}, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_status(self):
        order = make_order(self.user)

        response = self.client.get(reverse('payments:payment-status', args=[order.pk]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['is_paid'])

    def test_methods_are_public(self):
        self.client.force_authenticate(None)

        response = self.client.get(reverse('payments:payment-methods'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([m['id'] for m in response.data['payment_methods']], ['razorpay', 'cod'])

    def test_gateway_outage_returns_502(self):
        order = make_order(self.user)
        self.gateway.create_order.side_effect = UpstreamServiceError('payment gateway', 'timed out')

        response = self.client.post(reverse('payments:payment-intent'), {'order_id': order.pk}, format='json')

        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)
        self.assertEqual(response.data['error'], 'Upstream Failure')


@override_settings(RATE_LIMIT_ENABLED=True)
class PaymentRateLimitTestCase(APITestCase):

    def setUp(self):
        self.user = make_user()
        self.client.force_authenticate(self.user)
        self.redis = MagicMock()
        self.redis.ttl.return_value = 42
        patcher = patch('core.rate_limiting.get_redis_client', return_value=self.redis)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_over_limit_returns_429(self):
        self.redis.incr.return_value = 11

        response = self.client.post(reverse('payments:payment-verify'), {}, format='json')

        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertEqual(response['Retry-After'], '42')
        self.redis.incr.assert_called_once_with(f'rate_limit:payment-verify:user:{self.user.pk}')

    def test_first_request_opens_window(self):
        self.redis.incr.return_value = 1

        response = self.client.post(reverse('payments:payment-verify'), {}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.redis.expire.assert_called_once_with(f'rate_limit:payment-verify:user:{self.user.pk}', 60)

    def test_redis_unavailable_fails_open(self):
        with patch('core.rate_limiting.get_redis_client', return_value=None):
            response = self.client.post(reverse('payments:payment-verify'), {}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
