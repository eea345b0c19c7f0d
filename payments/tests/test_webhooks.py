"""
Tests for gateway webhook ingestion through the API endpoint.
"""
import json
from decimal import Decimal
from unittest.mock import patch

from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from orders.models import Order
from orders.tests.factories import make_order, make_paid_order, make_user, notified_events, patch_notifications
from payments.signatures import compute_signature


def payment_event(event, payment_id='pay_1', gateway_order_id='order_G1', **entity):
    payment = {
        'id': payment_id,
        'order_id': gateway_order_id,
        'status': 'captured' if event == 'payment.captured' else 'failed',
        'amount': 70997,
        'email': 'customer@example.com',
    }
    payment.update(entity)
    return {'event': event, 'payload': {'payment': {'entity': payment}}}


def refund_event(refund_id='rfnd_1', payment_id='pay_1', amount=70997):
    return {
        'event': 'refund.processed',
        'payload': {
            'refund': {'entity': {
                'id': refund_id,
                'payment_id': payment_id,
                'amount': amount,
                'status': 'processed',
                'notes': {'reason': 'Damaged parcel'},
            }},
        },
    }


class WebhookTestCase(APITestCase):

    def setUp(self):
        self.user = make_user()
        self.notify = patch_notifications(self)
        self.url = reverse('payments:gateway-webhook')

    def deliver(self, event, secret='test-webhook-secret', body=None, signature=None):
        if body is None:
            body = json.dumps(event).encode()
        if signature is None:
            signature = compute_signature(secret, body)
        return self.client.post(
            self.url,
            data=body,
            content_type='application/json',
            HTTP_X_RAZORPAY_SIGNATURE=signature
        )

    def test_captured_marks_order_paid(self):
        order = make_order(self.user, gateway_order_id='order_G1')

        response = self.deliver(payment_event('payment.captured'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {'status': 'ok', 'event': 'payment.captured'})
        order.refresh_from_db()
        self.assertTrue(order.is_paid)
        self.assertEqual(order.status, Order.Status.PROCESSING)
        self.assertEqual(order.payment_id, 'pay_1')
        self.assertEqual(notified_events(self.notify), ['payment_successful'])

    def test_captured_after_client_confirmation_is_a_no_op(self):
        order = make_paid_order(self.user, payment_id='pay_1', gateway_order_id='order_G1')
        before = Order.objects.get(pk=order.pk)

        response = self.deliver(payment_event('payment.captured'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        after = Order.objects.get(pk=order.pk)
        self.assertEqual(after.paid_at, before.paid_at)
        self.assertEqual(after.updated_at, before.updated_at)
        self.assertEqual(after.refund_status, Order.RefundStatus.NONE)
        self.notify.delay.assert_not_called()

    def test_duplicate_delivery_notifies_once(self):
        make_order(self.user, gateway_order_id='order_G1')

        self.deliver(payment_event('payment.captured'))
        self.deliver(payment_event('payment.captured'))

        self.assertEqual(notified_events(self.notify), ['payment_successful'])

    def test_mutated_body_is_rejected(self):
        order = make_order(self.user, gateway_order_id='order_G1')
        body = json.dumps(payment_event('payment.captured')).encode()
        signature = compute_signature('test-webhook-secret', body)
        mutated = body.replace(b'70997', b'70998')

        response = self.deliver(None, body=mutated, signature=signature)

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Invalid Signature')
        order.refresh_from_db()
        self.assertFalse(order.is_paid)

    def test_wrong_secret_is_rejected(self):
        order = make_order(self.user, gateway_order_id='order_G1')

        response = self.deliver(payment_event('payment.captured'), secret='not-the-secret')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        order.refresh_from_db()
        self.assertFalse(order.is_paid)

    def test_missing_signature_is_rejected(self):
        body = json.dumps(payment_event('payment.captured')).encode()

        response = self.client.post(self.url, data=body, content_type='application/json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_malformed_body_is_rejected(self):
        response = self.deliver(None, body=b'{not json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Validation Error')

    def test_unknown_event_is_acknowledged(self):
        response = self.deliver({'event': 'payment.dispute.created', 'payload': {}})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['event'], 'payment.dispute.created')

    def test_unresolvable_order_is_acknowledged(self):
        response = self.deliver(payment_event('payment.captured', gateway_order_id='order_UNKNOWN'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_handler_failure_is_acknowledged(self):
        make_order(self.user, gateway_order_id='order_G1')

        with patch('payments.webhooks.record_payment', side_effect=RuntimeError('database hiccup')):
            response = self.deliver(payment_event('payment.captured'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_failed_payment_cancels_unconfirmed_order(self):
        order = make_order(self.user, gateway_order_id='order_G1')

        response = self.deliver(payment_event(
            'payment.failed',
            error_code='BAD_REQUEST_ERROR',
            error_description='Card declined by issuer'
        ))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.CANCELLED)
        self.assertFalse(order.is_paid)
        self.assertIsNone(order.paid_at)
        self.assertEqual(order.payment_result['error_description'], 'Card declined by issuer')
        self.assertEqual(order.payment_result['error_code'], 'BAD_REQUEST_ERROR')
        self.assertEqual(notified_events(self.notify), ['payment_failed'])

    def test_failed_attempt_after_capture_is_ignored(self):
        order = make_paid_order(self.user, payment_id='pay_1', gateway_order_id='order_G1')

        self.deliver(payment_event('payment.failed', payment_id='pay_0'))

        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.PROCESSING)
        self.assertTrue(order.is_paid)

    def test_refund_processed_completes_refund(self):
        order = make_paid_order(self.user, payment_id='pay_1', status=Order.Status.CANCELLED)

        response = self.deliver(refund_event())

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        order.refresh_from_db()
        self.assertEqual(order.refund_status, Order.RefundStatus.COMPLETED)
        self.assertEqual(order.refund_id, 'rfnd_1')
        self.assertEqual(order.refund_amount, Decimal('709.97'))
        self.assertEqual(order.refund_reason, 'Damaged parcel')
        self.assertEqual(order.status, Order.Status.CANCELLED)
        self.assertEqual(notified_events(self.notify), ['refund_processed'])

    def test_refund_processed_twice_is_a_no_op(self):
        make_paid_order(self.user, payment_id='pay_1')

        self.deliver(refund_event())
        self.deliver(refund_event())

        self.assertEqual(notified_events(self.notify), ['refund_processed'])

    def test_order_paid_marks_unpaid_order(self):
        order = make_order(self.user, gateway_order_id='order_G1')
        event = {
            'event': 'order.paid',
            'payload': {
                'order': {'entity': {'id': 'order_G1', 'status': 'paid'}},
                'payment': {'entity': {'id': 'pay_1', 'order_id': 'order_G1', 'status': 'captured'}},
            },
        }

        self.deliver(event)

        order.refresh_from_db()
        self.assertTrue(order.is_paid)
        self.assertEqual(order.status, Order.Status.PROCESSING)
        self.assertEqual(order.payment_id, 'pay_1')

    def test_order_paid_does_not_overwrite_capture_details(self):
        make_order(self.user, gateway_order_id='order_G1')
        self.deliver(payment_event('payment.captured'))
        order = Order.objects.get(gateway_order_id='order_G1')

        self.deliver({
            'event': 'order.paid',
            'payload': {
                'order': {'entity': {'id': 'order_G1'}},
                'payment': {'entity': {'id': 'pay_1', 'order_id': 'order_G1'}},
            },
        })

        after = Order.objects.get(pk=order.pk)
        self.assertEqual(after.payment_status, 'captured')
        self.assertEqual(after.payment_email, 'customer@example.com')
        self.assertEqual(after.paid_at, order.paid_at)

    def test_order_paid_without_payment_id_is_ignored(self):
        order = make_order(self.user, gateway_order_id='order_G1')

        response = self.deliver({
            'event': 'order.paid',
            'payload': {'order': {'entity': {'id': 'order_G1'}}},
        })

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        order.refresh_from_db()
        self.assertFalse(order.is_paid)
