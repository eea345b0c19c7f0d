"""
Tests for checkout: payload normalization, totals, numbering and order creation.

Test Cases:
1. Historical field aliases map onto one canonical request
2. Fallback totals (shipping threshold, tax, coupon)
3. Client totals trusted component-wise, invariant always checked
4. Per-day order numbers
5. Order creation snapshots products and survives courier failure
"""
from datetime import datetime, timezone as dt_timezone
from decimal import Decimal

from django.test import TestCase, override_settings

from catalog.models import Coupon, Product
from core.exceptions import InvalidOrderStateError, OrderNotFoundError, OrderValidationError
from orders.checkout import LineItemRequest, OrderRequest, normalize_checkout_payload, normalize_payment_method
from orders.models import Order, OrderNumberCounter
from orders.numbering import format_order_number, next_order_number
from orders.serializers import OrderCreateSerializer
from orders.services import calculate_totals, create_order, resolve_line_items

from .factories import ADDRESS, make_user, notified_events, patch_courier, patch_notifications


class CheckoutNormalizationTestCase(TestCase):

    def test_aliases_map_to_canonical_fields(self):
        payload = normalize_checkout_payload({
            'orderItems': [{'productId': 3, 'qty': 2}],
            'shippingAddress': {'street': '12 MG Road', 'city': 'Bengaluru', 'pincode': '560001'},
            'paymentMethod': 'card',
            'subtotal': '400.00',
            'deliveryCharges': '50.00',
            'tax': '20.00',
            'total': '470.00',
            'specialInstructions': 'Leave at the door',
        })

        self.assertEqual(payload['items'], [{'product_id': 3, 'quantity': 2}])
        self.assertEqual(payload['shipping_address'], {
            'address': '12 MG Road', 'city': 'Bengaluru', 'postal_code': '560001'
        })
        self.assertEqual(payload['items_price'], '400.00')
        self.assertEqual(payload['shipping_price'], '50.00')
        self.assertEqual(payload['tax_price'], '20.00')
        self.assertEqual(payload['total_price'], '470.00')
        self.assertEqual(payload['notes'], 'Leave at the door')

    def test_payment_method_aliases(self):
        self.assertEqual(normalize_payment_method('card'), 'credit_card')
        self.assertEqual(normalize_payment_method('COD'), 'cod')
        self.assertIsNone(normalize_payment_method('bitcoin'))

    def test_serializer_builds_order_request(self):
        serializer = OrderCreateSerializer(data={
            'orderItems': [{'name': 'Gift wrap', 'price': '49.00', 'quantity': 1}],
            'shippingAddress': {'line1': '1 Park St', 'city': 'Kolkata', 'postalCode': '700016'},
            'paymentMethod': 'upi',
        })
        self.assertTrue(serializer.is_valid(), serializer.errors)

        request = serializer.to_order_request()
        self.assertEqual(request.payment_method, 'upi')
        self.assertEqual(request.items[0].name, 'Gift wrap')
        self.assertEqual(request.items[0].price, Decimal('49.00'))
        self.assertEqual(request.shipping_address['country'], 'India')
        self.assertIsNone(request.total_price)

    def test_serializer_rejects_unknown_payment_method(self):
        serializer = OrderCreateSerializer(data={
            'items': [{'name': 'Gift wrap', 'price': '49.00', 'quantity': 1}],
            'shipping_address': ADDRESS,
            'payment_method': 'bitcoin',
        })
        self.assertFalse(serializer.is_valid())
        self.assertIn('payment_method', serializer.errors)

    def test_serializer_rejects_item_without_product_or_price(self):
        serializer = OrderCreateSerializer(data={
            'items': [{'name': 'Mystery box', 'quantity': 1}],
            'shipping_address': ADDRESS,
            'payment_method': 'cod',
        })
        self.assertFalse(serializer.is_valid())
        self.assertIn('items', serializer.errors)


class TotalsTestCase(TestCase):

    def setUp(self):
        self.product = Product.objects.create(name='Terracotta vase', price=Decimal('200.00'))

    def _request(self, quantity=2, **totals):
        return OrderRequest(
            items=(LineItemRequest(quantity=quantity, product_id=self.product.id),),
            shipping_address=dict(ADDRESS),
            payment_method='razorpay',
            **totals
        )

    def _totals(self, request, coupon=None):
        return calculate_totals(request, resolve_line_items(request.items), coupon)

    def test_fallback_totals_below_free_shipping_threshold(self):
        totals = self._totals(self._request(quantity=2))

        self.assertEqual(totals['items_price'], Decimal('400.00'))
        self.assertEqual(totals['shipping_price'], Decimal('50.00'))
        self.assertEqual(totals['tax_price'], Decimal('20.00'))
        self.assertEqual(totals['total_price'], Decimal('470.00'))

    def test_free_shipping_above_threshold(self):
        totals = self._totals(self._request(quantity=3))

        self.assertEqual(totals['shipping_price'], Decimal('0.00'))
        self.assertEqual(totals['total_price'], Decimal('630.00'))

    def test_coupon_discount_is_subtracted(self):
        coupon = Coupon.objects.create(code='WELCOME10', discount_value=Decimal('10'))
        totals = self._totals(self._request(quantity=2), coupon)

        self.assertEqual(totals['discount_amount'], Decimal('40.00'))
        self.assertEqual(totals['total_price'], Decimal('430.00'))

    def test_client_totals_are_used_when_consistent(self):
        totals = self._totals(self._request(
            items_price=Decimal('400.00'),
            tax_price=Decimal('0.00'),
            shipping_price=Decimal('0.00'),
            total_price=Decimal('400.00'),
        ))
        self.assertEqual(totals['total_price'], Decimal('400.00'))
        self.assertEqual(totals['tax_price'], Decimal('0.00'))

    def test_inconsistent_client_total_is_rejected(self):
        with self.assertRaises(OrderValidationError):
            self._totals(self._request(
                items_price=Decimal('400.00'),
                tax_price=Decimal('0.00'),
                shipping_price=Decimal('0.00'),
                total_price=Decimal('1.00'),
            ))

    @override_settings(STOREFRONT_TRUST_CLIENT_TOTALS=False)
    def test_untrusted_client_components_are_recomputed(self):
        totals = self._totals(self._request(
            items_price=Decimal('1.00'),
            tax_price=Decimal('0.00'),
        ))
        self.assertEqual(totals['items_price'], Decimal('400.00'))
        self.assertEqual(totals['tax_price'], Decimal('20.00'))

    def test_inactive_product_is_not_found(self):
        self.product.is_active = False
        self.product.save()

        with self.assertRaises(OrderNotFoundError):
            resolve_line_items(self._request().items)


class OrderNumberTestCase(TestCase):

    def test_format(self):
        day = datetime(2024, 1, 31).date()
        self.assertEqual(format_order_number(day, 7), 'YT-20240131-0007')

    def test_counter_increments_per_day(self):
        first_day = datetime(2024, 1, 31, 10, tzinfo=dt_timezone.utc)
        next_day = datetime(2024, 2, 1, 10, tzinfo=dt_timezone.utc)

        self.assertEqual(next_order_number(first_day), 'YT-20240131-0001')
        self.assertEqual(next_order_number(first_day), 'YT-20240131-0002')
        self.assertEqual(next_order_number(next_day), 'YT-20240201-0001')
        self.assertEqual(OrderNumberCounter.objects.count(), 2)

    def test_day_is_capped_at_four_digits(self):
        moment = datetime(2024, 1, 31, 10, tzinfo=dt_timezone.utc)
        OrderNumberCounter.objects.create(day=moment.date(), last_value=9998)

        self.assertEqual(next_order_number(moment), 'YT-20240131-9999')
        with self.assertRaises(InvalidOrderStateError):
            next_order_number(moment)
        self.assertEqual(OrderNumberCounter.objects.get(day=moment.date()).last_value, 9999)


class CreateOrderTestCase(TestCase):

    def setUp(self):
        self.user = make_user()
        self.product = Product.objects.create(
            name='Brass lamp',
            price=Decimal('350.00'),
            images=['https://cdn.example.com/lamp.jpg']
        )
        self.notify = patch_notifications(self)
        self.courier = patch_courier(self)

    def _request(self, **kwargs):
        defaults = dict(
            items=(
                LineItemRequest(quantity=2, product_id=self.product.id),
                LineItemRequest(quantity=1, name='Gift wrap', price=Decimal('9.97')),
            ),
            shipping_address=dict(ADDRESS),
            payment_method='razorpay',
        )
        defaults.update(kwargs)
        return OrderRequest(**defaults)

    def test_order_is_pending_and_unpaid_with_snapshots(self):
        order = create_order(self.user, self._request())

        self.assertEqual(order.status, Order.Status.PENDING)
        self.assertFalse(order.is_paid)
        self.assertIsNone(order.paid_at)
        self.assertRegex(order.order_number, r'^YT-\d{8}-\d{4}$')

        items = list(order.items.all())
        self.assertEqual(items[0].name, 'Brass lamp')
        self.assertEqual(items[0].image, 'https://cdn.example.com/lamp.jpg')
        self.assertEqual(items[0].unit_price, Decimal('350.00'))
        self.assertIsNone(items[1].product)
        self.assertEqual(items[1].image, 'default-product-image.jpg')
        self.assertEqual(order.items_price, Decimal('709.97'))

    def test_catalog_price_change_does_not_touch_order(self):
        order = create_order(self.user, self._request())
        self.product.price = Decimal('999.00')
        self.product.save()

        self.assertEqual(order.items.first().unit_price, Decimal('350.00'))

    def test_registers_shipment_and_notifies(self):
        order = create_order(self.user, self._request())
        order.refresh_from_db()

        self.assertEqual(order.shipping_order_id, '9001')
        self.assertEqual(order.shipping_shipment_id, '7001')
        self.assertEqual(notified_events(self.notify), ['order_placed'])

    def test_courier_failure_does_not_fail_checkout(self):
        self.courier.create_order.side_effect = RuntimeError('courier down')

        order = create_order(self.user, self._request())

        self.assertTrue(Order.objects.filter(pk=order.pk).exists())
        self.assertEqual(order.shipping_shipment_id, '')

    def test_empty_items_rejected(self):
        with self.assertRaises(OrderValidationError):
            create_order(self.user, self._request(items=()))
        self.assertEqual(Order.objects.count(), 0)

    def test_sequential_orders_get_distinct_numbers(self):
        first = create_order(self.user, self._request())
        second = create_order(self.user, self._request())

        self.assertNotEqual(first.order_number, second.order_number)
