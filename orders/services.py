"""
Order Service Layer - checkout and the order lifecycle state machine.

Checkout:
1. Resolve every line item to a catalog product or an inline snapshot
2. Compute (or accept) totals and check total = items + tax + shipping - discount
3. Allocate an order number and persist the order as PENDING, unpaid
4. Best effort: register the shipment and notify the customer

Status changes lock the order row (select_for_update) so concurrent
operators, customers and the shipment poll never overwrite each other.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from django.conf import settings
from django.db import transaction, IntegrityError
from django.utils import timezone

from catalog.models import Product, Coupon
from core.exceptions import (
    InvalidOrderStateError,
    OrderNotFoundError,
    OrderPermissionError,
    OrderValidationError,
)
from .checkout import OrderRequest
from .models import Order, OrderItem
from .notifications import notify_user, status_event, ORDER_PLACED
from .numbering import next_order_number

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
ORDER_NUMBER_ATTEMPTS = 3

# Statuses an operator may request through transition_status
TRANSITION_TARGETS = (
    Order.Status.PROCESSING,
    Order.Status.SHIPPED,
    Order.Status.DELIVERED,
    Order.Status.CANCELLED,
)

# Forward progress of a live order; moving backwards is rejected
PROGRESS_RANK = {
    Order.Status.PENDING: 0,
    Order.Status.PROCESSING: 1,
    Order.Status.SHIPPED: 2,
    Order.Status.DELIVERED: 3,
}


def quantize(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def get_order(order_id) -> Order:
    try:
        return Order.objects.get(pk=order_id)
    except (Order.DoesNotExist, ValueError):
        raise OrderNotFoundError(f"Order {order_id} not found")


def lock_order(order_id) -> Order:
    """Load an order with a row lock; call inside transaction.atomic()."""
    try:
        return Order.objects.select_for_update().get(pk=order_id)
    except (Order.DoesNotExist, ValueError):
        raise OrderNotFoundError(f"Order {order_id} not found")


def check_order_access(order: Order, user, allow_staff: bool = True) -> None:
    """Raise OrderPermissionError unless `user` owns the order (or is staff)."""
    if order.user_id == user.pk:
        return
    if allow_staff and user.is_staff:
        return
    raise OrderPermissionError(f"Not authorized to access order {order.order_number}")


def get_order_for_user(order_id, user) -> Order:
    order = get_order(order_id)
    check_order_access(order, user)
    return order


# =============================================================================
# Checkout
# =============================================================================

def resolve_line_items(items) -> List[Dict]:
    """
    Snapshot each requested line.

    Catalog references copy the product's current name, first image and
    price; inline items (no product id) are taken as given.

    Raises:
        OrderNotFoundError: If a referenced product does not exist or is inactive
    """
    product_ids = {item.product_id for item in items if item.product_id}
    products = {
        p.id: p for p in Product.objects.filter(id__in=product_ids, is_active=True)
    }
    missing = product_ids - set(products)
    if missing:
        raise OrderNotFoundError(f"Products not found or inactive: {sorted(missing)}")

    default_image = getattr(settings, 'DEFAULT_PRODUCT_IMAGE', '')
    lines = []
    for item in items:
        if item.product_id:
            product = products[item.product_id]
            lines.append({
                'product': product,
                'name': product.name,
                'image': product.primary_image or default_image,
                'unit_price': product.price,
                'quantity': item.quantity,
            })
        else:
            lines.append({
                'product': None,
                'name': item.name,
                'image': item.image or default_image,
                'unit_price': item.price,
                'quantity': item.quantity,
            })
    return lines


def find_coupon(code: str) -> Optional[Coupon]:
    if not code:
        return None
    coupon = Coupon.objects.filter(code=code).first()
    if coupon is None or not coupon.is_valid:
        logger.info(f"Coupon {code!r} is unknown or expired, no discount applied")
        return None
    return coupon


def calculate_totals(request: OrderRequest, lines: List[Dict], coupon: Optional[Coupon] = None) -> Dict[str, Decimal]:
    """
    Compute the money breakdown for a checkout.

    Client-supplied subtotal, tax and shipping are used when present and
    STOREFRONT_TRUST_CLIENT_TOTALS is on; missing parts fall back to the
    server rules. The total must equal items + tax + shipping - discount.

    Raises:
        OrderValidationError: If a client-supplied total does not add up
    """
    trust_client = getattr(settings, 'STOREFRONT_TRUST_CLIENT_TOTALS', True)

    def client_value(value):
        return value if trust_client else None

    computed_items = sum(
        (line['unit_price'] * line['quantity'] for line in lines),
        Decimal('0.00')
    )
    items_price = client_value(request.items_price)
    if items_price is None:
        items_price = computed_items
    items_price = quantize(items_price)

    shipping_price = client_value(request.shipping_price)
    if shipping_price is None:
        shipping_price = Decimal('0.00') if items_price > settings.FREE_SHIPPING_THRESHOLD else settings.FLAT_SHIPPING_FEE
    shipping_price = quantize(shipping_price)

    tax_price = client_value(request.tax_price)
    if tax_price is None:
        tax_price = items_price * settings.TAX_RATE
    tax_price = quantize(tax_price)

    discount_amount = coupon.discount_for(items_price) if coupon else Decimal('0.00')

    total_price = items_price + tax_price + shipping_price - discount_amount
    client_total = client_value(request.total_price)
    if client_total is not None and quantize(client_total) != total_price:
        raise OrderValidationError(
            f"Order total {client_total} does not match items {items_price} + tax {tax_price} "
            f"+ shipping {shipping_price} - discount {discount_amount} = {total_price}"
        )

    return {
        'items_price': items_price,
        'tax_price': tax_price,
        'shipping_price': shipping_price,
        'discount_amount': discount_amount,
        'total_price': total_price,
    }


def create_order(user, request: OrderRequest) -> Order:
    """
    Create an order in PENDING status.

    Args:
        user: Customer placing the order
        request: Normalized checkout request

    Returns:
        The persisted Order

    Raises:
        OrderValidationError: If the request or its totals are invalid
        OrderNotFoundError: If a referenced product does not exist
    """
    if not request.items:
        raise OrderValidationError("Order must contain at least one item")

    lines = resolve_line_items(request.items)
    coupon = find_coupon(request.coupon_code)
    totals = calculate_totals(request, lines, coupon)

    order = None
    for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
        order_number = next_order_number()
        try:
            with transaction.atomic():
                order = Order.objects.create(
                    user=user,
                    order_number=order_number,
                    status=Order.Status.PENDING,
                    payment_method=request.payment_method,
                    shipping_address=request.shipping_address,
                    coupon_code=coupon.code if coupon else '',
                    notes=request.notes,
                    **totals
                )
                OrderItem.objects.bulk_create([
                    OrderItem(order=order, **line) for line in lines
                ])
            break
        except IntegrityError as e:
            if attempt == ORDER_NUMBER_ATTEMPTS:
                raise
            logger.warning(f"Order number {order_number} collided ({e}), retrying")

    logger.info(
        f"Created order {order.order_number} for user {user.pk}: "
        f"{len(lines)} items, total {order.total_price}"
    )

    # Shipping registration is advisory; failures are logged inside
    from shipping.services import register_shipment
    register_shipment(order)

    notify_user(order, ORDER_PLACED)
    return order


# =============================================================================
# Lifecycle transitions
# =============================================================================

def record_cash_collection(order: Order, now) -> None:
    """Mark a cash-on-delivery order as paid at hand-over."""
    order.is_paid = True
    order.paid_at = now
    order.payment_id = f"cod-{order.order_number}"
    order.payment_status = 'collected'
    order.payment_updated_at = now


def apply_transition(order: Order, target: str, reason: str = '') -> None:
    """
    Move a locked order to `target`, enforcing the lifecycle rules.

    Does not save; the caller saves inside its transaction.

    Raises:
        InvalidOrderStateError: If the move is not allowed from the current status
    """
    current = order.status
    now = timezone.now()

    if target == Order.Status.CANCELLED:
        if current == Order.Status.CANCELLED:
            raise InvalidOrderStateError(f"Order {order.order_number} is already cancelled")
        if current == Order.Status.DELIVERED:
            raise InvalidOrderStateError(f"Cannot cancel delivered order {order.order_number}")
        if current == Order.Status.REFUNDED:
            raise InvalidOrderStateError(f"Cannot cancel refunded order {order.order_number}")

        order.status = Order.Status.CANCELLED
        order.cancelled_at = now
        order.cancellation_reason = reason or 'No reason provided'
        if order.is_paid and order.refund_status != Order.RefundStatus.COMPLETED:
            order.refund_status = Order.RefundStatus.PENDING
        return

    if current not in PROGRESS_RANK or current == Order.Status.DELIVERED:
        raise InvalidOrderStateError(f"Cannot move {current} order {order.order_number} to {target}")
    if current == target:
        raise InvalidOrderStateError(f"Order {order.order_number} is already {target}")
    if PROGRESS_RANK[target] < PROGRESS_RANK[current]:
        raise InvalidOrderStateError(f"Cannot move order {order.order_number} back from {current} to {target}")

    if target == Order.Status.SHIPPED:
        order.shipped_at = order.shipped_at or now
    elif target == Order.Status.DELIVERED:
        if not order.is_paid:
            if not order.is_cod:
                raise InvalidOrderStateError(f"Cannot deliver unpaid order {order.order_number}")
            record_cash_collection(order, now)
        order.delivered_at = now

    order.status = target


def transition_status(order_id, target_status: str, actor, notes: str = '') -> Order:
    """
    Operator-driven status change.

    Args:
        order_id: Order primary key
        target_status: One of processing, shipped, delivered, cancelled
        actor: Staff user performing the change
        notes: Optional remark, kept as the cancellation reason when cancelling

    Raises:
        OrderValidationError: If target_status is not a legal target
        OrderNotFoundError: If the order does not exist
        InvalidOrderStateError: If the move is not allowed
    """
    if target_status not in TRANSITION_TARGETS:
        raise OrderValidationError(f"Invalid order status: {target_status}")

    with transaction.atomic():
        order = lock_order(order_id)
        previous = order.status
        apply_transition(order, target_status, reason=notes)
        if notes and target_status != Order.Status.CANCELLED:
            order.notes = f"{order.notes}\n[{target_status}] {notes}".strip()
        order.save()

    logger.info(
        f"Order {order.order_number}: {previous} -> {order.status} by user {getattr(actor, 'pk', actor)}"
    )
    notify_user(order, status_event(order.status))
    return order


def cancel_order(order_id, requester, reason: str = '') -> Order:
    """
    Customer (or staff) cancellation.

    Cancelling a paid order opens a pending refund; the money moves later
    through payments.services.process_refund.
    """
    with transaction.atomic():
        order = lock_order(order_id)
        check_order_access(order, requester)
        apply_transition(order, Order.Status.CANCELLED, reason=reason)
        order.save()

    by = 'staff' if requester.is_staff and order.user_id != requester.pk else 'customer'
    logger.info(f"Order {order.order_number} cancelled by {by}, refund status {order.refund_status or 'none'}")
    notify_user(order, status_event(Order.Status.CANCELLED))
    return order


def update_shipping_details(order_id, tracking_number: str, courier: str,
                            estimated_delivery=None, shipped_at=None) -> Order:
    """
    Record courier details for an order; a shipped_at date marks it shipped.
    """
    with transaction.atomic():
        order = lock_order(order_id)
        if order.status in (Order.Status.CANCELLED, Order.Status.REFUNDED):
            raise InvalidOrderStateError(f"Cannot ship {order.status} order {order.order_number}")

        order.tracking_number = tracking_number
        order.courier = courier
        order.estimated_delivery = estimated_delivery
        if shipped_at:
            if order.status != Order.Status.SHIPPED:
                apply_transition(order, Order.Status.SHIPPED)
            order.shipped_at = shipped_at
        order.save()

    logger.info(f"Order {order.order_number}: shipping details set ({courier} {tracking_number})")
    notify_user(
        order,
        status_event(Order.Status.SHIPPED),
        courier=order.courier,
        tracking_number=order.tracking_number
    )
    return order


def apply_courier_update(order_id, target_status: Optional[str] = None, **tracking) -> Order:
    """
    Apply a shipment status read from the shipping provider.

    Safe to repeat: tracking fields are overwritten with the same values and
    the status only moves forward, so skipped or overlapping polls converge.
    A user notification is sent only when the status actually changes.
    """
    with transaction.atomic():
        order = lock_order(order_id)
        previous = order.status

        for field_name, value in tracking.items():
            if value not in (None, ''):
                setattr(order, field_name, value)

        moved = False
        if (
            target_status
            and previous in PROGRESS_RANK
            and PROGRESS_RANK[target_status] > PROGRESS_RANK[previous]
        ):
            try:
                apply_transition(order, target_status)
                moved = True
            except InvalidOrderStateError as e:
                logger.warning(f"Courier update for order {order.order_number} not applied: {e}")
        order.save()

    if moved:
        logger.info(f"Order {order.order_number}: {previous} -> {order.status} from courier tracking")
        notify_user(order, status_event(order.status), tracking_number=order.tracking_number)
    return order


# =============================================================================
# Tracking
# =============================================================================

def build_tracking_timeline(order: Order) -> Dict:
    """Milestones built from recorded timestamps only."""
    timeline = [{
        'status': 'Order Placed',
        'date': order.created_at,
        'description': 'Your order has been placed successfully',
    }]

    if order.is_paid and order.paid_at:
        timeline.append({
            'status': 'Payment Confirmed',
            'date': order.paid_at,
            'description': 'Payment has been received and confirmed',
        })

    if order.shipped_at:
        timeline.append({
            'status': 'Shipped',
            'date': order.shipped_at,
            'description': 'Your order has been shipped',
            'tracking_number': order.tracking_number or None,
            'courier': order.courier or None,
        })

    if order.delivered_at:
        timeline.append({
            'status': 'Delivered',
            'date': order.delivered_at,
            'description': 'Your order has been delivered successfully',
        })

    if order.cancelled_at:
        description = 'Order cancelled'
        if order.cancellation_reason:
            description = f"{description}: {order.cancellation_reason}"
        timeline.append({
            'status': 'Cancelled',
            'date': order.cancelled_at,
            'description': description,
        })

    if order.refund_status == Order.RefundStatus.COMPLETED and order.refund_processed_at:
        timeline.append({
            'status': 'Refunded',
            'date': order.refund_processed_at,
            'description': f"Refund of {order.refund_amount} processed",
        })

    timeline.sort(key=lambda entry: entry['date'])
    return {
        'order_number': order.order_number,
        'status': order.status,
        'estimated_delivery': order.estimated_delivery,
        'timeline': timeline,
    }


def track_order(order_id, requester) -> Dict:
    order = get_order_for_user(order_id, requester)
    return build_tracking_timeline(order)
