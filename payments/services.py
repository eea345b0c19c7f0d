"""
Payment Service Layer - intents, payment confirmation and refunds.

Two convergent paths credit an order:
    - confirm_payment: the storefront posts the gateway callback (synchronous)
    - payments.webhooks: the gateway pushes payment events (asynchronous)

Both end in record_payment, a single conditional UPDATE ... WHERE is_paid
is false. Whichever path arrives first applies the payment; the other
matches zero rows and becomes a no-op, so the payment is credited once and
the customer is notified once.
"""
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Dict, Optional, Tuple

from django.conf import settings
from django.db import transaction, IntegrityError
from django.db.models import Case, F, Value, When
from django.utils import timezone

from core.exceptions import (
    InvalidOrderStateError,
    OrderNotFoundError,
    OrderValidationError,
    PaymentRejectedError,
    UpstreamServiceError,
)
from orders.models import Order
from orders.notifications import notify_user, PAYMENT_SUCCESSFUL, PAYMENT_FAILED, REFUND_PROCESSED
from orders.services import check_order_access, get_order, get_order_for_user, lock_order, quantize
from .gateway import from_minor_units, get_gateway_client, to_minor_units
from .signatures import verify_payment_signature

logger = logging.getLogger(__name__)

CAPTURED = 'captured'
COD_PAYMENT_PREFIX = 'cod-'
DEFAULT_REFUND_REASON = 'Customer request'

PAYMENT_METHODS = [
    {
        'id': 'razorpay',
        'name': 'Razorpay',
        'description': 'Pay securely with cards, UPI, net banking, and wallets',
        'methods': [
            {'id': 'card', 'name': 'Credit/Debit Card'},
            {'id': 'upi', 'name': 'UPI'},
            {'id': 'netbanking', 'name': 'Net Banking'},
            {'id': 'wallet', 'name': 'Digital Wallets'},
        ],
        'is_active': True,
    },
    {
        'id': 'cod',
        'name': 'Cash on Delivery',
        'description': 'Pay with cash when your order is delivered',
        'methods': [
            {'id': 'cod', 'name': 'Cash on Delivery'},
        ],
        'is_active': True,
    },
]


def find_order_by_gateway_order(gateway_order_id: str) -> Optional[Order]:
    if not gateway_order_id:
        return None
    return Order.objects.filter(gateway_order_id=gateway_order_id).first()


def find_order_by_payment(payment_id: str) -> Optional[Order]:
    if not payment_id:
        return None
    return Order.objects.filter(payment_id=payment_id).first()


# =============================================================================
# Payment intents
# =============================================================================

def intent_expired(order: Order, now=None) -> bool:
    if order.gateway_order_created_at is None:
        return True
    ttl = timedelta(minutes=settings.PAYMENT_INTENT_TTL_MINUTES)
    return (now or timezone.now()) - order.gateway_order_created_at >= ttl


def create_payment_intent(order_id, requester) -> Dict:
    """
    Mint a remote payment intent for an unpaid order and bind it.

    Returns:
        Dict with intent_id, amount (minor units), currency, key and order refs

    Raises:
        OrderNotFoundError, OrderPermissionError
        InvalidOrderStateError: If paid, cancelled, or holding a live intent
        UpstreamServiceError: If the gateway call fails
    """
    order = get_order(order_id)
    check_order_access(order, requester, allow_staff=False)

    if order.is_paid:
        raise InvalidOrderStateError(f"Order {order.order_number} is already paid")
    if order.status in (Order.Status.CANCELLED, Order.Status.REFUNDED):
        raise InvalidOrderStateError(f"Cannot take payment for {order.status} order {order.order_number}")

    previous_intent = order.gateway_order_id
    if previous_intent and not intent_expired(order):
        raise InvalidOrderStateError(
            f"Order {order.order_number} already has an active payment intent {previous_intent}"
        )

    amount = to_minor_units(order.total_price)
    currency = settings.PAYMENT_CURRENCY
    remote = get_gateway_client().create_order(
        amount,
        currency,
        receipt=order.order_number,
        notes={
            'order_id': str(order.pk),
            'order_number': order.order_number,
        }
    )
    intent_id = remote.get('id')
    if not intent_id:
        raise UpstreamServiceError('payment gateway', 'order creation returned no id')

    now = timezone.now()
    bound = Order.objects.filter(
        pk=order.pk,
        is_paid=False,
        gateway_order_id=previous_intent,
    ).exclude(
        status__in=[Order.Status.CANCELLED, Order.Status.REFUNDED]
    ).update(
        gateway_order_id=intent_id,
        gateway_order_created_at=now,
        updated_at=now
    )
    if not bound:
        logger.warning(f"Order {order.order_number} changed while creating intent {intent_id}; intent left unbound")
        raise InvalidOrderStateError(f"Order {order.order_number} changed while creating the payment intent")

    if previous_intent:
        logger.info(f"Order {order.order_number}: expired intent {previous_intent} replaced by {intent_id}")
    else:
        logger.info(f"Order {order.order_number}: bound payment intent {intent_id}")

    return {
        'intent_id': intent_id,
        'amount': amount,
        'currency': remote.get('currency', currency),
        'key': settings.RAZORPAY_KEY_ID,
        'order_id': order.pk,
        'order_number': order.order_number,
    }


# =============================================================================
# Payment reconciliation
# =============================================================================

def record_payment(order_id, payment_id: str, gateway_order_id: str = '',
                   payment_status: str = CAPTURED, email: str = '', source: str = '') -> Tuple[Order, bool]:
    """
    Credit a captured payment to an order at most once.

    The write is conditional on is_paid being false, so concurrent callers
    cannot both apply it. PENDING orders advance to PROCESSING; a payment
    landing on a cancelled order opens a pending refund instead.

    Returns:
        (order, applied) where applied is False for duplicates
    """
    now = timezone.now()
    try:
        with transaction.atomic():
            updated = Order.objects.filter(pk=order_id, is_paid=False).update(
                is_paid=True,
                paid_at=now,
                payment_id=payment_id,
                payment_gateway_order_id=gateway_order_id or '',
                payment_status=payment_status,
                payment_email=email or '',
                payment_error_code='',
                payment_error_description='',
                payment_updated_at=now,
                payment_method=Order.PaymentMethod.RAZORPAY,
                status=Case(
                    When(status=Order.Status.PENDING, then=Value(Order.Status.PROCESSING)),
                    default=F('status')
                ),
                refund_status=Case(
                    When(status=Order.Status.CANCELLED, then=Value(Order.RefundStatus.PENDING)),
                    default=F('refund_status')
                ),
                updated_at=now
            )
    except IntegrityError:
        logger.error(f"Payment {payment_id} is already credited to another order; not applied to order {order_id}")
        updated = 0

    order = Order.objects.get(pk=order_id)
    if updated:
        logger.info(f"Order {order.order_number}: payment {payment_id} recorded via {source or 'unknown'}")
        notify_user(order, PAYMENT_SUCCESSFUL, method=order.payment_method)
        return order, True

    if order.payment_id == payment_id:
        logger.info(f"Order {order.order_number}: payment {payment_id} already recorded, {source} no-op")
    else:
        logger.warning(
            f"Order {order.order_number} already paid with {order.payment_id}; "
            f"payment {payment_id} from {source} not applied"
        )
    return order, False


def resolve_payment_order(order_id=None, gateway_order_id: str = None) -> Order:
    if order_id:
        return get_order(order_id)
    if gateway_order_id:
        order = find_order_by_gateway_order(gateway_order_id)
        if order is None:
            raise OrderNotFoundError(f"No order bound to gateway order {gateway_order_id}")
        return order
    raise OrderValidationError("Provide order_id or a gateway_order_id bound to an order")


def confirm_payment(requester, payment_id: str, order_id=None,
                    gateway_order_id: str = None, signature: str = None) -> Order:
    """
    Synchronous confirmation posted by the storefront after checkout.

    The client's word is never enough: a supplied signature must verify, and
    the payment is re-fetched from the gateway and must be captured.

    Raises:
        OrderValidationError: Missing payment id or order reference
        OrderNotFoundError, OrderPermissionError
        InvalidSignatureError: Signature mismatch
        PaymentRejectedError: Gateway does not report a matching captured payment
        InvalidOrderStateError: Order already paid with a different payment
        UpstreamServiceError: Gateway unreachable
    """
    if not payment_id:
        raise OrderValidationError("gateway_payment_id is required")

    order = resolve_payment_order(order_id, gateway_order_id)
    check_order_access(order, requester, allow_staff=False)

    if gateway_order_id and order.gateway_order_id and gateway_order_id != order.gateway_order_id:
        raise OrderValidationError(
            f"Gateway order {gateway_order_id} does not belong to order {order.order_number}"
        )
    expected_gateway_order = order.gateway_order_id or gateway_order_id

    if signature:
        if not expected_gateway_order:
            raise OrderValidationError("A signature needs the gateway order id it was issued for")
        verify_payment_signature(expected_gateway_order, payment_id, signature)

    if order.is_paid and order.payment_id == payment_id:
        logger.info(f"Order {order.order_number}: confirmation for {payment_id} repeated, no-op")
        return order

    payment = get_gateway_client().fetch_payment(payment_id)
    status = payment.get('status')
    if status != CAPTURED:
        raise PaymentRejectedError(f"Payment {payment_id} is {status or 'unknown'}, not captured")

    remote_order = payment.get('order_id') or ''
    if expected_gateway_order and remote_order and remote_order != expected_gateway_order:
        raise PaymentRejectedError(f"Payment {payment_id} belongs to a different gateway order")

    amount = payment.get('amount')
    if amount is not None and int(amount) != to_minor_units(order.total_price):
        raise PaymentRejectedError(
            f"Payment {payment_id} amount {amount} does not match order total {order.total_price}"
        )

    order, applied = record_payment(
        order.pk,
        payment_id,
        gateway_order_id=remote_order or expected_gateway_order or '',
        payment_status=CAPTURED,
        email=payment.get('email') or getattr(requester, 'email', ''),
        source='client confirmation'
    )
    if not applied and order.payment_id != payment_id:
        raise InvalidOrderStateError(
            f"Order {order.order_number} is already paid with another payment; "
            f"payment {payment_id} was not applied"
        )
    return order


def mark_order_paid(order_id, payment_id: str, gateway_order_id: str) -> Tuple[Order, bool]:
    """
    Lighter fallback used by the order-paid event: marks payment only while
    the order is unpaid and never touches details recorded by a capture.
    """
    return record_payment(
        order_id,
        payment_id,
        gateway_order_id=gateway_order_id,
        payment_status='paid',
        source='order-paid webhook'
    )


def record_payment_failure(order_id, payment: Dict) -> bool:
    """
    Cancel an unpaid, still-open order after a failed payment attempt.

    A failure arriving after the order was paid (an earlier attempt) changes
    nothing. is_paid is never touched.
    """
    now = timezone.now()
    description = payment.get('error_description') or 'Payment failed'
    updated = Order.objects.filter(
        pk=order_id,
        is_paid=False,
        status__in=[Order.Status.PENDING, Order.Status.PROCESSING],
    ).update(
        status=Order.Status.CANCELLED,
        cancelled_at=now,
        cancellation_reason=f"Payment failed: {description}",
        payment_status=payment.get('status') or 'failed',
        payment_gateway_order_id=payment.get('order_id') or '',
        payment_email=payment.get('email') or '',
        payment_error_code=payment.get('error_code') or '',
        payment_error_description=description,
        payment_updated_at=now,
        updated_at=now
    )

    order = Order.objects.get(pk=order_id)
    if updated:
        logger.info(f"Order {order.order_number} cancelled after failed payment {payment.get('id')}")
        notify_user(order, PAYMENT_FAILED, reason=description)
        return True

    logger.info(
        f"Order {order.order_number}: failure of payment {payment.get('id')} ignored "
        f"(status {order.status}, paid {order.is_paid})"
    )
    return False


# =============================================================================
# Refunds
# =============================================================================

def apply_refund(order: Order, refund_id: str, amount: Decimal, gateway_status: str,
                 reason: str, actor=None, now=None) -> None:
    """Write the completed refund onto a locked order (caller saves)."""
    order.refund_status = Order.RefundStatus.COMPLETED
    order.refund_id = refund_id
    order.refund_amount = amount
    order.refund_gateway_status = gateway_status or ''
    order.refund_reason = reason
    order.refund_processed_at = now or timezone.now()
    order.refund_processed_by = actor
    if order.status != Order.Status.CANCELLED and amount >= order.total_price:
        order.status = Order.Status.REFUNDED


def process_refund(order_id, actor, amount=None, reason: str = '') -> Order:
    """
    Refund a paid order through the gateway, all or nothing.

    The order row stays locked for the duration of the gateway call, so two
    operators cannot refund the same order twice. If the gateway call fails
    nothing is written and the order keeps its pre-refund state.

    Raises:
        OrderNotFoundError
        InvalidOrderStateError: Unpaid, no gateway payment, or already refunded
        OrderValidationError: Amount not within (0, total]
        UpstreamServiceError: Gateway refund failed
    """
    reason = reason or DEFAULT_REFUND_REASON

    with transaction.atomic():
        order = lock_order(order_id)

        if not order.is_paid:
            raise InvalidOrderStateError(f"Order {order.order_number} is not paid")
        if not order.payment_id or order.payment_id.startswith(COD_PAYMENT_PREFIX):
            raise InvalidOrderStateError(f"Order {order.order_number} has no gateway payment to refund")
        if order.refund_status == Order.RefundStatus.COMPLETED:
            raise InvalidOrderStateError(f"Refund for order {order.order_number} has already been processed")

        refund_amount = order.total_price if amount is None else quantize(Decimal(str(amount)))
        if refund_amount <= 0 or refund_amount > order.total_price:
            raise OrderValidationError(
                f"Refund amount {refund_amount} must be positive and at most {order.total_price}"
            )

        refund = get_gateway_client().refund_payment(
            order.payment_id,
            to_minor_units(refund_amount),
            notes={
                'reason': reason,
                'order_id': str(order.pk),
                'order_number': order.order_number,
            }
        )
        if not refund.get('id'):
            raise UpstreamServiceError('payment gateway', 'refund returned no id')

        refunded = from_minor_units(refund['amount']) if refund.get('amount') is not None else refund_amount
        apply_refund(order, refund['id'], refunded, refund.get('status', ''), reason, actor=actor)
        order.save()

    logger.info(
        f"Order {order.order_number}: refund {order.refund_id} of {order.refund_amount} "
        f"by user {getattr(actor, 'pk', actor)}"
    )
    notify_user(order, REFUND_PROCESSED, amount=order.refund_amount)
    return order


def record_gateway_refund(refund: Dict) -> bool:
    """
    Apply a refund reported by the gateway (refund-processed event).

    Returns:
        True when the refund was recorded, False for duplicates and unknown payments
    """
    order = find_order_by_payment(refund.get('payment_id'))
    if order is None:
        logger.error(f"No order found for refunded payment {refund.get('payment_id')}")
        return False

    with transaction.atomic():
        order = lock_order(order.pk)
        if order.refund_status == Order.RefundStatus.COMPLETED:
            if order.refund_id == refund.get('id'):
                logger.info(f"Order {order.order_number}: refund {order.refund_id} already recorded")
            else:
                logger.warning(
                    f"Order {order.order_number} already holds refund {order.refund_id}; "
                    f"gateway refund {refund.get('id')} needs manual review"
                )
            return False

        notes = refund.get('notes') if isinstance(refund.get('notes'), dict) else {}
        apply_refund(
            order,
            refund.get('id') or '',
            from_minor_units(refund.get('amount') or 0),
            refund.get('status', ''),
            notes.get('reason') or DEFAULT_REFUND_REASON
        )
        order.save()

    logger.info(f"Order {order.order_number}: gateway refund {order.refund_id} of {order.refund_amount} recorded")
    notify_user(order, REFUND_PROCESSED, amount=order.refund_amount)
    return True


# =============================================================================
# Payment status
# =============================================================================

def get_payment_status(order_id, requester) -> Dict:
    """Local payment state, plus live gateway details when available."""
    order = get_order_for_user(order_id, requester)
    payment_status = {
        'order_id': order.pk,
        'order_number': order.order_number,
        'is_paid': order.is_paid,
        'payment_method': order.payment_method,
        'paid_at': order.paid_at,
        'status': order.status,
        'refund_status': order.refund_status or None,
    }

    if order.is_paid and order.payment_id and not order.payment_id.startswith(COD_PAYMENT_PREFIX):
        try:
            payment = get_gateway_client().fetch_payment(order.payment_id)
        except UpstreamServiceError as e:
            logger.warning(f"Live payment lookup for order {order.order_number} failed: {e}")
            payment_status['gateway_details'] = {'error': 'Unable to fetch payment details from the gateway'}
        else:
            payment_status['gateway_details'] = {
                'payment_id': payment.get('id'),
                'status': payment.get('status'),
                'method': payment.get('method'),
                'amount': str(from_minor_units(payment['amount'])) if payment.get('amount') is not None else None,
                'currency': payment.get('currency'),
            }
    return payment_status
