"""
Webhook ingestion for gateway events.

The signature is verified against the raw body before anything is parsed.
After that every event is acknowledged: handler failures and events for
unknown orders are logged, never returned to the gateway as errors, so its
redelivery loop keeps working.
"""
import json
import logging
from typing import Callable, Dict, Optional

from core.exceptions import OrderValidationError
from orders.models import Order
from .services import (
    find_order_by_gateway_order,
    mark_order_paid,
    record_gateway_refund,
    record_payment,
    record_payment_failure,
)
from .signatures import verify_webhook_signature

logger = logging.getLogger(__name__)

PAYMENT_CAPTURED = 'payment.captured'
PAYMENT_FAILED = 'payment.failed'
REFUND_PROCESSED = 'refund.processed'
ORDER_PAID = 'order.paid'


def get_entity(payload: Dict, kind: str) -> Dict:
    """payload[kind]['entity'] or an empty dict."""
    wrapper = payload.get(kind) if isinstance(payload, dict) else None
    if not isinstance(wrapper, dict):
        return {}
    entity = wrapper.get('entity')
    return entity if isinstance(entity, dict) else {}


def resolve_order(gateway_order_id: str, event: str) -> Optional[Order]:
    order = find_order_by_gateway_order(gateway_order_id)
    if order is None:
        logger.warning(f"{event}: no order bound to gateway order {gateway_order_id or '<missing>'}, acknowledged")
    return order


def handle_payment_captured(payload: Dict) -> None:
    payment = get_entity(payload, 'payment')
    order = resolve_order(payment.get('order_id'), PAYMENT_CAPTURED)
    if order is None:
        return
    if not payment.get('id'):
        logger.warning(f"{PAYMENT_CAPTURED} for order {order.order_number} carries no payment id, ignored")
        return

    record_payment(
        order.pk,
        payment['id'],
        gateway_order_id=payment.get('order_id'),
        payment_status=payment.get('status') or 'captured',
        email=payment.get('email') or '',
        source='payment-captured webhook'
    )


def handle_payment_failed(payload: Dict) -> None:
    payment = get_entity(payload, 'payment')
    order = resolve_order(payment.get('order_id'), PAYMENT_FAILED)
    if order is None:
        return
    record_payment_failure(order.pk, payment)


def handle_refund_processed(payload: Dict) -> None:
    refund = get_entity(payload, 'refund')
    if not refund.get('payment_id'):
        logger.warning(f"{REFUND_PROCESSED} without a payment id, ignored")
        return
    record_gateway_refund(refund)


def handle_order_paid(payload: Dict) -> None:
    gateway_order = get_entity(payload, 'order')
    payment = get_entity(payload, 'payment')
    gateway_order_id = gateway_order.get('id') or payment.get('order_id')

    order = resolve_order(gateway_order_id, ORDER_PAID)
    if order is None:
        return
    if not payment.get('id'):
        logger.warning(f"{ORDER_PAID} for order {order.order_number} carries no payment id, ignored")
        return

    mark_order_paid(order.pk, payment['id'], gateway_order_id)


EVENT_HANDLERS: Dict[str, Callable[[Dict], None]] = {
    PAYMENT_CAPTURED: handle_payment_captured,
    PAYMENT_FAILED: handle_payment_failed,
    REFUND_PROCESSED: handle_refund_processed,
    ORDER_PAID: handle_order_paid,
}


def parse_event(raw_body: bytes) -> Dict:
    try:
        envelope = json.loads(raw_body)
    except (TypeError, ValueError) as e:
        raise OrderValidationError(f"Malformed webhook body: {e}")

    if not isinstance(envelope, dict) or not isinstance(envelope.get('event'), str):
        raise OrderValidationError("Webhook body must be an object with an 'event' name")
    if not isinstance(envelope.get('payload', {}), dict):
        raise OrderValidationError("Webhook 'payload' must be an object")
    return envelope


def handle_gateway_event(raw_body: bytes, signature: str) -> Dict:
    """
    Verify, parse and dispatch one gateway event.

    Args:
        raw_body: Request body exactly as received
        signature: X-Razorpay-Signature header value

    Returns:
        Acknowledgment body

    Raises:
        InvalidSignatureError: If the signature is missing or wrong
        OrderValidationError: If the body is not a well-formed event envelope
    """
    verify_webhook_signature(raw_body, signature)
    envelope = parse_event(raw_body)
    event = envelope['event']

    handler = EVENT_HANDLERS.get(event)
    if handler is None:
        logger.info(f"Ignoring unhandled gateway event {event}")
        return {'status': 'ok', 'event': event}

    logger.info(f"Processing gateway event {event}")
    try:
        handler(envelope.get('payload') or {})
    except Exception:
        logger.exception(f"Gateway event {event} failed, acknowledged anyway")

    return {'status': 'ok', 'event': event}
