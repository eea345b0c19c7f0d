"""
Notification Dispatcher interface.

The lifecycle engine only says "notify user X of event Y"; delivery (push,
email, SMS) belongs to an external service reached by a Celery task.
Queueing failures are logged and never fail the calling operation.
"""
import logging

logger = logging.getLogger(__name__)

ORDER_PLACED = 'order_placed'
PAYMENT_SUCCESSFUL = 'payment_successful'
PAYMENT_FAILED = 'payment_failed'
REFUND_PROCESSED = 'refund_processed'


def status_event(status: str) -> str:
    """Event name for a lifecycle status change, e.g. order_shipped."""
    return f"order_{status}"


def notify_user(order, event: str, **context) -> None:
    """Queue a notification about `order` for its owner."""
    payload = {
        'order_id': order.pk,
        'order_number': order.order_number,
        'status': order.status,
    }
    payload.update({key: str(value) for key, value in context.items() if value is not None})

    try:
        from .tasks import dispatch_user_notification
        dispatch_user_notification.delay(order.user_id, event, payload)
        logger.info(f"Queued {event} notification for order {order.order_number}")
    except Exception as e:
        logger.error(f"Failed to queue {event} notification for order {order.order_number}: {e}")
