"""
Celery tasks for order processing.

Tasks:
    - dispatch_user_notification: Hand a user notification to the external dispatcher
"""
import logging

import requests
from celery import shared_task
from django.conf import settings

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(requests.RequestException,),
    retry_backoff=True
)
def dispatch_user_notification(self, user_id: int, event: str, payload: dict):
    """
    Deliver a notification to the external notification service.

    Without NOTIFICATION_SERVICE_URL the notification is only logged.

    Args:
        user_id: Owner of the order
        event: Event name, e.g. order_placed or refund_processed
        payload: Order number, status and event specific details

    Returns:
        Dict with delivery details
    """
    url = getattr(settings, 'NOTIFICATION_SERVICE_URL', '')
    if not url:
        logger.info(f"[NOTIFY] user={user_id} event={event} order={payload.get('order_number')}")
        return {'status': 'logged', 'event': event}

    response = requests.post(
        url,
        json={'user_id': user_id, 'type': event, 'data': payload},
        timeout=settings.EXTERNAL_SERVICE_TIMEOUT
    )
    response.raise_for_status()

    logger.info(f"Delivered {event} notification for order {payload.get('order_number')}")
    return {'status': 'sent', 'event': event}
