"""
Celery tasks for the shipping adapter.

Tasks:
    - poll_shipment_statuses: Periodic courier sync (see CELERY_BEAT_SCHEDULE)
"""
import logging

from celery import shared_task
from django.conf import settings
from django.core.cache import cache

logger = logging.getLogger(__name__)

POLL_LOCK_KEY = 'shipping:poll-lock'


@shared_task
def poll_shipment_statuses():
    """
    Re-register orders the courier never received and sync open shipments.

    A cache lock keeps overlapping beats from running side by side; a
    skipped run is harmless since the next one reads the same courier state.
    """
    from shipping.services import poll_shipments

    lock_timeout = settings.SHIPMENT_POLL_INTERVAL_MINUTES * 60
    if not cache.add(POLL_LOCK_KEY, 'locked', timeout=lock_timeout):
        logger.info("Shipment poll already running, skipping this run")
        return {'status': 'skipped'}

    try:
        stats = poll_shipments()
    finally:
        cache.delete(POLL_LOCK_KEY)

    return {'status': 'success', **stats}
