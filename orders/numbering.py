"""
Order number allocation.

Numbers look like YT-20240131-0007: prefix, local date, and a four digit
per-day counter. The counter row is incremented with an atomic UPDATE under
a row lock, so concurrent checkouts never read the same value.
"""
import logging

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from core.exceptions import InvalidOrderStateError
from .models import OrderNumberCounter

logger = logging.getLogger(__name__)

MAX_DAILY_ORDERS = 9999


def format_order_number(day, counter: int) -> str:
    prefix = getattr(settings, 'ORDER_NUMBER_PREFIX', 'YT')
    return f"{prefix}-{day.strftime('%Y%m%d')}-{counter:04d}"


def next_order_number(now=None) -> str:
    """
    Allocate the next order number for the current local day.

    Raises:
        InvalidOrderStateError: If the day's four digit range is used up
    """
    day = timezone.localdate(now)

    with transaction.atomic():
        counter, _ = OrderNumberCounter.objects.select_for_update().get_or_create(day=day)
        OrderNumberCounter.objects.filter(pk=counter.pk).update(last_value=F('last_value') + 1)
        counter.refresh_from_db(fields=['last_value'])
        if counter.last_value > MAX_DAILY_ORDERS:
            # rolls the increment back with the block
            logger.error(f"Order numbers for {day} exhausted at {MAX_DAILY_ORDERS}")
            raise InvalidOrderStateError(f"No order numbers left for {day:%Y-%m-%d}")

    number = format_order_number(day, counter.last_value)
    logger.debug(f"Allocated order number {number}")
    return number
