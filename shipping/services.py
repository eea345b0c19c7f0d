"""
Shipping Provider Adapter.

Shipment registration is advisory: it runs after the order is committed
and any failure is logged and left for the periodic poll to retry. Status
sync feeds courier states into the order lifecycle through
orders.services.apply_courier_update, which only ever moves forward.
"""
import logging
import re
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_datetime, parse_date

from core.exceptions import UpstreamServiceError
from orders.models import Order
from orders.services import apply_courier_update
from .client import get_shipping_client

logger = logging.getLogger(__name__)

DEFAULT_PARCEL = {'length': 10, 'breadth': 10, 'height': 10, 'weight': 1}
UNKNOWN_DELIVERY_DAYS = 99

# Courier status texts that count as picked up and on the way
IN_TRANSIT_STATUSES = {
    'PICKED UP',
    'SHIPPED',
    'IN TRANSIT',
    'OUT FOR DELIVERY',
    'REACHED AT DESTINATION HUB',
    'OUT FOR PICKUP',
}
DELIVERED_STATUSES = {'DELIVERED'}


def clean_phone(phone) -> str:
    """Last ten digits, as the courier expects local numbers."""
    return re.sub(r'\D', '', phone or '')[-10:]


def build_shipment_payload(order: Order) -> Dict:
    address = order.shipping_address or {}
    user = order.user
    return {
        'order_id': order.order_number,
        'order_date': timezone.localtime(order.created_at).strftime('%Y-%m-%d %H:%M'),
        'pickup_location': settings.SHIPROCKET_PICKUP_LOCATION,
        'billing_customer_name': user.get_full_name() or user.get_username() or 'Customer',
        'billing_last_name': '',
        'billing_address': address.get('address', ''),
        'billing_city': address.get('city', ''),
        'billing_pincode': address.get('postal_code', ''),
        'billing_state': address.get('state', ''),
        'billing_country': address.get('country', ''),
        'billing_email': user.email or '',
        'billing_phone': clean_phone(address.get('phone')),
        'shipping_is_billing': True,
        'order_items': [
            {
                'name': item.name,
                'sku': str(item.product_id or f"{order.order_number}-{item.pk}"),
                'units': item.quantity,
                'selling_price': str(item.unit_price),
            }
            for item in order.items.all()
        ],
        'payment_method': 'COD' if order.is_cod else 'Prepaid',
        'sub_total': str(order.items_price),
        **DEFAULT_PARCEL,
    }


def register_shipment(order: Order, client=None) -> bool:
    """
    Hand an order to the courier and store its correlation ids.

    Never raises; returns True when the order now carries shipping ids.
    """
    if order.shipping_order_id and order.shipping_shipment_id:
        return True

    try:
        response = (client or get_shipping_client()).create_order(build_shipment_payload(order))
        remote_order_id = response.get('order_id')
        remote_shipment_id = response.get('shipment_id')
        if not remote_order_id or not remote_shipment_id:
            logger.warning(f"Courier registration of order {order.order_number} returned no ids: {response}")
            return False

        updated = Order.objects.filter(pk=order.pk, shipping_shipment_id='').update(
            shipping_order_id=str(remote_order_id),
            shipping_shipment_id=str(remote_shipment_id),
            shipping_status=str(response.get('status') or ''),
            updated_at=timezone.now()
        )
    except Exception as e:
        logger.error(f"Courier registration of order {order.order_number} failed: {e}")
        return False

    if updated:
        order.shipping_order_id = str(remote_order_id)
        order.shipping_shipment_id = str(remote_shipment_id)
        logger.info(f"Order {order.order_number} registered with courier as shipment {remote_shipment_id}")
    return True


def delivery_days(courier: Dict) -> int:
    """Leading day count of a courier estimate such as '3' or '3-5'; unknown sorts last."""
    match = re.match(r'\s*(\d+)', str(courier.get('estimated_delivery_days') or ''))
    return int(match.group(1)) if match else UNKNOWN_DELIVERY_DAYS


def check_serviceability(origin_postcode: str, destination_postcode: str,
                         cash_on_delivery: bool = False, weight: Decimal = Decimal('1')) -> Dict:
    """
    Ask the courier whether it delivers between two postcodes.

    Returns:
        {'serviceable': bool, 'estimate': {...} or None, 'couriers': int}

    Raises:
        UpstreamServiceError: If the courier API fails
    """
    response = get_shipping_client().check_serviceability(
        origin_postcode,
        destination_postcode,
        cash_on_delivery,
        str(weight)
    )
    data = response.get('data') if isinstance(response.get('data'), dict) else {}
    couriers = [c for c in data.get('available_courier_companies') or [] if isinstance(c, dict)]

    estimate = None
    if couriers:
        fastest = min(couriers, key=delivery_days)
        estimate = {
            'courier': fastest.get('courier_name'),
            'estimated_delivery_days': fastest.get('estimated_delivery_days'),
            'etd': fastest.get('etd'),
            'rate': fastest.get('rate'),
        }

    return {
        'serviceable': bool(couriers),
        'estimate': estimate,
        'couriers': len(couriers),
    }


def map_courier_status(courier_status: str) -> Optional[str]:
    """Order status implied by a courier status text, if any."""
    normalized = (courier_status or '').strip().upper()
    if normalized in DELIVERED_STATUSES:
        return Order.Status.DELIVERED
    if normalized in IN_TRANSIT_STATUSES:
        return Order.Status.SHIPPED
    return None


def _parse_courier_datetime(value):
    if not value:
        return None
    parsed = parse_datetime(str(value))
    if parsed is None:
        day = parse_date(str(value)[:10])
        if day is None:
            return None
        parsed = datetime(day.year, day.month, day.day)
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def sync_shipment_status(order: Order, client=None) -> Order:
    """
    Read the courier's tracking data for one order and apply it.

    Raises:
        UpstreamServiceError: If the courier API fails
    """
    response = (client or get_shipping_client()).track_shipment(order.shipping_shipment_id)
    tracking_data = response.get('tracking_data') if isinstance(response.get('tracking_data'), dict) else {}
    tracks = tracking_data.get('shipment_track') or []
    track = tracks[0] if tracks and isinstance(tracks[0], dict) else {}

    courier_status = track.get('current_status') or ''
    return apply_courier_update(
        order.pk,
        map_courier_status(courier_status),
        shipping_status=courier_status,
        tracking_number=track.get('awb_code') or '',
        courier=track.get('courier_name') or '',
        estimated_delivery=_parse_courier_datetime(track.get('edd') or tracking_data.get('etd'))
    )


def open_orders():
    return Order.objects.filter(
        status__in=[Order.Status.PENDING, Order.Status.PROCESSING, Order.Status.SHIPPED]
    )


def poll_shipments() -> Dict[str, int]:
    """
    One pass of the shipment poll.

    Each order is handled on its own: a failure is logged and the pass
    moves on, and repeating the pass re-applies the same courier state.
    """
    stats = {'registered': 0, 'synced': 0, 'failed': 0}
    # one courier login per pass
    client = get_shipping_client()

    for order in open_orders().filter(shipping_shipment_id='').prefetch_related('items').select_related('user'):
        if register_shipment(order, client):
            stats['registered'] += 1
        else:
            stats['failed'] += 1

    for order in open_orders().exclude(shipping_shipment_id=''):
        try:
            sync_shipment_status(order, client)
            stats['synced'] += 1
        except UpstreamServiceError as e:
            stats['failed'] += 1
            logger.warning(f"Tracking sync for order {order.order_number} failed: {e}")
        except Exception:
            stats['failed'] += 1
            logger.exception(f"Unexpected error syncing order {order.order_number}")

    logger.info(
        f"Shipment poll: {stats['registered']} registered, {stats['synced']} synced, {stats['failed']} failed"
    )
    return stats
