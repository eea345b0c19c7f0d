"""
Checkout request normalization.

Storefront clients have sent checkout bodies under several historical field
names (items/orderItems, street/line1, pincode/postalCode, ...). This module
maps all of them to one canonical shape before validation, and defines the
strict OrderRequest the lifecycle engine consumes.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple

ITEM_LIST_KEYS = ('items', 'orderItems', 'order_items')
ITEM_ALIASES = {
    'product_id': ('product_id', 'productId', 'product'),
    'name': ('name', 'title'),
    'price': ('price', 'unitPrice', 'unit_price'),
    'image': ('image', 'imageUrl', 'image_url'),
    'quantity': ('quantity', 'qty'),
}
ADDRESS_KEYS = ('shipping_address', 'shippingAddress')
ADDRESS_ALIASES = {
    'address': ('address', 'street', 'line1', 'address_line1'),
    'city': ('city',),
    'state': ('state',),
    'postal_code': ('postal_code', 'postalCode', 'pincode', 'zip'),
    'country': ('country',),
    'phone': ('phone', 'mobile'),
}
ORDER_ALIASES = {
    'payment_method': ('payment_method', 'paymentMethod'),
    'coupon_code': ('coupon_code', 'couponCode'),
    'notes': ('notes', 'specialInstructions', 'special_instructions'),
    'items_price': ('items_price', 'itemsPrice', 'subtotal'),
    'tax_price': ('tax_price', 'taxPrice', 'tax'),
    'shipping_price': ('shipping_price', 'shippingPrice', 'deliveryCharges', 'delivery_charges'),
    'total_price': ('total_price', 'totalPrice', 'total'),
}

PAYMENT_METHOD_ALIASES = {
    'card': 'credit_card',
    'credit_card': 'credit_card',
    'creditcard': 'credit_card',
    'debit_card': 'debit_card',
    'debitcard': 'debit_card',
    'upi': 'upi',
    'wallet': 'wallet',
    'cod': 'cod',
    'cash_on_delivery': 'cod',
    'razorpay': 'razorpay',
}


def _pick(data: dict, keys):
    for key in keys:
        value = data.get(key)
        if value is not None and value != '':
            return value
    return None


def remap_aliases(data: dict, aliases: dict) -> dict:
    result = {}
    for canonical, keys in aliases.items():
        value = _pick(data, keys)
        if value is not None:
            result[canonical] = value
    return result


def normalize_checkout_payload(data) -> dict:
    """Map a raw checkout body onto canonical field names."""
    if not isinstance(data, dict):
        return data

    normalized = remap_aliases(data, ORDER_ALIASES)

    items = _pick(data, ITEM_LIST_KEYS)
    if isinstance(items, list):
        normalized['items'] = [
            remap_aliases(item, ITEM_ALIASES) if isinstance(item, dict) else item
            for item in items
        ]
    elif items is not None:
        normalized['items'] = items

    address = _pick(data, ADDRESS_KEYS)
    if isinstance(address, dict):
        normalized['shipping_address'] = remap_aliases(address, ADDRESS_ALIASES)
    elif address is not None:
        normalized['shipping_address'] = address

    return normalized


def normalize_payment_method(value: str) -> Optional[str]:
    return PAYMENT_METHOD_ALIASES.get(str(value).strip().lower())


@dataclass(frozen=True)
class LineItemRequest:
    quantity: int
    product_id: Optional[int] = None
    name: str = ''
    price: Optional[Decimal] = None
    image: str = ''


@dataclass(frozen=True)
class OrderRequest:
    items: Tuple[LineItemRequest, ...]
    shipping_address: dict
    payment_method: str
    coupon_code: str = ''
    notes: str = ''
    items_price: Optional[Decimal] = None
    tax_price: Optional[Decimal] = None
    shipping_price: Optional[Decimal] = None
    total_price: Optional[Decimal] = None
