"""
Payment Gateway Client - thin adapter over the Razorpay-compatible REST API.

Operations:
    - create_order: mint a remote payment intent (gateway "order")
    - fetch_payment: authoritative status of a payment
    - refund_payment: move money back to the customer

Amounts cross this boundary as integer minor units (paise/cents) only.
Every call is bounded by EXTERNAL_SERVICE_TIMEOUT and any transport,
HTTP or decoding failure surfaces as UpstreamServiceError.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP

import requests
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from core.exceptions import UpstreamServiceError

logger = logging.getLogger(__name__)

SERVICE_NAME = 'payment gateway'


def to_minor_units(amount) -> int:
    """Convert a major-unit amount (709.97) to integer minor units (70997)."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def from_minor_units(amount) -> Decimal:
    """Convert integer minor units (70997) back to a major-unit amount (709.97)."""
    return (Decimal(int(amount)) / 100).quantize(Decimal('0.01'))


class PaymentGatewayClient:
    """HTTP client for the payment gateway, authenticated with key id/secret."""

    def __init__(self, base_url=None, key_id=None, key_secret=None, timeout=None, session=None):
        self.base_url = (base_url or settings.RAZORPAY_BASE_URL).rstrip('/')
        self.key_id = key_id if key_id is not None else settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret if key_secret is not None else settings.RAZORPAY_KEY_SECRET
        self.timeout = timeout or settings.EXTERNAL_SERVICE_TIMEOUT
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs) -> dict:
        if not self.key_id or not self.key_secret:
            raise ImproperlyConfigured(
                "Payment gateway credentials missing: set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET"
            )

        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.request(
                method,
                url,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
                **kwargs
            )
        except requests.RequestException as e:
            logger.error(f"{method} {path} failed: {e}")
            raise UpstreamServiceError(SERVICE_NAME, f"request failed: {e}")

        if response.status_code >= 400:
            raise UpstreamServiceError(
                SERVICE_NAME,
                f"{method} {path} returned {response.status_code}: {self._error_description(response)}",
                status_code=response.status_code
            )

        try:
            return response.json()
        except ValueError:
            raise UpstreamServiceError(SERVICE_NAME, f"{method} {path} returned a non-JSON body")

    @staticmethod
    def _error_description(response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200]
        error = body.get('error') if isinstance(body, dict) else None
        if isinstance(error, dict):
            return error.get('description') or error.get('code') or 'unknown error'
        return str(body)[:200]

    def create_order(self, amount_minor: int, currency: str, receipt: str, notes: dict = None) -> dict:
        logger.info(f"Creating gateway order for receipt {receipt}: {amount_minor} {currency}")
        return self._request('POST', '/orders', json={
            'amount': amount_minor,
            'currency': currency,
            'receipt': receipt,
            'notes': notes or {},
        })

    def fetch_payment(self, payment_id: str) -> dict:
        return self._request('GET', f'/payments/{payment_id}')

    def refund_payment(self, payment_id: str, amount_minor: int, notes: dict = None) -> dict:
        logger.info(f"Requesting refund of {amount_minor} for payment {payment_id}")
        return self._request('POST', f'/payments/{payment_id}/refund', json={
            'amount': amount_minor,
            'speed': 'normal',
            'notes': notes or {},
        })


def get_gateway_client() -> PaymentGatewayClient:
    return PaymentGatewayClient()
