"""
Signature Verifier - HMAC-SHA256 checks for client confirmations and webhooks.

Client confirmation: hex HMAC of "<gateway_order_id>|<gateway_payment_id>"
under the API key secret. Webhook: hex HMAC of the raw request body under
the webhook secret. Comparisons are constant time.
"""
import hashlib
import hmac

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from core.exceptions import InvalidSignatureError


def compute_signature(secret: str, message) -> str:
    if isinstance(message, str):
        message = message.encode('utf-8')
    return hmac.new(secret.encode('utf-8'), message, hashlib.sha256).hexdigest()


def signatures_match(expected: str, supplied) -> bool:
    if not supplied or not isinstance(supplied, str):
        return False
    return hmac.compare_digest(expected.encode('utf-8'), supplied.encode('utf-8'))


def verify_payment_signature(gateway_order_id: str, payment_id: str, signature: str, secret: str = None) -> None:
    """
    Raises:
        InvalidSignatureError: If the signature does not match
    """
    secret = secret if secret is not None else settings.RAZORPAY_KEY_SECRET
    if not secret:
        raise ImproperlyConfigured("RAZORPAY_KEY_SECRET is not configured")

    expected = compute_signature(secret, f"{gateway_order_id}|{payment_id}")
    if not signatures_match(expected, signature):
        raise InvalidSignatureError("Invalid payment signature")


def verify_webhook_signature(raw_body: bytes, signature: str, secret: str = None) -> None:
    """
    Raises:
        InvalidSignatureError: If the header is missing or does not match the body
    """
    secret = secret if secret is not None else settings.RAZORPAY_WEBHOOK_SECRET
    if not secret:
        raise ImproperlyConfigured("RAZORPAY_WEBHOOK_SECRET is not configured")

    if not signature:
        raise InvalidSignatureError("Missing webhook signature")

    expected = compute_signature(secret, raw_body)
    if not signatures_match(expected, signature):
        raise InvalidSignatureError("Invalid webhook signature")
