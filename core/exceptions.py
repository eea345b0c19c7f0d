"""
Error taxonomy shared by the order, payment and shipping services.

Services raise these exceptions; api_exception_handler renders them as
{'error': <label>, 'detail': <reason>} with the matching HTTP status.
"""
import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class OrderServiceError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code = status.HTTP_400_BAD_REQUEST
    label = 'Bad Request'


class OrderValidationError(OrderServiceError):
    """Raised when a request is malformed or missing required fields."""
    label = 'Validation Error'


class OrderNotFoundError(OrderServiceError):
    """Raised when an order (or a referenced product) does not exist."""
    status_code = status.HTTP_404_NOT_FOUND
    label = 'Not Found'


class OrderPermissionError(OrderServiceError):
    """Raised when the requester does not own the order."""
    status_code = status.HTTP_403_FORBIDDEN
    label = 'Forbidden'


class InvalidOrderStateError(OrderServiceError):
    """Raised when an operation is not allowed in the order's current state."""
    status_code = status.HTTP_409_CONFLICT
    label = 'Invalid State'


class PaymentRejectedError(OrderServiceError):
    """Raised when the gateway does not report the payment as captured."""
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    label = 'Payment Rejected'


class InvalidSignatureError(OrderServiceError):
    """Raised when a client confirmation or webhook fails HMAC verification."""
    label = 'Invalid Signature'


class UpstreamServiceError(OrderServiceError):
    """Raised when the payment gateway or shipping provider call fails."""
    status_code = status.HTTP_502_BAD_GATEWAY
    label = 'Upstream Failure'

    def __init__(self, service: str, message: str, status_code: int = None):
        self.service = service
        self.upstream_status = status_code
        super().__init__(f"{service}: {message}")


def api_exception_handler(exc, context):
    """REST framework exception handler that understands OrderServiceError."""
    if isinstance(exc, OrderServiceError):
        if exc.status_code >= 500:
            logger.error(f"{exc.label}: {exc}")
        else:
            logger.warning(f"{exc.label}: {exc}")
        return Response(
            {'error': exc.label, 'detail': str(exc)},
            status=exc.status_code
        )
    return exception_handler(exc, context)
