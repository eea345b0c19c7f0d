"""
Shipping Provider Client - Shiprocket-compatible courier API.

Operations:
    - create_order: register an order, returns {order_id, shipment_id}
    - check_serviceability: couriers able to deliver between two postcodes
    - track_shipment: current tracking data of a shipment

The API authenticates with a bearer token obtained from auth/login; the
token is kept on the client instance and refreshed once on a 401.
"""
import logging

import requests
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from core.exceptions import UpstreamServiceError

logger = logging.getLogger(__name__)

SERVICE_NAME = 'shipping provider'


class ShippingProviderClient:

    def __init__(self, base_url=None, email=None, password=None, timeout=None, session=None):
        self.base_url = (base_url or settings.SHIPROCKET_BASE_URL).rstrip('/')
        self.email = email if email is not None else settings.SHIPROCKET_EMAIL
        self.password = password if password is not None else settings.SHIPROCKET_PASSWORD
        self.timeout = timeout or settings.EXTERNAL_SERVICE_TIMEOUT
        self.session = session or requests.Session()
        self._token = None

    def _send(self, method: str, path: str, headers=None, **kwargs):
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            return self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"{method} {path} failed: {e}")
            raise UpstreamServiceError(SERVICE_NAME, f"request failed: {e}")

    @staticmethod
    def _decode(response, method: str, path: str) -> dict:
        if response.status_code >= 400:
            raise UpstreamServiceError(
                SERVICE_NAME,
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code
            )
        try:
            return response.json()
        except ValueError:
            raise UpstreamServiceError(SERVICE_NAME, f"{method} {path} returned a non-JSON body")

    def authenticate(self) -> str:
        if not self.email or not self.password:
            raise ImproperlyConfigured(
                "Shipping provider credentials missing: set SHIPROCKET_EMAIL and SHIPROCKET_PASSWORD"
            )
        response = self._send('POST', 'auth/login', json={'email': self.email, 'password': self.password})
        token = self._decode(response, 'POST', 'auth/login').get('token')
        if not token:
            raise UpstreamServiceError(SERVICE_NAME, 'login returned no token')
        self._token = token
        return token

    def _request(self, method: str, path: str, **kwargs) -> dict:
        token = self._token or self.authenticate()
        response = self._send(method, path, headers={'Authorization': f'Bearer {token}'}, **kwargs)
        if response.status_code == 401:
            logger.info("Courier token rejected, logging in again")
            token = self.authenticate()
            response = self._send(method, path, headers={'Authorization': f'Bearer {token}'}, **kwargs)
        return self._decode(response, method, path)

    def create_order(self, payload: dict) -> dict:
        logger.info(f"Registering order {payload.get('order_id')} with the courier")
        return self._request('POST', 'orders/create/adhoc', json=payload)

    def check_serviceability(self, pickup_postcode: str, delivery_postcode: str, cod: bool, weight) -> dict:
        return self._request('GET', 'courier/serviceability/', params={
            'pickup_postcode': pickup_postcode,
            'delivery_postcode': delivery_postcode,
            'cod': 1 if cod else 0,
            'weight': weight,
        })

    def track_shipment(self, shipment_id: str) -> dict:
        return self._request('GET', f'courier/track/shipment/{shipment_id}')


def get_shipping_client() -> ShippingProviderClient:
    return ShippingProviderClient()
