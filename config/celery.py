"""
Celery application for the storefront order service.

Beat schedule:
    - poll_shipment_statuses: refresh courier status of open shipments
"""
import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('storefront')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()
