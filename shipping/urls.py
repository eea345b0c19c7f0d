"""
URL routing for shipping API endpoints.
"""
from django.urls import path
from . import views

app_name = 'shipping'

urlpatterns = [
    path('shipping/serviceability/', views.ServiceabilityView.as_view(), name='serviceability'),
]
