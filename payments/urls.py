"""
URL routing for payment API endpoints.
"""
from django.urls import path
from . import views

app_name = 'payments'

urlpatterns = [
    path('payments/intents/', views.PaymentIntentView.as_view(), name='payment-intent'),
    path('payments/verify/', views.PaymentVerifyView.as_view(), name='payment-verify'),
    path('payments/status/<int:order_id>/', views.PaymentStatusView.as_view(), name='payment-status'),
    path('payments/refunds/', views.RefundView.as_view(), name='payment-refund'),
    path('payments/methods/', views.PaymentMethodsView.as_view(), name='payment-methods'),
    path('webhooks/razorpay/', views.GatewayWebhookView.as_view(), name='gateway-webhook'),
]
