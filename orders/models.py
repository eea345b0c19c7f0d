"""
Order Models - Order, OrderItem and the per-day order number counter.

Order Status Flow:
    PENDING -> PROCESSING (first confirmed payment, by client callback or webhook)
    PENDING/PROCESSING -> SHIPPED -> DELIVERED (operator or shipment poll)
    any state before DELIVERED -> CANCELLED (opens a pending refund when paid)
    paid, not cancelled -> REFUNDED (full refund completed)

Payment and refund state are tracked beside the lifecycle status:
is_paid/paid_at/payment_* describe the captured payment, refund_* the refund.
"""
from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q

from catalog.models import Product


class Order(models.Model):
    """
    Order entity placed by a storefront customer.

    Status:
        - PENDING: Created at checkout, awaiting payment (or cash on delivery)
        - PROCESSING: Payment confirmed, being packed
        - SHIPPED: Handed to the courier
        - DELIVERED: Received by the customer
        - CANCELLED: Cancelled before delivery
        - REFUNDED: Fully refunded without being cancelled
    """

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        PROCESSING = 'processing', 'Processing'
        SHIPPED = 'shipped', 'Shipped'
        DELIVERED = 'delivered', 'Delivered'
        CANCELLED = 'cancelled', 'Cancelled'
        REFUNDED = 'refunded', 'Refunded'

    class PaymentMethod(models.TextChoices):
        CREDIT_CARD = 'credit_card', 'Credit card'
        DEBIT_CARD = 'debit_card', 'Debit card'
        UPI = 'upi', 'UPI transfer'
        WALLET = 'wallet', 'Wallet'
        COD = 'cod', 'Cash on delivery'
        RAZORPAY = 'razorpay', 'Razorpay'

    class RefundStatus(models.TextChoices):
        NONE = '', 'No refund'
        PENDING = 'pending', 'Pending'
        COMPLETED = 'completed', 'Completed'

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='orders',
        help_text="Customer who placed the order"
    )
    order_number = models.CharField(
        max_length=32,
        unique=True,
        help_text="Human readable number, e.g. YT-20240131-0007"
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
        help_text="Current lifecycle status"
    )
    payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        help_text="Payment method chosen at checkout"
    )
    shipping_address = models.JSONField(
        default=dict,
        help_text="Snapshot of the delivery address"
    )
    coupon_code = models.CharField(max_length=50, blank=True, default='')
    notes = models.TextField(blank=True, default='')

    # Money breakdown (major units)
    items_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    tax_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    shipping_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    total_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))

    # Remote payment intent bound to this order (at most one live intent)
    gateway_order_id = models.CharField(
        max_length=64,
        unique=True,
        null=True,
        blank=True,
        help_text="Gateway order id used to correlate webhooks"
    )
    gateway_order_created_at = models.DateTimeField(null=True, blank=True)

    # Payment result
    is_paid = models.BooleanField(default=False, db_index=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    payment_id = models.CharField(
        max_length=64,
        unique=True,
        null=True,
        blank=True,
        help_text="Gateway payment id credited to this order"
    )
    payment_gateway_order_id = models.CharField(max_length=64, blank=True, default='')
    payment_status = models.CharField(max_length=32, blank=True, default='')
    payment_email = models.CharField(max_length=254, blank=True, default='')
    payment_error_code = models.CharField(max_length=64, blank=True, default='')
    payment_error_description = models.TextField(blank=True, default='')
    payment_updated_at = models.DateTimeField(null=True, blank=True)

    # Refund sub-record
    refund_status = models.CharField(
        max_length=20,
        choices=RefundStatus.choices,
        blank=True,
        default=RefundStatus.NONE,
        db_index=True
    )
    refund_id = models.CharField(max_length=64, blank=True, default='')
    refund_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    refund_gateway_status = models.CharField(max_length=32, blank=True, default='')
    refund_reason = models.TextField(blank=True, default='')
    refund_processed_at = models.DateTimeField(null=True, blank=True)
    refund_processed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )

    # Shipping provider correlation and tracking
    shipping_order_id = models.CharField(max_length=64, blank=True, default='')
    shipping_shipment_id = models.CharField(max_length=64, blank=True, default='', db_index=True)
    shipping_status = models.CharField(max_length=64, blank=True, default='')
    tracking_number = models.CharField(max_length=64, blank=True, default='')
    courier = models.CharField(max_length=100, blank=True, default='')
    estimated_delivery = models.DateTimeField(null=True, blank=True)

    shipped_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.TextField(blank=True, default='')

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Order'
        verbose_name_plural = 'Orders'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'status'], name='order_user_status_idx'),
            models.Index(fields=['status', 'created_at'], name='order_status_created_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(is_paid=True) | Q(paid_at__isnull=True),
                name='order_paid_at_requires_payment'
            ),
            models.CheckConstraint(
                condition=~Q(status='delivered') | Q(is_paid=True),
                name='order_delivered_requires_payment'
            ),
        ]

    def __str__(self):
        return f"Order {self.order_number} ({self.status})"

    @property
    def is_cod(self) -> bool:
        return self.payment_method == self.PaymentMethod.COD

    @property
    def has_shipment(self) -> bool:
        return bool(self.shipping_shipment_id)

    @property
    def payment_result(self):
        if not self.payment_id and not self.payment_status:
            return None
        return {
            'id': self.payment_id,
            'gateway_order_id': self.payment_gateway_order_id or self.gateway_order_id,
            'status': self.payment_status,
            'email_address': self.payment_email,
            'error_code': self.payment_error_code or None,
            'error_description': self.payment_error_description or None,
            'update_time': self.payment_updated_at,
        }

    @property
    def refund_details(self):
        if not self.refund_status:
            return None
        return {
            'status': self.refund_status,
            'id': self.refund_id or None,
            'amount': self.refund_amount,
            'gateway_status': self.refund_gateway_status or None,
            'reason': self.refund_reason,
            'processed_at': self.refund_processed_at,
            'processed_by': self.refund_processed_by_id,
        }


class OrderItem(models.Model):
    """
    OrderItem entity representing a product line in an order.

    Name, image and unit price are copied at checkout; live catalog prices are
    never re-read afterwards. product is empty for ad-hoc items.
    """
    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name='items',
        help_text="Parent order"
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='order_items',
        help_text="Source catalog product, empty for ad-hoc items"
    )
    name = models.CharField(max_length=200)
    image = models.CharField(max_length=500, blank=True, default='')
    quantity = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
        help_text="Quantity ordered"
    )
    unit_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Price per unit at time of order"
    )

    class Meta:
        verbose_name = 'Order Item'
        verbose_name_plural = 'Order Items'
        ordering = ['id']

    def __str__(self):
        return f"{self.quantity}x {self.name} @ {self.unit_price}"

    @property
    def subtotal(self) -> Decimal:
        """Calculate item subtotal."""
        return self.quantity * self.unit_price


class OrderNumberCounter(models.Model):
    """Per-day sequence backing order numbers."""
    day = models.DateField(unique=True)
    last_value = models.PositiveIntegerField(default=0)

    class Meta:
        verbose_name = 'Order Number Counter'

    def __str__(self):
        return f"{self.day}: {self.last_value}"
