"""
Catalog Models - the parts of the product catalog that checkout reads.

Models:
    - Product: Items available for sale; checkout snapshots name, image and price
    - Coupon: Percentage or flat discounts, optionally capped
"""
from decimal import Decimal, ROUND_HALF_UP

from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone


class Product(models.Model):
    """
    Product entity representing items available for sale.
    """
    name = models.CharField(
        max_length=200,
        db_index=True,
        help_text="Product name shown to customers"
    )
    description = models.TextField(
        blank=True,
        default='',
        help_text="Optional product description"
    )
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text="Current unit price (orders keep their own snapshot)"
    )
    images = models.JSONField(
        default=list,
        blank=True,
        help_text="Ordered list of image URLs"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether product is available for ordering"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Product'
        verbose_name_plural = 'Products'
        ordering = ['name']
        indexes = [
            models.Index(fields=['name', 'is_active'], name='product_name_active_idx'),
        ]

    def __str__(self):
        return f"{self.name} ({self.price})"

    @property
    def primary_image(self):
        return self.images[0] if self.images else None


class Coupon(models.Model):
    """
    Discount code applied at checkout.

    A percentage coupon discounts a share of the items subtotal, a flat coupon
    a fixed amount. Either is clamped to max_discount_amount when set.
    """

    class DiscountType(models.TextChoices):
        PERCENTAGE = 'percentage', 'Percentage'
        FLAT = 'flat', 'Flat amount'

    code = models.CharField(max_length=50, unique=True)
    discount_type = models.CharField(
        max_length=20,
        choices=DiscountType.choices,
        default=DiscountType.PERCENTAGE
    )
    discount_value = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.00'))]
    )
    max_discount_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Upper bound for the computed discount"
    )
    is_active = models.BooleanField(default=True, db_index=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['code']

    def __str__(self):
        return self.code

    @property
    def is_valid(self) -> bool:
        if not self.is_active:
            return False
        return self.expires_at is None or self.expires_at > timezone.now()

    def discount_for(self, items_price: Decimal) -> Decimal:
        """Discount granted on an items subtotal, never more than the subtotal."""
        if self.discount_type == self.DiscountType.PERCENTAGE:
            discount = items_price * self.discount_value / Decimal('100')
        else:
            discount = self.discount_value

        if self.max_discount_amount is not None and discount > self.max_discount_amount:
            discount = self.max_discount_amount
        discount = min(discount, items_price)
        return discount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
