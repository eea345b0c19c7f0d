from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('catalog', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='OrderNumberCounter',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('day', models.DateField(unique=True)),
                ('last_value', models.PositiveIntegerField(default=0)),
            ],
            options={
                'verbose_name': 'Order Number Counter',
            },
        ),
        migrations.CreateModel(
            name='Order',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('order_number', models.CharField(help_text='Human readable number, e.g. YT-20240131-0007', max_length=32, unique=True)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('processing', 'Processing'), ('shipped', 'Shipped'), ('delivered', 'Delivered'), ('cancelled', 'Cancelled'), ('refunded', 'Refunded')], db_index=True, default='pending', help_text='Current lifecycle status', max_length=20)),
                ('payment_method', models.CharField(choices=[('credit_card', 'Credit card'), ('debit_card', 'Debit card'), ('upi', 'UPI transfer'), ('wallet', 'Wallet'), ('cod', 'Cash on delivery'), ('razorpay', 'Razorpay')], help_text='Payment method chosen at checkout', max_length=20)),
                ('shipping_address', models.JSONField(default=dict, help_text='Snapshot of the delivery address')),
                ('coupon_code', models.CharField(blank=True, default='', max_length=50)),
                ('notes', models.TextField(blank=True, default='')),
                ('items_price', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('tax_price', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('shipping_price', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('discount_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('total_price', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('gateway_order_id', models.CharField(blank=True, help_text='Gateway order id used to correlate webhooks', max_length=64, null=True, unique=True)),
                ('gateway_order_created_at', models.DateTimeField(blank=True, null=True)),
                ('is_paid', models.BooleanField(db_index=True, default=False)),
                ('paid_at', models.DateTimeField(blank=True, null=True)),
                ('payment_id', models.CharField(blank=True, help_text='Gateway payment id credited to this order', max_length=64, null=True, unique=True)),
                ('payment_gateway_order_id', models.CharField(blank=True, default='', max_length=64)),
                ('payment_status', models.CharField(blank=True, default='', max_length=32)),
                ('payment_email', models.CharField(blank=True, default='', max_length=254)),
                ('payment_error_code', models.CharField(blank=True, default='', max_length=64)),
                ('payment_error_description', models.TextField(blank=True, default='')),
                ('payment_updated_at', models.DateTimeField(blank=True, null=True)),
                ('refund_status', models.CharField(blank=True, choices=[('', 'No refund'), ('pending', 'Pending'), ('completed', 'Completed')], db_index=True, default='', max_length=20)),
                ('refund_id', models.CharField(blank=True, default='', max_length=64)),
                ('refund_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ('refund_gateway_status', models.CharField(blank=True, default='', max_length=32)),
                ('refund_reason', models.TextField(blank=True, default='')),
                ('refund_processed_at', models.DateTimeField(blank=True, null=True)),
                ('shipping_order_id', models.CharField(blank=True, default='', max_length=64)),
                ('shipping_shipment_id', models.CharField(blank=True, db_index=True, default='', max_length=64)),
                ('shipping_status', models.CharField(blank=True, default='', max_length=64)),
                ('tracking_number', models.CharField(blank=True, default='', max_length=64)),
                ('courier', models.CharField(blank=True, default='', max_length=100)),
                ('estimated_delivery', models.DateTimeField(blank=True, null=True)),
                ('shipped_at', models.DateTimeField(blank=True, null=True)),
                ('delivered_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('cancellation_reason', models.TextField(blank=True, default='')),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('refund_processed_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('user', models.ForeignKey(help_text='Customer who placed the order', on_delete=django.db.models.deletion.PROTECT, related_name='orders', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Order',
                'verbose_name_plural': 'Orders',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['user', 'status'], name='order_user_status_idx'),
                    models.Index(fields=['status', 'created_at'], name='order_status_created_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('is_paid', True), ('paid_at__isnull', True), _connector='OR'), name='order_paid_at_requires_payment'),
                    models.CheckConstraint(condition=models.Q(models.Q(('status', 'delivered'), _negated=True), ('is_paid', True), _connector='OR'), name='order_delivered_requires_payment'),
                ],
            },
        ),
        migrations.CreateModel(
            name='OrderItem',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=200)),
                ('image', models.CharField(blank=True, default='', max_length=500)),
                ('quantity', models.PositiveIntegerField(help_text='Quantity ordered', validators=[django.core.validators.MinValueValidator(1)])),
                ('unit_price', models.DecimalField(decimal_places=2, help_text='Price per unit at time of order', max_digits=10)),
                ('order', models.ForeignKey(help_text='Parent order', on_delete=django.db.models.deletion.CASCADE, related_name='items', to='orders.order')),
                ('product', models.ForeignKey(blank=True, help_text='Source catalog product, empty for ad-hoc items', null=True, on_delete=django.db.models.deletion.PROTECT, related_name='order_items', to='catalog.product')),
            ],
            options={
                'verbose_name': 'Order Item',
                'verbose_name_plural': 'Order Items',
                'ordering': ['id'],
            },
        ),
    ]
