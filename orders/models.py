# orders/models.py
from decimal import Decimal

from django.db import models
from django.conf import settings

from core.utils import generate_dated_number
from . import state_machine


def generate_order_number():
    return generate_dated_number('ORD')


class Order(models.Model):
    """One booking of one vendor service by one customer"""
    ORDER_STATUS = [
        (state_machine.PENDING, 'Pending'),
        (state_machine.ACCEPTED, 'Accepted'),
        (state_machine.REJECTED, 'Rejected'),
        (state_machine.IN_PROGRESS, 'In Progress'),
        (state_machine.COMPLETED, 'Completed'),
        (state_machine.CANCELLED, 'Cancelled'),
    ]

    PAYMENT_PENDING = 'pending'
    PAYMENT_PAID = 'paid'
    PAYMENT_FAILED = 'failed'
    PAYMENT_REFUNDED = 'refunded'

    PAYMENT_STATUS = [
        (PAYMENT_PENDING, 'Pending'),
        (PAYMENT_PAID, 'Paid'),
        (PAYMENT_FAILED, 'Failed'),
        (PAYMENT_REFUNDED, 'Refunded'),
    ]

    ACTORS = [
        ('user', 'User'),
        ('vendor', 'Vendor'),
        ('admin', 'Admin'),
    ]

    # Order Identifiers
    order_number = models.CharField(max_length=50, unique=True, db_index=True, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='orders')
    vendor = models.ForeignKey('vendors.Vendor', on_delete=models.PROTECT, related_name='orders')
    service = models.ForeignKey('catalog.Service', on_delete=models.PROTECT, related_name='orders')

    # Booking
    scheduled_date = models.DateTimeField(db_index=True)
    scheduled_time = models.CharField(max_length=20)
    duration = models.PositiveIntegerField(default=60)

    # Pricing
    currency = models.CharField(max_length=3, default='USD')
    service_price = models.DecimalField(max_digits=12, decimal_places=2)
    discount = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal('0.00'))
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    subtotal = models.DecimalField(max_digits=12, decimal_places=2)
    tax = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    platform_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)

    # Coupon application, written once
    coupon = models.ForeignKey('promotions.Coupon', on_delete=models.PROTECT, null=True, blank=True, related_name='orders')
    coupon_code = models.CharField(max_length=50, blank=True, db_index=True)
    coupon_discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))

    # Status
    status = models.CharField(max_length=20, choices=ORDER_STATUS, default=state_machine.PENDING, db_index=True)
    payment_status = models.CharField(max_length=20, choices=PAYMENT_STATUS, default=PAYMENT_PENDING, db_index=True)
    paid_at = models.DateTimeField(null=True, blank=True)

    # Customer Info (snapshot at booking time)
    customer_name = models.CharField(max_length=200)
    customer_phone = models.CharField(max_length=20, blank=True)
    customer_email = models.EmailField()

    # Service Address
    address_street = models.CharField(max_length=255)
    address_city = models.CharField(max_length=100)
    address_state = models.CharField(max_length=100, blank=True)
    address_zip_code = models.CharField(max_length=20, blank=True)
    address_country = models.CharField(max_length=100)
    latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)

    # Notes
    notes = models.TextField(blank=True)
    special_requirements = models.TextField(blank=True)
    vendor_notes = models.TextField(blank=True)

    # Vendor actions
    rejection_reason = models.TextField(blank=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.CharField(max_length=10, choices=ACTORS, blank=True)
    cancellation_reason = models.TextField(blank=True)

    # Rescheduling
    rescheduled_from_date = models.DateTimeField(null=True, blank=True)
    rescheduled_from_time = models.CharField(max_length=20, blank=True)
    rescheduled_at = models.DateTimeField(null=True, blank=True)
    rescheduled_by = models.CharField(max_length=10, choices=ACTORS[:2], blank=True)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'orders'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'status']),
            models.Index(fields=['vendor', 'status']),
            models.Index(fields=['service', 'status']),
            models.Index(fields=['scheduled_date', 'status']),
            models.Index(fields=['-created_at']),
        ]

    def __str__(self):
        return self.order_number

    def save(self, *args, **kwargs):
        if self._state.adding and not self.order_number:
            self.order_number = generate_order_number()
        super().save(*args, **kwargs)

    @property
    def can_be_cancelled(self):
        return state_machine.can_be_cancelled(self.status)

    @property
    def can_be_processed(self):
        return state_machine.can_be_processed(self.status)

    @property
    def can_be_started(self):
        return state_machine.can_be_started(self.status)

    @property
    def can_be_completed(self):
        return state_machine.can_be_completed(self.status)


class OrderStatusHistory(models.Model):
    """Track order status changes"""
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='status_history')
    from_status = models.CharField(max_length=20, blank=True)
    to_status = models.CharField(max_length=20)

    notes = models.TextField(blank=True)
    changed_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'order_status_history'
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['order', '-created_at']),
        ]
