# vendors/models.py
from decimal import Decimal

from django.db import models
from django.conf import settings
from django.core.validators import MinValueValidator, MaxValueValidator


class Vendor(models.Model):
    """Business profile of a vendor account"""
    APPROVAL_STATUS = [
        ('pending', 'Pending'),
        ('approved', 'Approved'),
        ('rejected', 'Rejected'),
    ]

    PAYOUT_METHODS = [
        ('bank_transfer', 'Bank Transfer'),
        ('mobile_banking', 'Mobile Banking'),
        ('paypal', 'PayPal'),
        ('stripe', 'Stripe'),
    ]

    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='vendor_profile')
    business_name = models.CharField(max_length=200)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=20, blank=True)

    approval_status = models.CharField(max_length=20, choices=APPROVAL_STATUS, default='pending', db_index=True)
    is_active = models.BooleanField(default=True)

    # Null means the platform-wide PLATFORM_COMMISSION_RATE applies
    commission_rate = models.DecimalField(
        max_digits=5, decimal_places=2, null=True, blank=True,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )

    # Payout defaults
    payout_method = models.CharField(max_length=20, choices=PAYOUT_METHODS, default='bank_transfer')
    bank_name = models.CharField(max_length=200, blank=True)
    account_number = models.CharField(max_length=50, blank=True)
    account_holder_name = models.CharField(max_length=200, blank=True)
    routing_number = models.CharField(max_length=50, blank=True)
    swift_code = models.CharField(max_length=20, blank=True)
    mobile_provider = models.CharField(max_length=50, blank=True)
    mobile_number = models.CharField(max_length=20, blank=True)

    # Running metrics, only ever changed through F() increments
    total_revenue = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    total_commission = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    total_orders = models.PositiveIntegerField(default=0)
    completed_orders = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'vendors'
        ordering = ['business_name']
        indexes = [
            models.Index(fields=['approval_status', 'is_active']),
        ]

    def __str__(self):
        return self.business_name

    @property
    def accepts_bookings(self):
        return self.approval_status == 'approved' and self.is_active

    def payout_details(self):
        if self.payout_method == 'bank_transfer':
            return {
                'bank_name':           self.bank_name,
                'account_number':      self.account_number,
                'account_holder_name': self.account_holder_name,
                'routing_number':      self.routing_number,
                'swift_code':          self.swift_code,
            }
        if self.payout_method == 'mobile_banking':
            return {
                'mobile_provider': self.mobile_provider,
                'mobile_number':   self.mobile_number,
            }
        return {}
