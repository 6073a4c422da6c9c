# promotions/models.py
from decimal import Decimal

from django.db import models
from django.conf import settings
from django.core.validators import MinValueValidator


class Coupon(models.Model):
    """Discount coupons"""
    TYPE_PERCENTAGE = 'percentage'
    TYPE_FIXED = 'fixed'
    TYPE_FREE_DELIVERY = 'free_delivery'

    DISCOUNT_TYPES = [
        (TYPE_PERCENTAGE, 'Percentage'),
        (TYPE_FIXED, 'Fixed Amount'),
        (TYPE_FREE_DELIVERY, 'Free Delivery'),
    ]

    STATUS_ACTIVE = 'active'
    STATUS_INACTIVE = 'inactive'
    STATUS_EXPIRED = 'expired'
    STATUS_USED_UP = 'used_up'

    STATUSES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_INACTIVE, 'Inactive'),
        (STATUS_EXPIRED, 'Expired'),
        (STATUS_USED_UP, 'Used Up'),
    ]

    SCOPES = [
        ('all', 'All'),
        ('specific_users', 'Specific Users'),
        ('specific_categories', 'Specific Categories'),
        ('specific_services', 'Specific Services'),
    ]

    code = models.CharField(max_length=50, unique=True, db_index=True)
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)

    type = models.CharField(max_length=20, choices=DISCOUNT_TYPES)
    value = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])

    # Conditions
    min_order_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    max_discount_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    status = models.CharField(max_length=20, choices=STATUSES, default=STATUS_ACTIVE, db_index=True)

    # Validity
    start_date = models.DateTimeField()
    end_date = models.DateTimeField()

    # Limitations
    usage_limit = models.PositiveIntegerField(default=0, help_text='0 = unlimited')
    usage_count = models.PositiveIntegerField(default=0)
    user_usage_limit = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])

    # Applicability
    applicable_for = models.CharField(max_length=30, choices=SCOPES, default='all')
    applicable_users = models.ManyToManyField(settings.AUTH_USER_MODEL, blank=True, related_name='+')
    applicable_categories = models.ManyToManyField('catalog.Category', blank=True)
    applicable_services = models.ManyToManyField('catalog.Service', blank=True)
    applicable_vendors = models.ManyToManyField('vendors.Vendor', blank=True)
    is_first_order_only = models.BooleanField(default=False)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='created_coupons'
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'coupons'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['code', 'status']),
            models.Index(fields=['start_date', 'end_date']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(usage_limit=0) | models.Q(usage_count__lte=models.F('usage_limit')),
                name='coupon_usage_within_limit',
            ),
        ]

    def __str__(self):
        return self.code

    def save(self, *args, **kwargs):
        self.code = (self.code or '').strip().upper()
        super().save(*args, **kwargs)


class CouponUsage(models.Model):
    """One consumed use of a coupon; at most one per order"""
    coupon = models.ForeignKey(Coupon, on_delete=models.PROTECT, related_name='usage_records')
    order = models.OneToOneField('orders.Order', on_delete=models.PROTECT, related_name='coupon_usage')
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='coupon_usage')

    discount_amount = models.DecimalField(max_digits=12, decimal_places=2)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'coupon_usage'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['coupon', 'user']),
        ]
