# payouts/models.py
import time
from decimal import Decimal

from django.db import models
from django.conf import settings


def generate_payout_number():
    return f"PO-{int(time.time() * 1000)}-{Payout.objects.count() + 1}"


class Payout(models.Model):
    """Transfer of a vendor's settled earnings for a period"""
    STATUS_PENDING = 'pending'
    STATUS_PROCESSING = 'processing'
    STATUS_COMPLETED = 'completed'
    STATUS_FAILED = 'failed'
    STATUS_CANCELLED = 'cancelled'

    STATUSES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_PROCESSING, 'Processing'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_FAILED, 'Failed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    # A transaction may be claimed by at most one payout in these states
    LIVE_STATUSES = (STATUS_PENDING, STATUS_PROCESSING, STATUS_COMPLETED)

    METHODS = [
        ('bank_transfer', 'Bank Transfer'),
        ('mobile_banking', 'Mobile Banking'),
        ('paypal', 'PayPal'),
        ('stripe', 'Stripe'),
    ]

    payout_number = models.CharField(max_length=50, unique=True, db_index=True, editable=False)
    vendor = models.ForeignKey('vendors.Vendor', on_delete=models.PROTECT, related_name='payouts')

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    # amount = gross_amount - refund_deductions, frozen when the payout is built
    gross_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    refund_deductions = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    currency = models.CharField(max_length=3, default='USD')
    method = models.CharField(max_length=20, choices=METHODS)
    status = models.CharField(max_length=20, choices=STATUSES, default=STATUS_PENDING, db_index=True)

    period_start = models.DateTimeField()
    period_end = models.DateTimeField()

    # Snapshot of what the amount was computed from
    transactions = models.ManyToManyField('payments.Transaction', related_name='payouts', blank=True)

    # Banking details
    bank_name = models.CharField(max_length=200, blank=True)
    account_number = models.CharField(max_length=50, blank=True)
    account_holder_name = models.CharField(max_length=200, blank=True)
    routing_number = models.CharField(max_length=50, blank=True)
    swift_code = models.CharField(max_length=20, blank=True)
    mobile_provider = models.CharField(max_length=50, blank=True)
    mobile_number = models.CharField(max_length=20, blank=True)

    requested_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    failure_reason = models.TextField(blank=True)

    gateway_transaction_id = models.CharField(max_length=255, blank=True)
    gateway_response = models.JSONField(default=dict, blank=True)

    processed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='processed_payouts'
    )
    notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'payouts'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['vendor', 'status']),
            models.Index(fields=['status', '-created_at']),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gt=Decimal('0')), name='payout_amount_positive'),
        ]

    def __str__(self):
        return self.payout_number
