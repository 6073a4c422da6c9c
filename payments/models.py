# payments/models.py
from decimal import Decimal

from django.db import models
from django.conf import settings

from core.utils import generate_dated_number, percent_of, quantize_money


def generate_transaction_number():
    return generate_dated_number('TXN')


def split_commission(amount, rate):
    """Split ``amount`` into ``(commission, vendor_amount)`` that sum back to it exactly."""
    amount = quantize_money(amount)
    commission = percent_of(amount, rate)
    return commission, amount - commission


class Transaction(models.Model):
    """
    One money movement against an order.

    ``commission_amount`` and ``vendor_amount`` are derived from ``amount``
    and ``commission_rate`` on every save, so the three are always written
    together in one row.
    """
    TYPE_PAYMENT = 'payment'
    TYPE_REFUND = 'refund'
    TYPE_PAYOUT = 'payout'
    TYPE_COMMISSION = 'commission'

    TYPES = [
        (TYPE_PAYMENT, 'Payment'),
        (TYPE_REFUND, 'Refund'),
        (TYPE_PAYOUT, 'Payout'),
        (TYPE_COMMISSION, 'Commission'),
    ]

    METHOD_STRIPE = 'stripe'
    METHOD_PAYPAL = 'paypal'
    METHOD_RAZORPAY = 'razorpay'
    METHOD_SSLCOMMERZ = 'sslcommerz'
    METHOD_CASH = 'cash'
    METHOD_BANK_TRANSFER = 'bank_transfer'

    PAYMENT_METHODS = [
        (METHOD_STRIPE, 'Stripe'),
        (METHOD_PAYPAL, 'PayPal'),
        (METHOD_RAZORPAY, 'Razorpay'),
        (METHOD_SSLCOMMERZ, 'SSLCommerz'),
        (METHOD_CASH, 'Cash'),
        (METHOD_BANK_TRANSFER, 'Bank Transfer'),
    ]

    MANUAL_METHODS = (METHOD_CASH, METHOD_BANK_TRANSFER)

    STATUS_PENDING = 'pending'
    STATUS_PROCESSING = 'processing'
    STATUS_COMPLETED = 'completed'
    STATUS_FAILED = 'failed'
    STATUS_REFUNDED = 'refunded'
    STATUS_PARTIALLY_REFUNDED = 'partially_refunded'
    STATUS_CANCELLED = 'cancelled'

    STATUSES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_PROCESSING, 'Processing'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_FAILED, 'Failed'),
        (STATUS_REFUNDED, 'Refunded'),
        (STATUS_PARTIALLY_REFUNDED, 'Partially Refunded'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    OPEN_STATUSES = (STATUS_PENDING, STATUS_PROCESSING)
    SETTLED_STATUSES = (STATUS_COMPLETED, STATUS_PARTIALLY_REFUNDED, STATUS_REFUNDED)
    # An order holds at most one payment in these states
    LIVE_STATUSES = OPEN_STATUSES + SETTLED_STATUSES
    # Payments with a vendor share still owed
    PAYABLE_STATUSES = (STATUS_COMPLETED, STATUS_PARTIALLY_REFUNDED)

    # Identifiers
    transaction_number = models.CharField(max_length=50, unique=True, db_index=True, editable=False)
    order = models.ForeignKey('orders.Order', on_delete=models.PROTECT, related_name='transactions')
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='transactions')
    vendor = models.ForeignKey('vendors.Vendor', on_delete=models.PROTECT, related_name='transactions')
    parent = models.ForeignKey(
        'self', on_delete=models.PROTECT, null=True, blank=True, related_name='refunds'
    )

    type = models.CharField(max_length=20, choices=TYPES, default=TYPE_PAYMENT, db_index=True)

    # Amounts
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default='USD')
    commission_rate = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal('0.00'))
    commission_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    vendor_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))

    payment_method = models.CharField(max_length=20, choices=PAYMENT_METHODS)
    status = models.CharField(max_length=20, choices=STATUSES, default=STATUS_PENDING, db_index=True)

    # Gateway correlation
    stripe_payment_intent_id = models.CharField(max_length=255, blank=True, db_index=True)
    stripe_charge_id = models.CharField(max_length=255, blank=True)
    paypal_payment_id = models.CharField(max_length=255, blank=True, db_index=True)
    paypal_payer_id = models.CharField(max_length=255, blank=True)
    razorpay_order_id = models.CharField(max_length=255, blank=True, db_index=True)
    razorpay_payment_id = models.CharField(max_length=255, blank=True)
    sslcommerz_session_key = models.CharField(max_length=255, blank=True)
    sslcommerz_validation_id = models.CharField(max_length=255, blank=True)
    sslcommerz_bank_tran_id = models.CharField(max_length=255, blank=True)
    gateway_response = models.JSONField(default=dict, blank=True)

    # Refunds
    refund_id = models.CharField(max_length=255, blank=True)
    refund_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    refund_reason = models.TextField(blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    refunded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )

    # Payout claim; cleared again when the payout is cancelled or fails
    payout = models.ForeignKey(
        'payouts.Payout', on_delete=models.SET_NULL, null=True, blank=True, related_name='claimed_transactions'
    )
    paid_out_at = models.DateTimeField(null=True, blank=True)

    description = models.CharField(max_length=500, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    failure_reason = models.TextField(blank=True)

    processed_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'transactions'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['order', 'type']),
            models.Index(fields=['vendor', 'status', 'completed_at']),
            models.Index(fields=['user', '-created_at']),
            models.Index(fields=['payment_method', 'status']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(refund_amount__lte=models.F('amount')),
                name='transaction_refund_within_amount',
            ),
        ]

    def __str__(self):
        return self.transaction_number

    def save(self, *args, **kwargs):
        if self._state.adding and not self.transaction_number:
            self.transaction_number = generate_transaction_number()
        self.amount = quantize_money(self.amount)
        self.commission_amount, self.vendor_amount = split_commission(self.amount, self.commission_rate)
        super().save(*args, **kwargs)

    @property
    def refundable_amount(self):
        return self.amount - self.refund_amount

    @property
    def is_manual(self):
        return self.payment_method in self.MANUAL_METHODS
