# vendors/signals.py
import logging

from django.db.models import F
from django.dispatch import receiver

from orders.signals import order_created, order_status_changed
from payments.signals import payment_confirmed, payment_refunded
from .models import Vendor

logger = logging.getLogger(__name__)


@receiver(order_created)
def count_new_booking(sender, order, **kwargs):
    Vendor.objects.filter(pk=order.vendor_id).update(total_orders=F('total_orders') + 1)


@receiver(order_status_changed)
def count_completed_booking(sender, order, to_status, **kwargs):
    if to_status != 'completed':
        return
    Vendor.objects.filter(pk=order.vendor_id).update(completed_orders=F('completed_orders') + 1)


@receiver(payment_confirmed)
def record_vendor_revenue(sender, transaction, **kwargs):
    Vendor.objects.filter(pk=transaction.vendor_id).update(
        total_revenue=F('total_revenue') + transaction.vendor_amount,
        total_commission=F('total_commission') + transaction.commission_amount,
    )
    logger.info(
        f"Vendor {transaction.vendor_id} credited {transaction.vendor_amount} "
        f"(commission {transaction.commission_amount}) for {transaction.transaction_number}"
    )


@receiver(payment_refunded)
def reverse_vendor_revenue(sender, transaction, refund, **kwargs):
    Vendor.objects.filter(pk=refund.vendor_id).update(
        total_revenue=F('total_revenue') - refund.vendor_amount,
        total_commission=F('total_commission') - refund.commission_amount,
    )
    logger.info(
        f"Vendor {refund.vendor_id} debited {refund.vendor_amount} "
        f"(commission {refund.commission_amount}) for refund {refund.transaction_number}"
    )
