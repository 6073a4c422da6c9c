# payments/services.py
"""
Transaction ledger.

Every status change is a conditional update from the states it may leave,
so a replayed webhook or a second worker racing on the same payment either
observes the finished record or loses the compare-and-set.
"""

import logging
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.db import DatabaseError, transaction as db_transaction
from django.db.models import Count, Sum
from django.db.models.functions import TruncDate
from django.utils import timezone

from core.exceptions import (
    GatewayError, NotFoundError, PermissionDenied, ReconciliationError, StateConflictError, ValidationError,
)
from core.utils import quantize_money, save_with_unique_number
from orders import state_machine
from orders.models import Order
from promotions.services import redeem_coupon
from .gateways import PaymentGatewayFactory
from .models import Transaction, generate_transaction_number, split_commission
from .signals import payment_confirmed, payment_refunded

logger = logging.getLogger(__name__)

__all__ = [
    'commission_rate_for', 'split_commission', 'initiate_payment', 'confirm_payment',
    'confirm_failure', 'fail_payment', 'verify_manual_payment', 'refund', 'settle_order',
    'expire_stale_payments', 'reconcile_paid_orders', 'revenue_statistics',
]


def commission_rate_for(vendor):
    """Vendor-specific rate when set, the platform rate otherwise."""
    if vendor.commission_rate is not None:
        return Decimal(vendor.commission_rate)
    return Decimal(str(getattr(settings, 'PLATFORM_COMMISSION_RATE', 5)))


def _conflict(txn, action):
    current = Transaction.objects.filter(pk=txn.pk).values_list('status', flat=True).first()
    return StateConflictError(
        f'Transaction {txn.transaction_number} cannot be {action}. Current status: {current}',
        current_status=current,
    )


def _live_payment(order_id, exclude=None, statuses=Transaction.LIVE_STATUSES):
    payments = Transaction.objects.filter(order_id=order_id, type=Transaction.TYPE_PAYMENT, status__in=statuses)
    if exclude is not None:
        payments = payments.exclude(pk=exclude)
    return payments.order_by('created_at').first()


# ─────────────────────────────────────────────────────────────
# INITIATION
# ─────────────────────────────────────────────────────────────

def initiate_payment(order, user, method):
    """
    Open a payment transaction for ``order`` and return
    ``(transaction, client_payload)``. Manual methods start in processing
    and wait for an admin to verify them.
    """
    if order.user_id != user.pk:
        raise PermissionDenied('Not authorized to pay for this order')
    if method not in dict(Transaction.PAYMENT_METHODS):
        raise ValidationError(f'Unsupported payment method: {method}')

    gateway = None
    if method not in Transaction.MANUAL_METHODS:
        gateway = PaymentGatewayFactory.get_gateway(method)

    with db_transaction.atomic():
        # row lock serialises concurrent checkouts of the same order
        Order.objects.select_for_update().filter(pk=order.pk).exists()
        order.refresh_from_db()
        if not state_machine.can_accept_payment(order.status):
            raise StateConflictError(
                f'Order {order.order_number} cannot accept payment. Current status: {order.status}',
                current_status=order.status,
            )
        if order.payment_status in (Order.PAYMENT_PAID, Order.PAYMENT_REFUNDED):
            raise ValidationError(f'Order {order.order_number} is already {order.payment_status}')

        live = _live_payment(order.pk)
        if live is not None:
            raise StateConflictError(
                f'Order {order.order_number} already has payment {live.transaction_number} ({live.status})',
                current_status=live.status,
            )

        txn = Transaction(
            order=order,
            user=user,
            vendor_id=order.vendor_id,
            type=Transaction.TYPE_PAYMENT,
            amount=order.total_amount,
            currency=order.currency,
            commission_rate=commission_rate_for(order.vendor),
            payment_method=method,
            status=Transaction.STATUS_PROCESSING if gateway is None else Transaction.STATUS_PENDING,
            description=f'Payment for order {order.order_number}',
        )
        save_with_unique_number(txn, 'transaction_number', generate_transaction_number)

    if gateway is None:
        logger.info(f"Manual {method} payment {txn.transaction_number} opened for order {order.order_number}")
        return txn, {'instructions': 'Awaiting manual verification'}

    try:
        intent = gateway.create_intent(txn, order)
    except GatewayError as e:
        Transaction.objects.filter(pk=txn.pk, status=Transaction.STATUS_PENDING).update(
            status=Transaction.STATUS_FAILED,
            failure_reason=str(e)[:500],
            processed_at=timezone.now(),
        )
        logger.error(f"Payment {txn.transaction_number} could not be initiated with {method}: {e}")
        raise

    fields = dict(intent.fields)
    if gateway.REFERENCE_FIELD != 'transaction_number':
        fields[gateway.REFERENCE_FIELD] = intent.reference
    Transaction.objects.filter(pk=txn.pk).update(**fields)
    txn.refresh_from_db()

    logger.info(
        f"Payment {txn.transaction_number} initiated via {method} "
        f"for order {order.order_number}: {txn.amount} {txn.currency}"
    )
    return txn, intent.payload


# ─────────────────────────────────────────────────────────────
# CONFIRMATION
# ─────────────────────────────────────────────────────────────

def find_transaction(gateway_name, reference):
    if not reference:
        raise ValidationError('Payment reference is required')
    gateway = PaymentGatewayFactory.get_gateway(gateway_name)
    try:
        return Transaction.objects.select_related('order').get(
            type=Transaction.TYPE_PAYMENT,
            payment_method=gateway.name,
            **{gateway.REFERENCE_FIELD: reference},
        )
    except Transaction.DoesNotExist:
        raise NotFoundError('Transaction not found')


def settle_order(txn):
    """
    Bring the order in line with a completed payment: mark it paid and
    consume its coupon. Safe to run any number of times.
    """
    try:
        with db_transaction.atomic():
            marked = Order.objects.filter(
                pk=txn.order_id,
                payment_status__in=(Order.PAYMENT_PENDING, Order.PAYMENT_FAILED),
            ).update(
                payment_status=Order.PAYMENT_PAID,
                paid_at=txn.completed_at or timezone.now(),
                updated_at=timezone.now(),
            )
            redeem_coupon(Order.objects.get(pk=txn.order_id))
    except DatabaseError as e:
        logger.error(
            f"Payment {txn.transaction_number} completed but order {txn.order.order_number} "
            f"could not be settled: {e}",
            exc_info=True,
        )
        raise ReconciliationError(
            f'Payment {txn.transaction_number} recorded but order could not be updated',
            transaction_number=txn.transaction_number,
            order_number=txn.order.order_number,
        ) from e

    if marked:
        logger.info(f"Order {txn.order.order_number} marked paid by {txn.transaction_number}")
    return bool(marked)


def _complete(txn, **fields):
    """
    Compare-and-set ``pending|processing -> completed``. Returns
    ``(txn, won)``; a lost race hands back the winner's record.

    Refuses when another payment of the same order is already settled, so
    an order is never credited twice.
    """
    now = timezone.now()
    with db_transaction.atomic():
        Order.objects.select_for_update().filter(pk=txn.order_id).exists()
        rival = _live_payment(txn.order_id, exclude=txn.pk, statuses=Transaction.SETTLED_STATUSES)
        if rival is not None and txn.status in Transaction.OPEN_STATUSES:
            logger.error(
                f"Payment {txn.transaction_number} refused: order {txn.order_id} already paid by "
                f"{rival.transaction_number}; any funds taken for it must be refunded at the gateway"
            )
            raise StateConflictError(
                f'Order already paid by transaction {rival.transaction_number}',
                current_status=txn.status,
            )

        updated = Transaction.objects.filter(
            pk=txn.pk, status__in=Transaction.OPEN_STATUSES,
        ).update(
            status=Transaction.STATUS_COMPLETED,
            completed_at=now,
            processed_at=now,
            updated_at=now,
            **fields
        )
        txn.refresh_from_db()
        if updated:
            db_transaction.on_commit(lambda: payment_confirmed.send(sender=Transaction, transaction=txn))

    if not updated and txn.status not in Transaction.SETTLED_STATUSES:
        raise _conflict(txn, 'completed')
    if updated:
        logger.info(
            f"Payment {txn.transaction_number} completed: {txn.amount} {txn.currency} "
            f"(commission {txn.commission_amount}, vendor {txn.vendor_amount})"
        )
    else:
        logger.warning(f"Payment {txn.transaction_number} already completed by a concurrent confirmation")
    return txn, bool(updated)


def confirm_payment(gateway, reference, token=None):
    """
    Confirm a gateway payment. Replays of an already confirmed payment are
    no-ops that return the stored record and re-run order settlement.
    """
    txn = find_transaction(gateway, reference)

    if txn.status in Transaction.SETTLED_STATUSES:
        logger.warning(f"Payment {txn.transaction_number} already {txn.status}; replay ignored")
        settle_order(txn)
        return txn
    if txn.status not in Transaction.OPEN_STATUSES:
        raise _conflict(txn, 'confirmed')

    verification = PaymentGatewayFactory.get_gateway(gateway).verify(txn, token)

    if not verification.authentic:
        logger.warning(
            f"Rejected unverifiable confirmation for {txn.transaction_number} "
            f"via {gateway} (status={verification.status})"
        )
        raise ValidationError('Payment verification failed')

    if verification.pending:
        logger.info(f"Payment {txn.transaction_number} still {verification.status} at {gateway}")
        return txn

    if not verification.paid:
        return fail_payment(
            txn, f'Payment not completed at gateway (status: {verification.status})', verification.raw,
        )

    txn, _ = _complete(txn, gateway_response=verification.raw, **verification.fields)
    settle_order(txn)
    return txn


def confirm_failure(gateway, reference, reason, raw=None):
    """
    Handle an unauthenticated failure callback. The provider is asked for
    the payment's status and the transaction only moves on its answer;
    until the provider reports a failure the payment stays open.
    """
    txn = find_transaction(gateway, reference)
    if txn.status not in Transaction.OPEN_STATUSES:
        return fail_payment(txn, reason, raw)

    observed = PaymentGatewayFactory.get_gateway(gateway).query(txn)

    if not observed.authentic or observed.pending:
        logger.warning(
            f"Failure callback for {txn.transaction_number} not confirmed by {gateway} "
            f"(status={observed.status}); payment left {txn.status}"
        )
        return txn

    if observed.paid:
        logger.warning(f"Failure callback for {txn.transaction_number} contradicted: {gateway} reports it paid")
        txn, _ = _complete(txn, gateway_response=observed.raw, **observed.fields)
        settle_order(txn)
        return txn

    status = Transaction.STATUS_CANCELLED if observed.status == 'CANCELLED' else Transaction.STATUS_FAILED
    return fail_payment(txn, reason, observed.raw, status=status)


def fail_payment(txn, reason, raw=None, status=Transaction.STATUS_FAILED):
    """
    ``pending|processing -> failed`` (or cancelled when the customer walked
    away at the gateway). The order's payment status follows; its booking
    status does not change.
    """
    if status not in (Transaction.STATUS_FAILED, Transaction.STATUS_CANCELLED):
        raise ValidationError(f'Cannot fail a payment into {status}')

    now = timezone.now()
    fields = {'status': status, 'failure_reason': reason, 'processed_at': now, 'updated_at': now}
    if raw is not None:
        fields['gateway_response'] = raw

    with db_transaction.atomic():
        updated = Transaction.objects.filter(
            pk=txn.pk, status__in=Transaction.OPEN_STATUSES,
        ).update(**fields)
        txn.refresh_from_db()
        if not updated:
            if txn.status == status:
                logger.warning(f"Payment {txn.transaction_number} already {status}; replay ignored")
                return txn
            raise _conflict(txn, status)

        Order.objects.filter(pk=txn.order_id, payment_status=Order.PAYMENT_PENDING).update(
            payment_status=Order.PAYMENT_FAILED, updated_at=now,
        )

    logger.info(f"Payment {txn.transaction_number} {status}: {reason}")
    return txn


def verify_manual_payment(txn, admin, approve, notes='', reference_number=''):
    """Admin decision on a cash or bank transfer payment awaiting verification."""
    if not txn.is_manual:
        raise ValidationError('Only cash and bank transfer payments are verified manually')

    if not approve:
        return fail_payment(txn, notes or 'Payment verification rejected')

    metadata = dict(txn.metadata or {})
    metadata.update({
        'verified_by':      admin.pk,
        'verified_at':      timezone.now().isoformat(),
        'reference_number': reference_number,
        'notes':            notes,
    })
    txn, _ = _complete(txn, metadata=metadata)
    settle_order(txn)
    return txn


# ─────────────────────────────────────────────────────────────
# REFUNDS
# ─────────────────────────────────────────────────────────────

def refund(txn, amount=None, reason='', refunded_by=None):
    """
    Refund part or all of a completed payment. Returns the linked
    refund-type transaction; ``txn`` is refreshed in place.
    """
    if txn.type != Transaction.TYPE_PAYMENT:
        raise ValidationError('Only payments can be refunded')

    txn.refresh_from_db()
    if txn.status not in (Transaction.STATUS_COMPLETED, Transaction.STATUS_PARTIALLY_REFUNDED):
        raise StateConflictError(
            f'Transaction {txn.transaction_number} cannot be refunded. Current status: {txn.status}',
            current_status=txn.status,
        )

    observed = txn.refund_amount
    remaining = txn.amount - observed
    amount = remaining if amount is None else quantize_money(amount)
    if amount <= 0:
        raise ValidationError('Refund amount must be greater than zero')
    if amount > remaining:
        raise ValidationError(f'Refund amount exceeds refundable balance of {remaining}')

    new_total = observed + amount
    fully_refunded = new_total == txn.amount
    previous_status = txn.status
    claimed_status = Transaction.STATUS_REFUNDED if fully_refunded else Transaction.STATUS_PARTIALLY_REFUNDED

    # claimed before the gateway call, released again if the gateway refuses
    claimed = Transaction.objects.filter(
        pk=txn.pk, status=previous_status, refund_amount=observed,
    ).update(refund_amount=new_total, status=claimed_status, updated_at=timezone.now())
    if not claimed:
        logger.warning(f"Refund of {amount} on {txn.transaction_number} lost a race with another refund")
        raise _conflict(txn, 'refunded')

    refund_id = ''
    if not txn.is_manual:
        try:
            refund_id = PaymentGatewayFactory.get_gateway(txn.payment_method).refund(txn, amount) or ''
        except GatewayError:
            released = Transaction.objects.filter(
                pk=txn.pk, status=claimed_status, refund_amount=new_total,
            ).update(refund_amount=observed, status=previous_status, updated_at=timezone.now())
            if not released:
                logger.error(f"Refund claim of {amount} on {txn.transaction_number} could not be released")
            raise

    now = timezone.now()
    with db_transaction.atomic():
        Transaction.objects.filter(pk=txn.pk).update(
            refund_id=refund_id,
            refund_reason=reason,
            refunded_at=now,
            refunded_by=refunded_by,
            updated_at=now,
        )

        refund_txn = Transaction(
            order_id=txn.order_id,
            user_id=txn.user_id,
            vendor_id=txn.vendor_id,
            parent=txn,
            type=Transaction.TYPE_REFUND,
            amount=amount,
            currency=txn.currency,
            commission_rate=txn.commission_rate,
            payment_method=txn.payment_method,
            status=Transaction.STATUS_COMPLETED,
            refund_id=refund_id,
            refund_reason=reason,
            refunded_by=refunded_by,
            description=f'Refund of {txn.transaction_number}',
            processed_at=now,
            completed_at=now,
        )
        save_with_unique_number(refund_txn, 'transaction_number', generate_transaction_number)

        if fully_refunded:
            Order.objects.filter(pk=txn.order_id).update(
                payment_status=Order.PAYMENT_REFUNDED, updated_at=now,
            )

        txn.refresh_from_db()
        db_transaction.on_commit(lambda: payment_refunded.send(
            sender=Transaction, transaction=txn, refund=refund_txn, amount=amount,
        ))

    logger.info(
        f"Refunded {amount} {txn.currency} of {txn.transaction_number} as {refund_txn.transaction_number} "
        f"({'full' if fully_refunded else 'partial'})"
    )
    return refund_txn


# ─────────────────────────────────────────────────────────────
# MAINTENANCE
# ─────────────────────────────────────────────────────────────

def expire_stale_payments(now=None):
    """Fail gateway payments that stayed pending past the timeout."""
    now = now or timezone.now()
    timeout = int(getattr(settings, 'PAYMENT_PENDING_TIMEOUT_MINUTES', 60))
    cutoff = now - timedelta(minutes=timeout)

    expired = 0
    stale = Transaction.objects.filter(
        type=Transaction.TYPE_PAYMENT,
        status=Transaction.STATUS_PENDING,
        created_at__lt=cutoff,
    )
    for txn in stale:
        try:
            fail_payment(txn, f'Payment session expired after {timeout} minutes')
        except StateConflictError as e:
            logger.info(f"Skipping expiry of {txn.transaction_number}: {e.message}")
            continue
        expired += 1
    return expired


def reconcile_paid_orders():
    """Re-settle orders whose completed payment never reached them."""
    candidates = Transaction.objects.select_related('order').filter(
        type=Transaction.TYPE_PAYMENT,
        status__in=(Transaction.STATUS_COMPLETED, Transaction.STATUS_PARTIALLY_REFUNDED),
    ).exclude(
        order__payment_status__in=(Order.PAYMENT_PAID, Order.PAYMENT_REFUNDED),
    )

    repaired, failed = 0, 0
    for txn in candidates:
        try:
            if settle_order(txn):
                repaired += 1
        except ReconciliationError:
            failed += 1
    return repaired, failed


def revenue_statistics(start, end, vendor=None):
    payments = Transaction.objects.filter(
        type=Transaction.TYPE_PAYMENT,
        status__in=Transaction.SETTLED_STATUSES,
        completed_at__gte=start,
        completed_at__lte=end,
    )
    if vendor is not None:
        payments = payments.filter(vendor=vendor)

    daily = [
        {
            'date':                row['day'],
            'total_revenue':       quantize_money(row['total_revenue'] or 0),
            'total_commission':    quantize_money(row['total_commission'] or 0),
            'total_vendor_amount': quantize_money(row['total_vendor_amount'] or 0),
            'transaction_count':   row['transaction_count'],
        }
        for row in payments.annotate(day=TruncDate('completed_at')).values('day').annotate(
            total_revenue=Sum('amount'),
            total_commission=Sum('commission_amount'),
            total_vendor_amount=Sum('vendor_amount'),
            transaction_count=Count('id'),
        ).order_by('day')
    ]

    totals = payments.aggregate(
        total_revenue=Sum('amount'),
        total_commission=Sum('commission_amount'),
        total_vendor_amount=Sum('vendor_amount'),
        total_refunded=Sum('refund_amount'),
        transaction_count=Count('id'),
    )
    return {
        'daily':               daily,
        'total_revenue':       quantize_money(totals['total_revenue'] or 0),
        'total_commission':    quantize_money(totals['total_commission'] or 0),
        'total_vendor_amount': quantize_money(totals['total_vendor_amount'] or 0),
        'total_refunded':      quantize_money(totals['total_refunded'] or 0),
        'transaction_count':   totals['transaction_count'],
    }
