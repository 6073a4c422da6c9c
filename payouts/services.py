# payouts/services.py
"""
Payout aggregation.

A completed or partially refunded payment is claimed by a payout through its
``payout`` column, written only with ``payout IS NULL`` as the guard.
Cancelling or failing a payout clears the claim again; completing it stamps
``paid_out_at`` for good. A payment pays out its vendor share net of the
vendor share of its refunds.
"""

import logging
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.db import transaction as db_transaction
from django.db.models import Count, Min, Sum
from django.utils import timezone

from core.exceptions import PermissionDenied, StateConflictError, ValidationError
from core.utils import quantize_money, save_with_unique_number
from payments.models import Transaction
from vendors.models import Vendor
from .models import Payout, generate_payout_number

logger = logging.getLogger(__name__)

DETAIL_FIELDS = {
    'bank_transfer':  ('bank_name', 'account_number', 'account_holder_name', 'routing_number', 'swift_code'),
    'mobile_banking': ('mobile_provider', 'mobile_number'),
}


def _unclaimed(vendor):
    return Transaction.objects.filter(
        vendor=vendor,
        type=Transaction.TYPE_PAYMENT,
        status__in=Transaction.PAYABLE_STATUSES,
        payout__isnull=True,
        paid_out_at__isnull=True,
    )


def eligible_transactions(vendor, start, end):
    return _unclaimed(vendor).filter(completed_at__gte=start, completed_at__lte=end).order_by('completed_at')


def refunded_vendor_share(payments):
    """Vendor share already handed back through refunds of ``payments``."""
    total = Transaction.objects.filter(
        type=Transaction.TYPE_REFUND, parent__in=payments,
    ).aggregate(total=Sum('vendor_amount'))['total']
    return quantize_money(total or 0)


def available_balance(vendor):
    payments = _unclaimed(vendor)
    gross = payments.aggregate(total=Sum('vendor_amount'))['total'] or 0
    return quantize_money(gross) - refunded_vendor_share(payments)


def default_period(now=None):
    now = now or timezone.now()
    days = int(getattr(settings, 'DEFAULT_PAYOUT_PERIOD_DAYS', 30))
    return now - timedelta(days=days), now


def build_payout(vendor, period_start, period_end, method=None, details=None):
    """
    Snapshot the vendor's eligible payments for the period into a pending
    payout and claim each of them. Losing any claim rolls the whole build back.
    """
    if not vendor.is_active:
        raise PermissionDenied('Vendor account is deactivated. Payouts cannot be requested.')
    if period_start > period_end:
        raise ValidationError('Payout period start must be before its end')

    method = method or vendor.payout_method
    if method not in dict(Payout.METHODS):
        raise ValidationError(f'Unsupported payout method: {method}')
    if details is None:
        details = vendor.payout_details() if method == vendor.payout_method else {}
    banking = {f: details.get(f) or '' for f in DETAIL_FIELDS.get(method, ())}

    with db_transaction.atomic():
        txns = list(eligible_transactions(vendor, period_start, period_end))
        if not txns:
            raise ValidationError('No completed transactions available for payout')

        gross = sum((t.vendor_amount for t in txns), Decimal('0.00'))
        if gross <= 0:
            raise ValidationError('Insufficient balance for payout')

        payout = Payout(
            vendor=vendor,
            amount=gross,
            gross_amount=gross,
            currency=txns[0].currency,
            method=method,
            status=Payout.STATUS_PENDING,
            period_start=period_start,
            period_end=period_end,
            **banking,
        )
        save_with_unique_number(payout, 'payout_number', generate_payout_number)

        ids = [t.pk for t in txns]
        claimed = Transaction.objects.filter(
            pk__in=ids, status__in=Transaction.PAYABLE_STATUSES, payout__isnull=True,
        ).update(payout=payout, updated_at=timezone.now())
        if claimed != len(ids):
            logger.warning(
                f"Payout build for vendor {vendor.pk} lost {len(ids) - claimed} claim(s); rolling back"
            )
            raise StateConflictError('Transactions were claimed by another payout, retry the request')

        deductions = refunded_vendor_share(Transaction.objects.filter(payout=payout))
        total = gross - deductions
        if total <= 0:
            raise ValidationError('Insufficient balance for payout')
        if deductions:
            Payout.objects.filter(pk=payout.pk).update(amount=total, refund_deductions=deductions)
            payout.amount, payout.refund_deductions = total, deductions

        payout.transactions.set(txns)

    logger.info(
        f"Payout {payout.payout_number} built for vendor {vendor.pk}: "
        f"{total} {payout.currency} from {len(txns)} transaction(s) (refunds {deductions})"
    )
    return payout


def _move(payout, from_status, to_status, **fields):
    now = timezone.now()
    updated = Payout.objects.filter(pk=payout.pk, status=from_status).update(
        status=to_status, updated_at=now, **fields
    )
    if not updated:
        current = Payout.objects.filter(pk=payout.pk).values_list('status', flat=True).first()
        raise StateConflictError(
            f'Payout {payout.payout_number} must be {from_status}. Current status: {current}',
            current_status=current,
        )
    logger.info(f"Payout {payout.payout_number}: {from_status} -> {to_status}")


def _release_claims(payout):
    released = Transaction.objects.filter(payout=payout, paid_out_at__isnull=True).update(
        payout=None, updated_at=timezone.now()
    )
    logger.info(f"Payout {payout.payout_number} released {released} transaction(s)")
    return released


def process_payout(payout, admin, approve, notes='', gateway_transaction_id=''):
    """Approve (pending -> processing) or reject (pending -> cancelled)."""
    now = timezone.now()
    with db_transaction.atomic():
        if approve:
            _move(
                payout, Payout.STATUS_PENDING, Payout.STATUS_PROCESSING,
                processed_at=now, processed_by=admin, notes=notes,
                gateway_transaction_id=gateway_transaction_id,
            )
        else:
            _move(
                payout, Payout.STATUS_PENDING, Payout.STATUS_CANCELLED,
                processed_at=now, processed_by=admin, notes=notes,
                failure_reason=notes or 'Rejected by admin',
            )
            _release_claims(payout)
    payout.refresh_from_db()
    return payout


def complete_payout(payout, gateway_transaction_id='', gateway_response=None):
    now = timezone.now()
    fields = {'completed_at': now}
    if gateway_transaction_id:
        fields['gateway_transaction_id'] = gateway_transaction_id
    if gateway_response is not None:
        fields['gateway_response'] = gateway_response

    with db_transaction.atomic():
        _move(payout, Payout.STATUS_PROCESSING, Payout.STATUS_COMPLETED, **fields)
        Transaction.objects.filter(payout=payout).update(paid_out_at=now, updated_at=now)
    payout.refresh_from_db()
    return payout


def fail_payout(payout, reason):
    if not (reason or '').strip():
        raise ValidationError('Failure reason is required')
    with db_transaction.atomic():
        _move(payout, Payout.STATUS_PROCESSING, Payout.STATUS_FAILED, failure_reason=reason)
        _release_claims(payout)
    payout.refresh_from_db()
    return payout


def run_payout_cycle(period_end=None):
    """
    Build one payout per active vendor covering every unclaimed payable
    payment up to ``period_end``.
    """
    period_end = period_end or timezone.now()
    built = []
    vendors = Vendor.objects.filter(is_active=True, approval_status='approved')
    for vendor in vendors:
        earliest = _unclaimed(vendor).filter(completed_at__lte=period_end).aggregate(
            first=Min('completed_at')
        )['first']
        if earliest is None:
            continue
        try:
            built.append(build_payout(vendor, earliest, period_end))
        except (ValidationError, StateConflictError) as e:
            logger.warning(f"Payout cycle skipped vendor {vendor.pk}: {e.message}")
    logger.info(f"Payout cycle up to {period_end:%Y-%m-%d %H:%M} built {len(built)} payout(s)")
    return built


def payout_statistics(vendor=None):
    payouts = Payout.objects.all()
    if vendor is not None:
        payouts = payouts.filter(vendor=vendor)

    by_status = {
        row['status']: {'count': row['count'], 'total_amount': quantize_money(row['total_amount'] or 0)}
        for row in payouts.values('status').annotate(
            count=Count('id'), total_amount=Sum('amount'),
        ).order_by('status')
    }
    empty = {'count': 0, 'total_amount': Decimal('0.00')}
    return {
        'by_status':         by_status,
        'total_payouts':     sum(s['count'] for s in by_status.values()),
        'pending_payouts':   by_status.get(Payout.STATUS_PENDING, empty)['count'],
        'completed_payouts': by_status.get(Payout.STATUS_COMPLETED, empty)['count'],
        'total_paid_out':    by_status.get(Payout.STATUS_COMPLETED, empty)['total_amount'],
    }
