# payouts/views.py
from django.contrib.auth.decorators import login_required
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from django.views.decorators.http import require_GET, require_POST

from core.exceptions import NotFoundError, ValidationError
from core.utils import parse_request_data
from core.views import api_view, json_success, require_role
from vendors.models import Vendor
from . import services
from .models import Payout


def _payout_payload(payout, with_transactions=False):
    payload = {
        'payout_number':          payout.payout_number,
        'vendor':                 {'id': payout.vendor_id, 'business_name': payout.vendor.business_name},
        'amount':                 payout.amount,
        'gross_amount':           payout.gross_amount,
        'refund_deductions':      payout.refund_deductions,
        'currency':               payout.currency,
        'method':                 payout.method,
        'status':                 payout.status,
        'period_start':           payout.period_start,
        'period_end':             payout.period_end,
        'requested_at':           payout.requested_at,
        'processed_at':           payout.processed_at,
        'completed_at':           payout.completed_at,
        'failure_reason':         payout.failure_reason,
        'gateway_transaction_id': payout.gateway_transaction_id,
        'notes':                  payout.notes,
    }
    if with_transactions:
        payload['transactions'] = [
            {
                'transaction_number': t.transaction_number,
                'amount':             t.amount,
                'vendor_amount':      t.vendor_amount,
                'completed_at':       t.completed_at,
            }
            for t in payout.transactions.all()
        ]
    return payload


def _vendor_for(user):
    require_role(user, 'vendor')
    try:
        return user.vendor_profile
    except Vendor.DoesNotExist:
        raise NotFoundError('Vendor profile not found')


def _get_payout(payout_number, **filters):
    try:
        return Payout.objects.select_related('vendor').get(payout_number=payout_number, **filters)
    except Payout.DoesNotExist:
        raise NotFoundError('Payout not found')


def _parse_when(value, field):
    if not value:
        return None
    parsed = parse_datetime(str(value))
    if parsed is None:
        raise ValidationError(f'{field} must be an ISO datetime')
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


# ─────────────────────────────────────────────────────────────
# VENDOR
# ─────────────────────────────────────────────────────────────

@login_required
@require_POST
@api_view
def request_payout(request):
    vendor = _vendor_for(request.user)
    data = parse_request_data(request)

    default_start, default_end = services.default_period()
    start = _parse_when(data.get('start_date'), 'start_date') or default_start
    end = _parse_when(data.get('end_date'), 'end_date') or default_end

    details = data.get('bank_details') or data.get('mobile_details') or None
    payout = services.build_payout(vendor, start, end, method=data.get('method') or None, details=details)
    return json_success(_payout_payload(payout), message='Payout requested successfully', status=201)


@login_required
@require_GET
@api_view
def my_payouts(request):
    vendor = _vendor_for(request.user)
    payouts = Payout.objects.filter(vendor=vendor).select_related('vendor')
    if request.GET.get('status'):
        payouts = payouts.filter(status=request.GET['status'])
    return json_success(
        [_payout_payload(p) for p in payouts],
        available_balance=services.available_balance(vendor),
    )


@login_required
@require_GET
@api_view
def payout_detail(request, payout_number):
    user = request.user
    if user.is_marketplace_admin:
        payout = _get_payout(payout_number)
    else:
        payout = _get_payout(payout_number, vendor=_vendor_for(user))
    return json_success(_payout_payload(payout, with_transactions=True))


# ─────────────────────────────────────────────────────────────
# ADMIN
# ─────────────────────────────────────────────────────────────

@login_required
@require_GET
@api_view
def all_payouts(request):
    require_role(request.user, 'admin')
    payouts = Payout.objects.select_related('vendor')
    if request.GET.get('status'):
        payouts = payouts.filter(status=request.GET['status'])
    if request.GET.get('vendor_id'):
        payouts = payouts.filter(vendor_id=request.GET['vendor_id'])
    return json_success([_payout_payload(p) for p in payouts])


@login_required
@require_POST
@api_view
def process_payout(request, payout_number):
    require_role(request.user, 'admin')
    payout = _get_payout(payout_number)
    data = parse_request_data(request)
    action = data.get('action')
    if action not in ('approve', 'reject'):
        raise ValidationError("action must be 'approve' or 'reject'")

    payout = services.process_payout(
        payout,
        request.user,
        approve=action == 'approve',
        notes=data.get('notes', ''),
        gateway_transaction_id=data.get('gateway_transaction_id', ''),
    )
    return json_success(_payout_payload(payout), message=f'Payout {payout.status}')


@login_required
@require_POST
@api_view
def complete_payout(request, payout_number):
    require_role(request.user, 'admin')
    payout = _get_payout(payout_number)
    data = parse_request_data(request)
    payout = services.complete_payout(
        payout,
        gateway_transaction_id=data.get('gateway_transaction_id', ''),
        gateway_response=data.get('gateway_response'),
    )
    return json_success(_payout_payload(payout), message='Payout completed successfully')


@login_required
@require_POST
@api_view
def fail_payout(request, payout_number):
    require_role(request.user, 'admin')
    payout = _get_payout(payout_number)
    data = parse_request_data(request)
    payout = services.fail_payout(payout, data.get('reason', ''))
    return json_success(_payout_payload(payout), message='Payout marked as failed')


@login_required
@require_GET
@api_view
def payout_statistics(request):
    require_role(request.user, 'admin')
    return json_success(services.payout_statistics())
