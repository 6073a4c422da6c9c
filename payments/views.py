# payments/views.py
import logging
from datetime import timedelta

import stripe
from django.conf import settings
from django.contrib.auth.decorators import login_required
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from core.exceptions import NotFoundError, StateConflictError, ValidationError
from core.utils import parse_amount, parse_request_data
from core.views import api_view, json_error, json_success, require_role
from orders.models import Order
from vendors.models import Vendor
from . import services
from .gateways import SSLCommerzGateway
from .models import Transaction

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────────────────────

def _transaction_payload(txn):
    return {
        'transaction_number': txn.transaction_number,
        'order_number':       txn.order.order_number,
        'type':               txn.type,
        'amount':             txn.amount,
        'currency':           txn.currency,
        'commission_rate':    txn.commission_rate,
        'commission_amount':  txn.commission_amount,
        'vendor_amount':      txn.vendor_amount,
        'payment_method':     txn.payment_method,
        'status':             txn.status,
        'refund_amount':      txn.refund_amount,
        'failure_reason':     txn.failure_reason,
        'paid_out_at':        txn.paid_out_at,
        'completed_at':       txn.completed_at,
        'created_at':         txn.created_at,
    }


def _get_transaction(transaction_number):
    try:
        return Transaction.objects.select_related('order').get(transaction_number=transaction_number)
    except Transaction.DoesNotExist:
        raise NotFoundError('Transaction not found')


def _is_true(value):
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


# ─────────────────────────────────────────────────────────────
# CHECKOUT
# ─────────────────────────────────────────────────────────────

@login_required
@require_POST
@api_view
def initiate_payment(request):
    data = parse_request_data(request)
    try:
        order = Order.objects.select_related('vendor', 'service').get(order_number=data.get('order_number'))
    except Order.DoesNotExist:
        raise NotFoundError('Order not found')

    txn, payload = services.initiate_payment(order, request.user, data.get('payment_method', ''))
    return json_success(
        {'transaction': _transaction_payload(txn), 'gateway': payload},
        message='Payment initiated successfully',
        status=201,
    )


@login_required
@require_POST
@api_view
def razorpay_verify(request):
    data = parse_request_data(request)
    txn = services.confirm_payment('razorpay', data.get('razorpay_order_id'), {
        'payment_id': data.get('razorpay_payment_id', ''),
        'signature':  data.get('razorpay_signature', ''),
    })
    return json_success(_transaction_payload(txn), message='Payment verified')


@login_required
@require_GET
@api_view
def paypal_execute(request):
    if _is_true(request.GET.get('cancelled')):
        txn = _get_transaction(request.GET.get('transaction', ''))
        if txn.user_id != request.user.pk:
            raise NotFoundError('Transaction not found')
        txn = services.fail_payment(txn, 'Customer cancelled at PayPal', status=Transaction.STATUS_CANCELLED)
        return json_success(_transaction_payload(txn), message='Payment cancelled')

    txn = services.confirm_payment('paypal', request.GET.get('paymentId'), request.GET.get('PayerID'))
    return json_success(_transaction_payload(txn), message='Payment completed')


# ─────────────────────────────────────────────────────────────
# WEBHOOKS
# ─────────────────────────────────────────────────────────────

@csrf_exempt
@require_POST
@api_view
def stripe_webhook(request):
    try:
        event = stripe.Webhook.construct_event(
            request.body,
            request.META.get('HTTP_STRIPE_SIGNATURE', ''),
            getattr(settings, 'STRIPE_WEBHOOK_SECRET', ''),
        )
    except ValueError:
        return json_error('Invalid payload', status=400)
    except stripe.SignatureVerificationError:
        logger.warning("Stripe webhook rejected: bad signature")
        return json_error('Invalid signature', status=400)

    intent = event['data']['object']
    event_type = event['type']
    logger.info(f"Stripe webhook {event_type} for {intent.get('id')}")

    try:
        if event_type == 'payment_intent.succeeded':
            services.confirm_payment('stripe', intent['id'])
        elif event_type in ('payment_intent.payment_failed', 'payment_intent.canceled'):
            txn = services.find_transaction('stripe', intent['id'])
            error = intent.get('last_payment_error') or {}
            services.fail_payment(
                txn,
                error.get('message') or f'Stripe reported {event_type}',
                raw={'id': intent['id'], 'status': intent.get('status')},
                status=(Transaction.STATUS_CANCELLED if event_type == 'payment_intent.canceled'
                        else Transaction.STATUS_FAILED),
            )
    except StateConflictError as e:
        # the payment already moved on; acknowledge so Stripe stops retrying
        logger.info(f"Stripe webhook {event_type} ignored: {e.message}")
    except NotFoundError:
        logger.warning(f"Stripe webhook {event_type} for unknown intent {intent.get('id')} ignored")

    return json_success(message='Webhook processed')


@csrf_exempt
@require_POST
@api_view
def sslcommerz_ipn(request):
    data = request.POST.dict()
    tran_id = data.get('tran_id', '')
    status = (data.get('status') or '').upper()
    logger.info(f"SSLCommerz IPN for {tran_id}: {status}")

    if status in SSLCommerzGateway.FAILED_STATES:
        try:
            txn = services.confirm_failure(
                'sslcommerz', tran_id, data.get('error') or f'SSLCommerz reported {status}', raw=data,
            )
        except StateConflictError as e:
            logger.info(f"SSLCommerz IPN for {tran_id} ignored: {e.message}")
            return json_success(message='IPN processed')
        return json_success(_transaction_payload(txn), message='IPN processed')

    txn = services.confirm_payment('sslcommerz', tran_id, data.get('val_id'))
    return json_success(_transaction_payload(txn), message='IPN processed')


# ─────────────────────────────────────────────────────────────
# ADMIN
# ─────────────────────────────────────────────────────────────

@login_required
@require_POST
@api_view
def refund_transaction(request, transaction_number):
    require_role(request.user, 'admin')
    txn = _get_transaction(transaction_number)
    data = parse_request_data(request)
    amount = data.get('amount')
    amount = parse_amount(amount, 'amount') if amount not in (None, '') else None

    refund = services.refund(txn, amount, reason=data.get('reason', ''), refunded_by=request.user)
    return json_success(
        {'transaction': _transaction_payload(txn), 'refund': _transaction_payload(refund)},
        message='Refund processed successfully',
    )


@login_required
@require_POST
@api_view
def verify_payment(request, transaction_number):
    require_role(request.user, 'admin')
    txn = _get_transaction(transaction_number)
    data = parse_request_data(request)
    if 'approve' not in data:
        raise ValidationError('approve is required')

    txn = services.verify_manual_payment(
        txn,
        request.user,
        _is_true(data['approve']),
        notes=data.get('notes', ''),
        reference_number=data.get('reference_number', ''),
    )
    return json_success(_transaction_payload(txn), message=f'Payment {txn.status}')


@login_required
@require_GET
@api_view
def revenue_statistics(request):
    require_role(request.user, 'admin')
    end = parse_datetime(request.GET.get('end_date', '')) or timezone.now()
    start = parse_datetime(request.GET.get('start_date', '')) or end - timedelta(days=30)
    return json_success(services.revenue_statistics(start, end))


# ─────────────────────────────────────────────────────────────
# HISTORY
# ─────────────────────────────────────────────────────────────

@login_required
@require_GET
@api_view
def my_transactions(request):
    txns = Transaction.objects.filter(user=request.user).select_related('order')
    if request.GET.get('status'):
        txns = txns.filter(status=request.GET['status'])
    return json_success([_transaction_payload(t) for t in txns])


@login_required
@require_GET
@api_view
def vendor_transactions(request):
    require_role(request.user, 'vendor')
    try:
        vendor = request.user.vendor_profile
    except Vendor.DoesNotExist:
        raise NotFoundError('Vendor profile not found')

    txns = Transaction.objects.filter(vendor=vendor).select_related('order')
    if request.GET.get('status'):
        txns = txns.filter(status=request.GET['status'])

    end = timezone.now()
    return json_success(
        [_transaction_payload(t) for t in txns],
        statistics=services.revenue_statistics(end - timedelta(days=30), end, vendor=vendor),
    )
