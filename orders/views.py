# orders/views.py
import logging
from datetime import datetime

from django.contrib.auth.decorators import login_required
from django.shortcuts import get_object_or_404
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime
from django.views.decorators.http import require_GET, require_POST

from catalog.models import Service
from core.exceptions import NotFoundError, PermissionDenied, ValidationError
from core.utils import parse_request_data
from core.views import api_view, json_success, require_role
from vendors.models import Vendor
from . import services
from .models import Order

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────────────────────

def _order_payload(order, with_history=False):
    payload = {
        'order_number':           order.order_number,
        'status':                 order.status,
        'payment_status':         order.payment_status,
        'service':                {'id': order.service_id, 'name': order.service.name},
        'vendor':                 {'id': order.vendor_id, 'business_name': order.vendor.business_name},
        'scheduled_date':         order.scheduled_date,
        'scheduled_time':         order.scheduled_time,
        'duration':               order.duration,
        'currency':               order.currency,
        'service_price':          order.service_price,
        'discount':               order.discount,
        'discount_amount':        order.discount_amount,
        'coupon_code':            order.coupon_code,
        'coupon_discount_amount': order.coupon_discount_amount,
        'subtotal':               order.subtotal,
        'tax':                    order.tax,
        'platform_fee':           order.platform_fee,
        'total_amount':           order.total_amount,
        'customer': {
            'name':  order.customer_name,
            'phone': order.customer_phone,
            'email': order.customer_email,
        },
        'address': {
            'street':   order.address_street,
            'city':     order.address_city,
            'state':    order.address_state,
            'zip_code': order.address_zip_code,
            'country':  order.address_country,
        },
        'notes':                order.notes,
        'special_requirements': order.special_requirements,
        'rejection_reason':     order.rejection_reason,
        'cancelled_by':         order.cancelled_by,
        'cancellation_reason':  order.cancellation_reason,
        'rescheduled_from_date': order.rescheduled_from_date,
        'rescheduled_from_time': order.rescheduled_from_time,
        'paid_at':              order.paid_at,
        'created_at':           order.created_at,
    }
    if with_history:
        payload['status_history'] = [
            {
                'from_status': h.from_status,
                'to_status':   h.to_status,
                'notes':       h.notes,
                'created_at':  h.created_at,
            }
            for h in order.status_history.all()
        ]
    return payload


def _parse_schedule(data):
    raw = str(data.get('scheduled_date') or '')
    scheduled = parse_datetime(raw)
    if scheduled is None:
        day = parse_date(raw)
        if day is None:
            raise ValidationError('scheduled_date must be an ISO date or datetime')
        scheduled = datetime(day.year, day.month, day.day)
    if timezone.is_naive(scheduled):
        scheduled = timezone.make_aware(scheduled)
    return scheduled, (data.get('scheduled_time') or '').strip()


def _vendor_for(user):
    require_role(user, 'vendor')
    try:
        return user.vendor_profile
    except Vendor.DoesNotExist:
        raise NotFoundError('Vendor profile not found')


def _get_order(order_number, **filters):
    try:
        return Order.objects.select_related('service', 'vendor').get(order_number=order_number, **filters)
    except Order.DoesNotExist:
        raise NotFoundError('Order not found')


def _filtered(orders, params):
    if params.get('status'):
        orders = orders.filter(status=params['status'])
    if params.get('payment_status'):
        orders = orders.filter(payment_status=params['payment_status'])
    return orders


# ─────────────────────────────────────────────────────────────
# CUSTOMER
# ─────────────────────────────────────────────────────────────

@login_required
@require_POST
@api_view
def create_order(request):
    data = parse_request_data(request)
    service = get_object_or_404(Service.objects.select_related('vendor'), pk=data.get('service_id'))
    scheduled_date, scheduled_time = _parse_schedule(data)

    order = services.create_order(
        request.user,
        service,
        scheduled_date=scheduled_date,
        scheduled_time=scheduled_time,
        address=data.get('address') or {},
        notes=data.get('notes', ''),
        special_requirements=data.get('special_requirements', ''),
        coupon_code=data.get('coupon_code') or None,
    )
    return json_success(_order_payload(order), message='Order placed successfully', status=201)


@login_required
@require_GET
@api_view
def my_orders(request):
    orders = _filtered(
        Order.objects.filter(user=request.user).select_related('service', 'vendor'), request.GET
    )
    return json_success([_order_payload(o) for o in orders])


@login_required
@require_GET
@api_view
def order_detail(request, order_number):
    order = _get_order(order_number)
    user = request.user
    is_vendor_of_order = user.is_vendor and order.vendor.user_id == user.pk
    if order.user_id != user.pk and not is_vendor_of_order and not user.is_marketplace_admin:
        raise PermissionDenied('Not authorized to view this order')
    return json_success(_order_payload(order, with_history=True))


@login_required
@require_POST
@api_view
def cancel_my_order(request, order_number):
    order = _get_order(order_number, user=request.user)
    data = parse_request_data(request)
    order = services.cancel_order(order, request.user, 'user', data.get('reason', ''))
    return json_success(_order_payload(order), message='Order cancelled successfully')


@login_required
@require_POST
@api_view
def reschedule_order(request, order_number):
    user = request.user
    if user.is_vendor:
        order = _get_order(order_number, vendor=_vendor_for(user))
        role = 'vendor'
    else:
        order = _get_order(order_number, user=user)
        role = 'user'

    data = parse_request_data(request)
    scheduled_date, scheduled_time = _parse_schedule(data)
    order = services.reschedule_order(
        order, user, role,
        scheduled_date=scheduled_date,
        scheduled_time=scheduled_time,
        reason=data.get('reason', ''),
    )
    return json_success(_order_payload(order), message='Order rescheduled successfully')


@login_required
@require_POST
@api_view
def apply_coupon(request, order_number):
    order = _get_order(order_number, user=request.user)
    data = parse_request_data(request)
    order = services.apply_coupon(order, request.user, data.get('code'))
    return json_success(_order_payload(order), message='Coupon applied')


# ─────────────────────────────────────────────────────────────
# VENDOR
# ─────────────────────────────────────────────────────────────

@login_required
@require_GET
@api_view
def vendor_orders(request):
    vendor = _vendor_for(request.user)
    orders = _filtered(
        Order.objects.filter(vendor=vendor).select_related('service', 'vendor'), request.GET
    )
    return json_success([_order_payload(o) for o in orders])


def _vendor_action(request, order_number):
    vendor = _vendor_for(request.user)
    if not vendor.is_active:
        raise PermissionDenied('Your vendor account is deactivated')
    return _get_order(order_number, vendor=vendor), parse_request_data(request)


@login_required
@require_POST
@api_view
def accept_order(request, order_number):
    order, data = _vendor_action(request, order_number)
    order = services.accept_order(order, request.user, data.get('notes', ''))
    return json_success(_order_payload(order), message='Order accepted')


@login_required
@require_POST
@api_view
def reject_order(request, order_number):
    order, data = _vendor_action(request, order_number)
    order = services.reject_order(order, data.get('reason', ''), request.user)
    return json_success(_order_payload(order), message='Order rejected')


@login_required
@require_POST
@api_view
def start_order(request, order_number):
    order, _ = _vendor_action(request, order_number)
    order = services.start_order(order, request.user)
    return json_success(_order_payload(order), message='Service started')


@login_required
@require_POST
@api_view
def complete_order(request, order_number):
    order, data = _vendor_action(request, order_number)
    order = services.complete_order(order, request.user, data.get('notes', ''))
    return json_success(_order_payload(order), message='Order completed')


@login_required
@require_POST
@api_view
def vendor_cancel_order(request, order_number):
    order, data = _vendor_action(request, order_number)
    order = services.cancel_order(order, request.user, 'vendor', data.get('reason', ''))
    return json_success(_order_payload(order), message='Order cancelled successfully')


# ─────────────────────────────────────────────────────────────
# ADMIN
# ─────────────────────────────────────────────────────────────

@login_required
@require_GET
@api_view
def admin_orders(request):
    require_role(request.user, 'admin')
    orders = _filtered(Order.objects.select_related('service', 'vendor'), request.GET)
    if request.GET.get('vendor_id'):
        orders = orders.filter(vendor_id=request.GET['vendor_id'])
    if request.GET.get('user_id'):
        orders = orders.filter(user_id=request.GET['user_id'])
    return json_success([_order_payload(o) for o in orders])


@login_required
@require_POST
@api_view
def admin_cancel_order(request, order_number):
    require_role(request.user, 'admin')
    order = _get_order(order_number)
    data = parse_request_data(request)
    order = services.cancel_order(order, request.user, 'admin', data.get('reason', ''))
    return json_success(_order_payload(order), message='Order cancelled successfully')


@login_required
@require_GET
@api_view
def order_statistics(request):
    require_role(request.user, 'admin')
    vendor = None
    if request.GET.get('vendor_id'):
        vendor = get_object_or_404(Vendor, pk=request.GET['vendor_id'])
    return json_success(services.order_statistics(vendor=vendor))
