# promotions/views.py
from django.contrib.auth.decorators import login_required
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST

from catalog.models import Service
from core.utils import parse_amount, parse_request_data
from core.views import api_view, json_success, require_role
from .models import Coupon
from .services import available_coupons_for, check_coupon_for, normalize_code, set_coupon_status


def _coupon_payload(coupon):
    return {
        'code':                coupon.code,
        'name':                coupon.name,
        'description':         coupon.description,
        'type':                coupon.type,
        'value':               coupon.value,
        'min_order_amount':    coupon.min_order_amount,
        'max_discount_amount': coupon.max_discount_amount,
        'start_date':          coupon.start_date,
        'end_date':            coupon.end_date,
        'status':              coupon.status,
    }


@login_required
@require_POST
@api_view
def validate_coupon(request):
    """Preview the discount a coupon would give on an amount."""
    data   = parse_request_data(request)
    amount = parse_amount(data.get('order_amount'), 'order_amount')

    service = None
    if data.get('service_id'):
        service = get_object_or_404(Service, pk=data['service_id'])

    coupon, discount = check_coupon_for(request.user, data.get('code'), amount, service=service)

    return json_success({
        'code':            coupon.code,
        'name':            coupon.name,
        'type':            coupon.type,
        'value':           coupon.value,
        'discount_amount': discount,
        'final_amount':    amount - discount,
    }, message='Coupon is valid')


@login_required
@require_GET
@api_view
def available_coupons(request):
    coupons = available_coupons_for(request.user)
    return json_success([_coupon_payload(c) for c in coupons])


@login_required
@require_POST
@api_view
def toggle_coupon(request, code):
    require_role(request.user, 'admin')
    coupon = get_object_or_404(Coupon, code=normalize_code(code))
    new_status = Coupon.STATUS_INACTIVE if coupon.status == Coupon.STATUS_ACTIVE else Coupon.STATUS_ACTIVE
    coupon = set_coupon_status(coupon, new_status)
    return json_success(_coupon_payload(coupon), message=f'Coupon {coupon.code} is now {coupon.status}')
