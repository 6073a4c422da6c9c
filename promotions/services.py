# promotions/services.py
import logging

from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from core.exceptions import NotFoundError, ValidationError
from orders.models import Order
from . import engine
from .models import Coupon, CouponUsage

logger = logging.getLogger(__name__)


class _UsageLimitReached(Exception):
    pass


def normalize_code(code):
    return (code or '').strip().upper()


def get_coupon(code):
    code = normalize_code(code)
    if not code:
        raise ValidationError('Coupon code is required')
    try:
        return Coupon.objects.get(code=code)
    except Coupon.DoesNotExist:
        raise NotFoundError('Invalid coupon code')


def snapshot_coupon(coupon):
    return engine.CouponSnapshot(
        code=coupon.code,
        type=coupon.type,
        value=coupon.value,
        status=coupon.status,
        start_date=coupon.start_date,
        end_date=coupon.end_date,
        min_order_amount=coupon.min_order_amount,
        max_discount_amount=coupon.max_discount_amount,
        usage_limit=coupon.usage_limit,
        usage_count=coupon.usage_count,
        user_usage_limit=coupon.user_usage_limit,
        applicable_for=coupon.applicable_for,
        applicable_users=frozenset(coupon.applicable_users.values_list('pk', flat=True)),
        applicable_categories=frozenset(coupon.applicable_categories.values_list('pk', flat=True)),
        applicable_services=frozenset(coupon.applicable_services.values_list('pk', flat=True)),
        applicable_vendors=frozenset(coupon.applicable_vendors.values_list('pk', flat=True)),
        is_first_order_only=coupon.is_first_order_only,
    )


def check_coupon_for(user, code, amount, service=None, now=None, exclude_order=None):
    """
    Validate ``code`` for ``user`` against ``amount`` and return
    ``(coupon, discount_amount)``. Raises ValidationError with the reason.
    """
    coupon = get_coupon(code)
    now = now or timezone.now()

    prior_uses = CouponUsage.objects.filter(coupon=coupon, user=user).count()
    prior_orders = Order.objects.filter(user=user)
    if exclude_order is not None:
        prior_orders = prior_orders.exclude(pk=exclude_order.pk)

    snapshot = snapshot_coupon(coupon)
    check = engine.validate_coupon(
        snapshot,
        user.pk,
        now=now,
        prior_uses=prior_uses,
        prior_orders=prior_orders.count(),
        service_id=service.pk if service is not None else None,
        category_id=service.category_id if service is not None else None,
        vendor_id=service.vendor_id if service is not None else None,
    )
    if not check.ok:
        raise ValidationError(check.reason)

    discount = engine.calculate_discount(snapshot, amount)
    if discount == 0 and snapshot.type != engine.FREE_DELIVERY:
        raise ValidationError(f'Minimum order amount is {coupon.min_order_amount}')

    return coupon, discount


def redeem_coupon(order):
    """
    Consume one use of the order's coupon, at most once per order.

    The CouponUsage row is unique per order and the counter only moves while
    it is below the limit, so replays and racing orders cannot double count.
    Returns True when this call consumed the use.
    """
    if not order.coupon_id:
        return False

    try:
        with transaction.atomic():
            usage, created = CouponUsage.objects.get_or_create(
                order=order,
                defaults={
                    'coupon_id':       order.coupon_id,
                    'user_id':         order.user_id,
                    'discount_amount': order.coupon_discount_amount,
                },
            )
            if not created:
                return False

            consumed = Coupon.objects.filter(pk=order.coupon_id).filter(
                Q(usage_limit=0) | Q(usage_count__lt=F('usage_limit'))
            ).update(usage_count=F('usage_count') + 1)
            if not consumed:
                raise _UsageLimitReached()

            Coupon.objects.filter(
                pk=order.coupon_id,
                status=Coupon.STATUS_ACTIVE,
                usage_limit__gt=0,
                usage_count__gte=F('usage_limit'),
            ).update(status=Coupon.STATUS_USED_UP)
    except _UsageLimitReached:
        logger.warning(
            f"Coupon {order.coupon_code} usage limit already reached; "
            f"order {order.order_number} settles without consuming a use"
        )
        return False

    logger.info(f"Coupon {order.coupon_code} redeemed by order {order.order_number}")
    return True


def set_coupon_status(coupon, status):
    if status not in dict(Coupon.STATUSES):
        raise ValidationError(f'Unknown coupon status: {status}')
    Coupon.objects.filter(pk=coupon.pk).update(status=status, updated_at=timezone.now())
    coupon.refresh_from_db()
    logger.info(f"Coupon {coupon.code} set to {status}")
    return coupon


def available_coupons_for(user, now=None):
    """Active coupons inside their window that ``user`` may still apply."""
    now = now or timezone.now()
    coupons = Coupon.objects.filter(
        status=Coupon.STATUS_ACTIVE,
        start_date__lte=now,
        end_date__gte=now,
    ).order_by('-value')

    prior_orders = Order.objects.filter(user=user).count()
    available = []
    for coupon in coupons:
        check = engine.validate_coupon(
            snapshot_coupon(coupon),
            user.pk,
            now=now,
            prior_uses=CouponUsage.objects.filter(coupon=coupon, user=user).count(),
            prior_orders=prior_orders,
        )
        if check.ok:
            available.append(coupon)
    return available
