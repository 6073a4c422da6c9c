# promotions/engine.py
"""
Coupon eligibility and pricing.

Everything here is a pure function of a CouponSnapshot plus explicit context
(``now``, the user's prior usage counts, the booked service). Nothing touches
the database, so the rules can be exercised without persistence.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import FrozenSet, NamedTuple, Optional

from core.utils import quantize_money

PERCENTAGE = 'percentage'
FIXED = 'fixed'
FREE_DELIVERY = 'free_delivery'

ACTIVE = 'active'


@dataclass(frozen=True)
class CouponSnapshot:
    code: str
    type: str
    value: Decimal
    status: str
    start_date: datetime
    end_date: datetime
    min_order_amount: Decimal = Decimal('0.00')
    max_discount_amount: Optional[Decimal] = None
    usage_limit: int = 0
    usage_count: int = 0
    user_usage_limit: int = 1
    applicable_for: str = 'all'
    applicable_users: FrozenSet[int] = field(default_factory=frozenset)
    applicable_categories: FrozenSet[int] = field(default_factory=frozenset)
    applicable_services: FrozenSet[int] = field(default_factory=frozenset)
    applicable_vendors: FrozenSet[int] = field(default_factory=frozenset)
    is_first_order_only: bool = False


class CouponCheck(NamedTuple):
    ok: bool
    reason: str = ''


OK = CouponCheck(True)


def is_usable(coupon, now):
    """Status, validity window and global usage limit."""
    if coupon.status != ACTIVE:
        return CouponCheck(False, 'This coupon is not active')
    if now < coupon.start_date:
        return CouponCheck(False, 'This coupon is not yet active')
    if now > coupon.end_date:
        return CouponCheck(False, 'This coupon has expired')
    if coupon.usage_limit > 0 and coupon.usage_count >= coupon.usage_limit:
        return CouponCheck(False, 'This coupon has reached its usage limit')
    return OK


def validate_coupon(coupon, user_id, *, now, prior_uses, prior_orders,
                    service_id=None, category_id=None, vendor_id=None):
    """
    Decide whether ``user_id`` may apply ``coupon`` right now.

    ``prior_uses`` is how many times this user already redeemed the code,
    ``prior_orders`` how many bookings the user made before this one.
    Scope checks against service/category/vendor are only applied when the
    caller knows what is being booked.
    """
    check = is_usable(coupon, now)
    if not check.ok:
        return check

    if coupon.applicable_for == 'specific_users' and user_id not in coupon.applicable_users:
        return CouponCheck(False, 'This coupon is not available for your account')

    if prior_uses >= coupon.user_usage_limit:
        return CouponCheck(False, 'You have already used this coupon the maximum number of times')

    if coupon.is_first_order_only and prior_orders > 0:
        return CouponCheck(False, 'This coupon is only valid on your first booking')

    if (coupon.applicable_for == 'specific_services' and service_id is not None
            and service_id not in coupon.applicable_services):
        return CouponCheck(False, 'Coupon not applicable for this service')

    if (coupon.applicable_for == 'specific_categories' and service_id is not None
            and category_id not in coupon.applicable_categories):
        return CouponCheck(False, 'Coupon not applicable for this category')

    if vendor_id is not None and coupon.applicable_vendors and vendor_id not in coupon.applicable_vendors:
        return CouponCheck(False, 'Coupon not applicable for this vendor')

    return OK


def calculate_discount(coupon, order_amount):
    """
    Discount for ``order_amount``, never more than the amount itself nor
    ``max_discount_amount``. Free-delivery coupons do not reduce the price.
    """
    order_amount = Decimal(order_amount)
    if order_amount < coupon.min_order_amount:
        return Decimal('0.00')

    if coupon.type == PERCENTAGE:
        discount = order_amount * Decimal(coupon.value) / Decimal('100')
    elif coupon.type == FIXED:
        discount = Decimal(coupon.value)
    else:
        discount = Decimal('0')

    if coupon.max_discount_amount is not None and discount > coupon.max_discount_amount:
        discount = Decimal(coupon.max_discount_amount)

    if discount > order_amount:
        discount = order_amount

    return quantize_money(discount)
