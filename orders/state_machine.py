# orders/state_machine.py
"""
Booking life-cycle.

Guards are pure predicates over a status value; who is asking is decided by
the views, never here.
"""

from decimal import Decimal
from typing import NamedTuple

from core.exceptions import StateConflictError
from core.utils import percent_of, quantize_money

PENDING = 'pending'
ACCEPTED = 'accepted'
REJECTED = 'rejected'
IN_PROGRESS = 'in_progress'
COMPLETED = 'completed'
CANCELLED = 'cancelled'

TRANSITIONS = {
    PENDING:     frozenset({ACCEPTED, REJECTED, CANCELLED}),
    ACCEPTED:    frozenset({IN_PROGRESS, CANCELLED}),
    IN_PROGRESS: frozenset({COMPLETED}),
    REJECTED:    frozenset(),
    COMPLETED:   frozenset(),
    CANCELLED:   frozenset(),
}

TERMINAL = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

CANCELLABLE = frozenset({PENDING, ACCEPTED})
RESCHEDULABLE = frozenset({PENDING, ACCEPTED})
PAYABLE = frozenset({ACCEPTED, IN_PROGRESS, COMPLETED})


def can_be_processed(status):
    """Accept / reject."""
    return status == PENDING


def can_be_started(status):
    return status == ACCEPTED


def can_be_completed(status):
    return status == IN_PROGRESS


def can_be_cancelled(status):
    return status in CANCELLABLE


def can_be_rescheduled(status):
    return status in RESCHEDULABLE


def can_accept_payment(status):
    return status in PAYABLE


def can_transition(current, target):
    return target in TRANSITIONS.get(current, frozenset())


def sources_for(target):
    """Every status from which ``target`` is reachable in one step."""
    return frozenset(s for s, targets in TRANSITIONS.items() if target in targets)


def assert_transition(current, target):
    if not can_transition(current, target):
        raise StateConflictError(
            f'Order cannot move from {current} to {target}',
            current_status=current,
        )


class OrderPricing(NamedTuple):
    service_price: Decimal
    discount: Decimal
    discount_amount: Decimal
    subtotal: Decimal
    tax: Decimal
    platform_fee: Decimal
    total_amount: Decimal


def calculate_pricing(service_price, service_discount=Decimal('0'), coupon_discount=Decimal('0'),
                      *, tax_rate=Decimal('0'), platform_fee_rate=Decimal('0')):
    """
    Price a booking.

    ``discount_amount`` is the vendor's percentage markdown plus the coupon
    discount; ``subtotal = service_price - discount_amount`` and
    ``total_amount = subtotal + tax + platform_fee`` hold exactly.
    """
    service_price = quantize_money(service_price)
    markdown = percent_of(service_price, service_discount)
    discount_amount = min(markdown + quantize_money(coupon_discount), service_price)
    subtotal = service_price - discount_amount
    tax = percent_of(subtotal, tax_rate)
    platform_fee = percent_of(subtotal, platform_fee_rate)
    return OrderPricing(
        service_price=service_price,
        discount=Decimal(service_discount),
        discount_amount=discount_amount,
        subtotal=subtotal,
        tax=tax,
        platform_fee=platform_fee,
        total_amount=subtotal + tax + platform_fee,
    )
