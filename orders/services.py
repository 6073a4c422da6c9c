# orders/services.py
import logging
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from django.db.models import Avg, Count, F, Sum
from django.utils import timezone

from core.exceptions import PermissionDenied, StateConflictError, ValidationError
from core.utils import percent_of, quantize_money, save_with_unique_number
from promotions.services import check_coupon_for, redeem_coupon
from . import state_machine
from .models import Order, OrderStatusHistory, generate_order_number
from .signals import order_created, order_status_changed

logger = logging.getLogger(__name__)

REQUIRED_ADDRESS_FIELDS = ('street', 'city', 'country')

TRANSITION_TIMESTAMPS = {
    state_machine.ACCEPTED:    'accepted_at',
    state_machine.REJECTED:    'rejected_at',
    state_machine.IN_PROGRESS: 'started_at',
    state_machine.COMPLETED:   'completed_at',
    state_machine.CANCELLED:   'cancelled_at',
}


# ─────────────────────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────────────────────

def _rates():
    return {
        'tax_rate':          Decimal(str(getattr(settings, 'ORDER_TAX_RATE', 0))),
        'platform_fee_rate': Decimal(str(getattr(settings, 'PLATFORM_FEE_RATE', 5))),
    }


def _current_status(order):
    return Order.objects.filter(pk=order.pk).values_list('status', flat=True).first()


def _conflict(order, action):
    current = _current_status(order)
    return StateConflictError(
        f'Order {order.order_number} cannot be {action}. Current status: {current}',
        current_status=current,
    )


def _validate_schedule(scheduled_date, scheduled_time, now):
    if scheduled_date is None or not scheduled_time:
        raise ValidationError('Scheduled date and time are required')
    if scheduled_date <= now:
        raise ValidationError('Scheduled date must be in the future')


def _validate_address(address):
    address = address or {}
    missing = [f for f in REQUIRED_ADDRESS_FIELDS if not str(address.get(f) or '').strip()]
    if missing:
        raise ValidationError(f"Complete address is required (missing: {', '.join(missing)})")
    return address


def _record_history(order, from_status, to_status, changed_by=None, notes=''):
    return OrderStatusHistory.objects.create(
        order=order,
        from_status=from_status,
        to_status=to_status,
        changed_by=changed_by if changed_by is not None and changed_by.is_authenticated else None,
        notes=notes,
    )


def _transition(order, target, action, changed_by=None, notes='', **fields):
    """
    Move ``order`` to ``target`` with a compare-and-set on the status it was
    read in. Zero rows means someone else moved it first.
    """
    now = timezone.now()
    with transaction.atomic():
        current = _current_status(order)
        if current is None or not state_machine.can_transition(current, target):
            raise _conflict(order, action)

        stamp = TRANSITION_TIMESTAMPS.get(target)
        if stamp:
            fields[stamp] = now

        updated = Order.objects.filter(pk=order.pk, status=current).update(
            status=target, updated_at=now, **fields
        )
        if not updated:
            raise _conflict(order, action)

        _record_history(order, current, target, changed_by, notes)

        order.refresh_from_db()
        transaction.on_commit(lambda: order_status_changed.send(
            sender=Order, order=order, from_status=current, to_status=target, changed_by=changed_by,
        ))

    logger.info(f"Order {order.order_number}: {current} -> {target}")
    return order


# ─────────────────────────────────────────────────────────────
# BOOKING
# ─────────────────────────────────────────────────────────────

def create_order(user, service, *, scheduled_date, scheduled_time, address,
                 notes='', special_requirements='', coupon_code=None, now=None):
    """
    Book ``service`` for ``user``. The order always starts pending; a coupon
    is only priced in here, its usage is consumed once the order settles.
    """
    now = now or timezone.now()

    if not service.is_bookable:
        raise ValidationError('Service is not available for booking')
    vendor = service.vendor
    if not vendor.accepts_bookings:
        raise ValidationError('Vendor is not accepting bookings')

    _validate_schedule(scheduled_date, scheduled_time, now)
    address = _validate_address(address)

    coupon, coupon_discount = None, Decimal('0.00')
    if coupon_code:
        discounted_price = service.price - percent_of(service.price, service.discount)
        coupon, coupon_discount = check_coupon_for(user, coupon_code, discounted_price, service=service, now=now)

    pricing = state_machine.calculate_pricing(
        service.price, service.discount, coupon_discount, **_rates()
    )

    order = Order(
        user=user,
        vendor=vendor,
        service=service,
        scheduled_date=scheduled_date,
        scheduled_time=scheduled_time,
        duration=service.duration,
        currency=getattr(settings, 'CURRENCY', 'USD'),
        service_price=pricing.service_price,
        discount=pricing.discount,
        discount_amount=pricing.discount_amount,
        subtotal=pricing.subtotal,
        tax=pricing.tax,
        platform_fee=pricing.platform_fee,
        total_amount=pricing.total_amount,
        coupon=coupon,
        coupon_code=coupon.code if coupon else '',
        coupon_discount_amount=coupon_discount,
        status=state_machine.PENDING,
        customer_name=user.get_full_name() or user.username,
        customer_phone=getattr(user, 'phone', '') or '',
        customer_email=user.email,
        address_street=address['street'],
        address_city=address['city'],
        address_state=address.get('state') or '',
        address_zip_code=address.get('zip_code') or '',
        address_country=address['country'],
        latitude=address.get('latitude'),
        longitude=address.get('longitude'),
        notes=notes or '',
        special_requirements=special_requirements or '',
    )

    with transaction.atomic():
        save_with_unique_number(order, 'order_number', generate_order_number)
        _record_history(order, '', state_machine.PENDING, user, 'Order placed')
        transaction.on_commit(lambda: order_created.send(sender=Order, order=order))

    logger.info(
        f"Order {order.order_number} created by user {user.pk} for service {service.pk} "
        f"total={order.total_amount} coupon={order.coupon_code or '-'}"
    )
    return order


def apply_coupon(order, user, code):
    """Attach a coupon to a pending order that has none yet and re-price it."""
    if order.user_id != user.pk:
        raise PermissionDenied('Not authorized to modify this order')
    if order.coupon_id:
        raise ValidationError('A coupon has already been applied to this order')
    if not state_machine.can_be_processed(order.status):
        raise _conflict(order, 'discounted')

    discounted_price = order.service_price - percent_of(order.service_price, order.discount)
    coupon, coupon_discount = check_coupon_for(
        user, code, discounted_price, service=order.service, exclude_order=order
    )
    pricing = state_machine.calculate_pricing(
        order.service_price, order.discount, coupon_discount, **_rates()
    )

    updated = Order.objects.filter(
        pk=order.pk, status=state_machine.PENDING, coupon__isnull=True,
    ).update(
        coupon=coupon,
        coupon_code=coupon.code,
        coupon_discount_amount=coupon_discount,
        discount_amount=pricing.discount_amount,
        subtotal=pricing.subtotal,
        tax=pricing.tax,
        platform_fee=pricing.platform_fee,
        total_amount=pricing.total_amount,
        updated_at=timezone.now(),
    )
    if not updated:
        raise _conflict(order, 'discounted')

    order.refresh_from_db()
    logger.info(f"Coupon {coupon.code} applied to order {order.order_number}: -{coupon_discount}")
    return order


# ─────────────────────────────────────────────────────────────
# LIFE-CYCLE
# ─────────────────────────────────────────────────────────────

def accept_order(order, changed_by=None, notes=''):
    extra = {'vendor_notes': notes} if notes else {}
    return _transition(order, state_machine.ACCEPTED, 'accepted', changed_by, notes or 'Accepted by vendor', **extra)


def reject_order(order, reason, changed_by=None):
    if not (reason or '').strip():
        raise ValidationError('Rejection reason is required')
    return _transition(order, state_machine.REJECTED, 'rejected', changed_by, reason, rejection_reason=reason)


def start_order(order, changed_by=None):
    return _transition(order, state_machine.IN_PROGRESS, 'started', changed_by, 'Service started')


def complete_order(order, changed_by=None, notes=''):
    order = _transition(order, state_machine.COMPLETED, 'completed', changed_by, notes or 'Service completed')
    redeem_coupon(order)
    return order


def cancel_order(order, actor, role, reason):
    """``role`` is who cancels: user, vendor or admin."""
    if role not in dict(Order.ACTORS):
        raise ValidationError(f'Unknown cancelling party: {role}')
    if not (reason or '').strip():
        raise ValidationError('Cancellation reason is required')
    return _transition(
        order, state_machine.CANCELLED, 'cancelled', actor, reason,
        cancelled_by=role, cancellation_reason=reason,
    )


def reschedule_order(order, actor, role, *, scheduled_date, scheduled_time, reason='', now=None):
    """Move the booking slot; the previous slot is kept in the audit fields."""
    now = now or timezone.now()
    if role not in ('user', 'vendor'):
        raise ValidationError(f'Unknown rescheduling party: {role}')
    _validate_schedule(scheduled_date, scheduled_time, now)

    with transaction.atomic():
        updated = Order.objects.filter(
            pk=order.pk, status__in=state_machine.RESCHEDULABLE,
        ).update(
            rescheduled_from_date=F('scheduled_date'),
            rescheduled_from_time=F('scheduled_time'),
            scheduled_date=scheduled_date,
            scheduled_time=scheduled_time,
            rescheduled_at=now,
            rescheduled_by=role,
            updated_at=now,
        )
        if not updated:
            raise _conflict(order, 'rescheduled')

        order.refresh_from_db()
        _record_history(
            order, order.status, order.status, actor,
            f"Rescheduled from {order.rescheduled_from_date:%Y-%m-%d} {order.rescheduled_from_time}"
            + (f": {reason}" if reason else ''),
        )

    logger.info(f"Order {order.order_number} rescheduled by {role} to {scheduled_date:%Y-%m-%d} {scheduled_time}")
    return order


# ─────────────────────────────────────────────────────────────
# REPORTING
# ─────────────────────────────────────────────────────────────

def order_statistics(vendor=None, user=None, start=None, end=None):
    orders = Order.objects.all()
    if vendor is not None:
        orders = orders.filter(vendor=vendor)
    if user is not None:
        orders = orders.filter(user=user)
    if start is not None:
        orders = orders.filter(created_at__gte=start)
    if end is not None:
        orders = orders.filter(created_at__lte=end)

    by_status = {
        row['status']: {
            'count':              row['count'],
            'total_amount':       quantize_money(row['total_amount'] or 0),
            'total_platform_fee': quantize_money(row['total_platform_fee'] or 0),
        }
        for row in orders.values('status').annotate(
            count=Count('id'),
            total_amount=Sum('total_amount'),
            total_platform_fee=Sum('platform_fee'),
        ).order_by('status')
    }

    overall = orders.aggregate(
        total_orders=Count('id'),
        total_revenue=Sum('total_amount'),
        total_platform_fee=Sum('platform_fee'),
        average_order_value=Avg('total_amount'),
    )
    return {
        'by_status':           by_status,
        'total_orders':        overall['total_orders'],
        'total_revenue':       quantize_money(overall['total_revenue'] or 0),
        'total_platform_fee':  quantize_money(overall['total_platform_fee'] or 0),
        'average_order_value': quantize_money(overall['average_order_value'] or 0),
    }
