# core/utils.py
import json
import logging
import random
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from django.db import IntegrityError, transaction
from django.utils import timezone

from .exceptions import DuplicateError, ValidationError

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
HUNDRED = Decimal('100')


# ─────────────────────────────────────────────────────────────
# MONEY
# ─────────────────────────────────────────────────────────────

def quantize_money(value):
    """Round to the currency's minor unit (2 places, half-up)."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount, rate):
    return quantize_money(Decimal(amount) * Decimal(rate) / HUNDRED)


def safe_decimal(value, default='0.00'):
    """Safely convert a value to Decimal."""
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal(default)


def parse_amount(value, field='amount'):
    """Strict variant of safe_decimal for user input: rejects junk and negatives."""
    if value in (None, ''):
        raise ValidationError(f'{field} is required')
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f'{field} must be a number')
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f'{field} must be a non-negative number')
    return quantize_money(amount)


# ─────────────────────────────────────────────────────────────
# NUMBERING
# ─────────────────────────────────────────────────────────────

def generate_dated_number(prefix, now=None):
    """``<PREFIX>-YYYYMMDD-NNNNNN`` with a zero-padded random suffix."""
    now = now or timezone.now()
    return f"{prefix}-{now.strftime('%Y%m%d')}-{random.randint(0, 999999):06d}"


def save_with_unique_number(instance, field_name, generator, attempts=2):
    """
    Insert ``instance`` with a generated unique identifier.

    A collision on the unique column is retried with a fresh number; once the
    attempts are exhausted the collision surfaces as DuplicateError.
    """
    for attempt in range(1, attempts + 1):
        if attempt > 1 or not getattr(instance, field_name):
            setattr(instance, field_name, generator())
        try:
            with transaction.atomic():
                instance.save(force_insert=True)
            return instance
        except IntegrityError as e:
            logger.warning(
                f"{type(instance).__name__} {field_name} collision on "
                f"{getattr(instance, field_name)} (attempt {attempt}): {e}"
            )
    raise DuplicateError(f'Could not allocate a unique {field_name.replace("_", " ")}')


# ─────────────────────────────────────────────────────────────
# REQUESTS
# ─────────────────────────────────────────────────────────────

def parse_request_data(request):
    """JSON body when present, form data otherwise."""
    if request.content_type == 'application/json':
        try:
            data = json.loads(request.body or b'{}')
        except (json.JSONDecodeError, ValueError):
            raise ValidationError('Malformed JSON body')
        if not isinstance(data, dict):
            raise ValidationError('JSON body must be an object')
        return data
    if request.method == 'GET':
        return request.GET.dict()
    return request.POST.dict()
