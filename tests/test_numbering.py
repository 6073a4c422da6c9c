import re
from datetime import datetime, timezone as dt_timezone
from decimal import Decimal

import pytest

from core.exceptions import DuplicateError, ValidationError
from core.utils import generate_dated_number, parse_amount, percent_of, quantize_money, save_with_unique_number
from orders.models import Order, generate_order_number
from payments.models import generate_transaction_number
from payouts.models import generate_payout_number


class TestFormats:
    def test_dated_number(self):
        when = datetime(2026, 1, 15, 9, 30, tzinfo=dt_timezone.utc)
        assert re.fullmatch(r'ORD-20260115-\d{6}', generate_dated_number('ORD', now=when))

    def test_order_and_transaction_prefixes(self):
        assert re.fullmatch(r'ORD-\d{8}-\d{6}', generate_order_number())
        assert re.fullmatch(r'TXN-\d{8}-\d{6}', generate_transaction_number())

    @pytest.mark.django_db
    def test_payout_number(self):
        assert re.fullmatch(r'PO-\d{13}-1', generate_payout_number())


class TestMoney:
    def test_half_up(self):
        assert quantize_money(Decimal('2.005')) == Decimal('2.01')
        assert quantize_money(Decimal('2.004')) == Decimal('2.00')

    def test_percent_of(self):
        assert percent_of(Decimal('920'), Decimal('5')) == Decimal('46.00')

    @pytest.mark.parametrize('value', ['abc', '-1', 'NaN', 'Infinity', None, ''])
    def test_parse_amount_rejects(self, value):
        with pytest.raises(ValidationError):
            parse_amount(value)

    def test_parse_amount(self):
        assert parse_amount('12.345') == Decimal('12.35')


@pytest.mark.django_db
class TestUniqueNumbers:
    def test_collision_is_retried(self, make_order, monkeypatch):
        taken = make_order().order_number
        numbers = iter([taken, 'ORD-20260101-000001'])
        monkeypatch.setattr('orders.services.generate_order_number', lambda: next(numbers))

        order = make_order()
        assert order.order_number == 'ORD-20260101-000001'

    def test_persistent_collision_raises_duplicate(self, make_order, monkeypatch):
        taken = make_order().order_number
        monkeypatch.setattr('orders.services.generate_order_number', lambda: taken)

        with pytest.raises(DuplicateError):
            make_order()
        assert Order.objects.count() == 1

    def test_explicit_number_kept_when_free(self, make_order):
        order = make_order()
        copy = Order.objects.get(pk=order.pk)
        copy.pk = None
        copy._state.adding = True
        copy.order_number = 'ORD-20991231-123456'

        save_with_unique_number(copy, 'order_number', generate_order_number)
        assert copy.order_number == 'ORD-20991231-123456'
