from decimal import Decimal

import pytest

from core.exceptions import StateConflictError
from orders import state_machine as sm


ALL_STATUSES = [sm.PENDING, sm.ACCEPTED, sm.REJECTED, sm.IN_PROGRESS, sm.COMPLETED, sm.CANCELLED]


class TestTransitions:
    @pytest.mark.parametrize('current,target', [
        (sm.PENDING, sm.ACCEPTED),
        (sm.PENDING, sm.REJECTED),
        (sm.PENDING, sm.CANCELLED),
        (sm.ACCEPTED, sm.IN_PROGRESS),
        (sm.ACCEPTED, sm.CANCELLED),
        (sm.IN_PROGRESS, sm.COMPLETED),
    ])
    def test_allowed(self, current, target):
        assert sm.can_transition(current, target)
        sm.assert_transition(current, target)

    @pytest.mark.parametrize('current,target', [
        (sm.PENDING, sm.IN_PROGRESS),
        (sm.PENDING, sm.COMPLETED),
        (sm.ACCEPTED, sm.REJECTED),
        (sm.IN_PROGRESS, sm.CANCELLED),
        (sm.COMPLETED, sm.CANCELLED),
        (sm.CANCELLED, sm.PENDING),
    ])
    def test_forbidden(self, current, target):
        assert not sm.can_transition(current, target)
        with pytest.raises(StateConflictError) as exc:
            sm.assert_transition(current, target)
        assert exc.value.current_status == current

    @pytest.mark.parametrize('status', sorted(sm.TERMINAL))
    def test_terminal_states_have_no_exit(self, status):
        assert not any(sm.can_transition(status, target) for target in ALL_STATUSES)

    def test_terminal_set(self):
        assert sm.TERMINAL == {sm.REJECTED, sm.COMPLETED, sm.CANCELLED}

    def test_sources_for(self):
        assert sm.sources_for(sm.CANCELLED) == {sm.PENDING, sm.ACCEPTED}
        assert sm.sources_for(sm.COMPLETED) == {sm.IN_PROGRESS}
        assert sm.sources_for(sm.PENDING) == frozenset()

    def test_unknown_status_goes_nowhere(self):
        assert not sm.can_transition('archived', sm.PENDING)


class TestGuards:
    def test_guards_match_transition_table(self):
        for status in ALL_STATUSES:
            assert sm.can_be_processed(status) == sm.can_transition(status, sm.ACCEPTED)
            assert sm.can_be_started(status) == sm.can_transition(status, sm.IN_PROGRESS)
            assert sm.can_be_completed(status) == sm.can_transition(status, sm.COMPLETED)
            assert sm.can_be_cancelled(status) == sm.can_transition(status, sm.CANCELLED)

    def test_in_progress_cannot_be_cancelled_or_rescheduled(self):
        assert not sm.can_be_cancelled(sm.IN_PROGRESS)
        assert not sm.can_be_rescheduled(sm.IN_PROGRESS)

    def test_payment_accepted_once_vendor_accepted(self):
        assert not sm.can_accept_payment(sm.PENDING)
        assert sm.can_accept_payment(sm.ACCEPTED)
        assert sm.can_accept_payment(sm.COMPLETED)
        assert not sm.can_accept_payment(sm.CANCELLED)


class TestPricing:
    def test_plain_price(self):
        pricing = sm.calculate_pricing(Decimal('1000'))
        assert pricing.discount_amount == Decimal('0.00')
        assert pricing.subtotal == Decimal('1000.00')
        assert pricing.total_amount == Decimal('1000.00')

    def test_markdown_coupon_tax_and_fee(self):
        pricing = sm.calculate_pricing(
            Decimal('200'), Decimal('10'), Decimal('30'),
            tax_rate=Decimal('8'), platform_fee_rate=Decimal('5'),
        )
        assert pricing.discount_amount == Decimal('50.00')
        assert pricing.subtotal == Decimal('150.00')
        assert pricing.tax == Decimal('12.00')
        assert pricing.platform_fee == Decimal('7.50')
        assert pricing.total_amount == Decimal('169.50')

    def test_discount_never_exceeds_price(self):
        pricing = sm.calculate_pricing(Decimal('40'), Decimal('50'), Decimal('100'))
        assert pricing.discount_amount == Decimal('40.00')
        assert pricing.subtotal == Decimal('0.00')
        assert pricing.total_amount == Decimal('0.00')

    @pytest.mark.parametrize('price,markdown,coupon', [
        ('99.99', '12.5', '3.33'),
        ('10.01', '0', '0.01'),
        ('1234.56', '33', '0'),
    ])
    def test_totals_add_up(self, price, markdown, coupon):
        p = sm.calculate_pricing(
            Decimal(price), Decimal(markdown), Decimal(coupon),
            tax_rate=Decimal('7.25'), platform_fee_rate=Decimal('5'),
        )
        assert p.subtotal == p.service_price - p.discount_amount
        assert p.total_amount == p.subtotal + p.tax + p.platform_fee
        assert p.subtotal >= 0
