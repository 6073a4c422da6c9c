from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import CommandError, call_command
from django.utils import timezone

from orders.models import Order
from payments import services as payment_services
from payments.models import Transaction
from payouts.models import Payout


pytestmark = pytest.mark.django_db


def run(name, *args):
    out = StringIO()
    call_command(name, *args, stdout=out, stderr=StringIO())
    return out.getvalue()


@pytest.fixture
def pending_payment(fake_gateway, accepted_order, customer):
    txn, _ = payment_services.initiate_payment(accepted_order, customer, 'stripe')
    return txn


class TestExpirePendingPayments:
    def test_expires_old_sessions_only(self, pending_payment):
        assert 'Expired 0 pending payment(s)' in run('expire_pending_payments')

        Transaction.objects.filter(pk=pending_payment.pk).update(
            created_at=timezone.now() - timedelta(hours=3)
        )
        assert 'Expired 1 pending payment(s)' in run('expire_pending_payments')

        pending_payment.refresh_from_db()
        assert pending_payment.status == Transaction.STATUS_FAILED


class TestReconcilePayments:
    def test_repairs_order(self, pending_payment, accepted_order):
        payment_services.confirm_payment('stripe', pending_payment.stripe_payment_intent_id)
        Order.objects.filter(pk=accepted_order.pk).update(payment_status=Order.PAYMENT_FAILED)

        assert 'Reconciled 1 order(s)' in run('reconcile_payments')
        accepted_order.refresh_from_db()
        assert accepted_order.payment_status == Order.PAYMENT_PAID


class TestBuildPayouts:
    def test_builds_for_vendor(self, pending_payment):
        payment_services.confirm_payment('stripe', pending_payment.stripe_payment_intent_id)

        output = run('build_payouts', '--until', (timezone.now() + timedelta(minutes=1)).isoformat())

        payout = Payout.objects.get()
        assert payout.payout_number in output
        assert 'CleanCo' in output
        assert 'Built 1 payout(s)' in output

    def test_nothing_to_build(self, vendor):
        assert 'Built 0 payout(s)' in run('build_payouts')

    def test_rejects_bad_date(self, vendor):
        with pytest.raises(CommandError):
            run('build_payouts', '--until', 'tomorrow')
