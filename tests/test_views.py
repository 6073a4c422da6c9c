from datetime import timedelta
from decimal import Decimal

import pytest
import stripe
from django.urls import reverse
from django.utils import timezone

from orders import services as order_services
from payments import services as payment_services
from payments.models import Transaction
from payouts.models import Payout


pytestmark = pytest.mark.django_db


def post_json(client, url, data=None):
    return client.post(url, data or {}, content_type='application/json')


@pytest.fixture
def as_customer(client, customer):
    client.force_login(customer)
    return client


@pytest.fixture
def as_vendor(client, vendor, vendor_user):
    client.force_login(vendor_user)
    return client


@pytest.fixture
def as_admin(client, admin_user):
    client.force_login(admin_user)
    return client


@pytest.fixture
def stripe_event(monkeypatch):
    """Make the Stripe webhook accept whatever event the test hands it."""
    def deliver(event):
        monkeypatch.setattr(stripe.Webhook, 'construct_event', lambda payload, sig, secret: event)
    return deliver


@pytest.fixture
def completed_payment(fake_gateway, accepted_order, customer):
    txn, _ = payment_services.initiate_payment(accepted_order, customer, 'stripe')
    return payment_services.confirm_payment('stripe', txn.stripe_payment_intent_id)


class TestOrderViews:
    def test_anonymous_is_redirected(self, client):
        response = client.get(reverse('orders:my_orders'))
        assert response.status_code == 302

    def test_create_order(self, as_customer, service, address, make_coupon):
        make_coupon('SAVE10', max_discount_amount=Decimal('80'))
        response = post_json(as_customer, reverse('orders:create_order'), {
            'service_id':     service.pk,
            'scheduled_date': (timezone.now() + timedelta(days=2)).isoformat(),
            'scheduled_time': '11:00',
            'address':        address,
            'coupon_code':    'save10',
        })

        assert response.status_code == 201
        body = response.json()
        assert body['success'] is True
        assert body['data']['status'] == 'pending'
        assert body['data']['discount_amount'] == '80.00'
        assert body['data']['total_amount'] == '920.00'
        assert body['data']['order_number'].startswith('ORD-')

    def test_create_order_accepts_plain_date(self, as_customer, service, address):
        response = post_json(as_customer, reverse('orders:create_order'), {
            'service_id':     service.pk,
            'scheduled_date': (timezone.now() + timedelta(days=2)).date().isoformat(),
            'scheduled_time': '11:00',
            'address':        address,
        })
        assert response.status_code == 201

    def test_create_order_in_the_past(self, as_customer, service, address):
        response = post_json(as_customer, reverse('orders:create_order'), {
            'service_id':     service.pk,
            'scheduled_date': (timezone.now() - timedelta(days=2)).isoformat(),
            'scheduled_time': '11:00',
            'address':        address,
        })
        assert response.status_code == 400
        assert response.json() == {'success': False, 'error': 'Scheduled date must be in the future'}

    def test_create_order_bad_date(self, as_customer, service, address):
        response = post_json(as_customer, reverse('orders:create_order'), {
            'service_id': service.pk, 'scheduled_date': 'next week', 'scheduled_time': '11:00',
            'address': address,
        })
        assert response.status_code == 400

    def test_malformed_json(self, as_customer):
        response = as_customer.post(
            reverse('orders:create_order'), 'not json', content_type='application/json',
        )
        assert response.status_code == 400
        assert response.json()['error'] == 'Malformed JSON body'

    def test_my_orders_filters_by_status(self, as_customer, make_order, vendor_user):
        make_order()
        order_services.accept_order(make_order(), vendor_user)

        response = as_customer.get(reverse('orders:my_orders'), {'status': 'accepted'})
        assert response.status_code == 200
        assert [o['status'] for o in response.json()['data']] == ['accepted']

    def test_detail_includes_history(self, as_customer, accepted_order):
        response = as_customer.get(reverse('orders:order_detail', args=[accepted_order.order_number]))
        assert response.status_code == 200
        history = response.json()['data']['status_history']
        assert [h['to_status'] for h in history] == ['accepted', 'pending']

    def test_detail_hidden_from_other_customers(self, client, other_customer, accepted_order):
        client.force_login(other_customer)
        response = client.get(reverse('orders:order_detail', args=[accepted_order.order_number]))
        assert response.status_code == 403

    def test_customer_cancel_requires_reason(self, as_customer, make_order):
        order = make_order()
        url = reverse('orders:cancel_order', args=[order.order_number])

        assert post_json(as_customer, url).status_code == 400
        response = post_json(as_customer, url, {'reason': 'Found someone closer'})
        assert response.status_code == 200
        assert response.json()['data']['cancelled_by'] == 'user'

    def test_reschedule(self, as_customer, make_order):
        order = make_order()
        response = post_json(as_customer, reverse('orders:reschedule_order', args=[order.order_number]), {
            'scheduled_date': (timezone.now() + timedelta(days=9)).isoformat(),
            'scheduled_time': '14:00',
        })
        assert response.status_code == 200
        assert response.json()['data']['rescheduled_from_time'] == '10:00'

    def test_get_not_allowed_on_actions(self, as_customer, make_order):
        order = make_order()
        response = as_customer.get(reverse('orders:cancel_order', args=[order.order_number]))
        assert response.status_code == 405


class TestVendorOrderViews:
    def test_accept_then_conflict(self, as_vendor, make_order):
        order = make_order()
        url = reverse('orders:accept_order', args=[order.order_number])

        first = post_json(as_vendor, url, {'notes': 'On it'})
        assert first.status_code == 200
        assert first.json()['data']['status'] == 'accepted'

        second = post_json(as_vendor, url)
        assert second.status_code == 409
        assert second.json()['success'] is False

    def test_customer_cannot_act_as_vendor(self, as_customer, make_order):
        order = make_order()
        response = post_json(as_customer, reverse('orders:accept_order', args=[order.order_number]))
        assert response.status_code == 403

    def test_deactivated_vendor(self, as_vendor, vendor, make_order):
        order = make_order()
        vendor.is_active = False
        vendor.save()
        response = post_json(as_vendor, reverse('orders:start_order', args=[order.order_number]))
        assert response.status_code == 403

    def test_reject_requires_reason(self, as_vendor, make_order):
        order = make_order()
        url = reverse('orders:reject_order', args=[order.order_number])
        assert post_json(as_vendor, url).status_code == 400
        assert post_json(as_vendor, url, {'reason': 'Out of area'}).status_code == 200

    def test_vendor_orders(self, as_vendor, make_order):
        make_order()
        response = as_vendor.get(reverse('orders:vendor_orders'))
        assert response.status_code == 200
        assert len(response.json()['data']) == 1


class TestAdminOrderViews:
    def test_statistics(self, as_admin, make_order):
        make_order()
        response = as_admin.get(reverse('orders:order_statistics'))
        assert response.status_code == 200
        assert response.json()['data']['total_orders'] == 1
        assert response.json()['data']['total_revenue'] == '1000.00'

    def test_statistics_admin_only(self, as_customer):
        assert as_customer.get(reverse('orders:order_statistics')).status_code == 403

    def test_admin_cancel(self, as_admin, accepted_order):
        response = post_json(
            as_admin, reverse('orders:admin_cancel_order', args=[accepted_order.order_number]),
            {'reason': 'Vendor unreachable'},
        )
        assert response.status_code == 200
        assert response.json()['data']['cancelled_by'] == 'admin'


class TestPaymentViews:
    def test_initiate(self, as_customer, accepted_order, fake_gateway):
        response = post_json(as_customer, reverse('payments:initiate_payment'), {
            'order_number':   accepted_order.order_number,
            'payment_method': 'stripe',
        })
        assert response.status_code == 201
        data = response.json()['data']
        assert data['gateway'] == {'client_secret': 'secret_123'}
        assert data['transaction']['status'] == 'pending'
        assert data['transaction']['amount'] == '1000.00'

    def test_initiate_unknown_order(self, as_customer):
        response = post_json(as_customer, reverse('payments:initiate_payment'), {
            'order_number': 'ORD-00000000-000000', 'payment_method': 'stripe',
        })
        assert response.status_code == 404

    def test_stripe_webhook_is_idempotent(self, client, accepted_order, customer, fake_gateway, stripe_event):
        txn, _ = payment_services.initiate_payment(accepted_order, customer, 'stripe')
        stripe_event({
            'type': 'payment_intent.succeeded',
            'data': {'object': {'id': txn.stripe_payment_intent_id, 'status': 'succeeded'}},
        })
        url = reverse('payments:stripe_webhook')

        assert client.post(url, b'{}', content_type='application/json').status_code == 200
        assert client.post(url, b'{}', content_type='application/json').status_code == 200

        txn.refresh_from_db()
        assert txn.status == Transaction.STATUS_COMPLETED
        assert fake_gateway.verify_calls == 1

    def test_stripe_failure_after_success_is_acknowledged(self, client, completed_payment, stripe_event):
        stripe_event({
            'type': 'payment_intent.payment_failed',
            'data': {'object': {'id': completed_payment.stripe_payment_intent_id, 'status': 'requires_payment_method'}},
        })
        response = client.post(reverse('payments:stripe_webhook'), b'{}', content_type='application/json')

        assert response.status_code == 200
        completed_payment.refresh_from_db()
        assert completed_payment.status == Transaction.STATUS_COMPLETED

    def test_stripe_event_for_unknown_intent_is_acknowledged(self, client, fake_gateway, stripe_event):
        stripe_event({
            'type': 'payment_intent.succeeded',
            'data': {'object': {'id': 'pi_from_another_system', 'status': 'succeeded'}},
        })
        response = client.post(reverse('payments:stripe_webhook'), b'{}', content_type='application/json')

        assert response.status_code == 200
        assert fake_gateway.verify_calls == 0

    def test_sslcommerz_failure_not_confirmed_by_gateway(self, client, sslcommerz_payment, http_reply):
        calls = http_reply({'APIConnect': 'DONE', 'no_of_trans_found': 1, 'element': [
            {'tran_id': sslcommerz_payment.transaction_number, 'status': 'PENDING', 'amount': '1000.00'},
        ]})
        response = client.post(reverse('payments:sslcommerz_ipn'), {
            'tran_id': sslcommerz_payment.transaction_number, 'status': 'FAILED',
        })

        assert response.status_code == 200
        assert calls[0][2]['params']['tran_id'] == sslcommerz_payment.transaction_number
        sslcommerz_payment.refresh_from_db()
        assert sslcommerz_payment.status == Transaction.STATUS_PENDING

    def test_sslcommerz_failure_confirmed_by_gateway(self, client, sslcommerz_payment, http_reply):
        http_reply({'APIConnect': 'DONE', 'no_of_trans_found': 1, 'element': [
            {'tran_id': sslcommerz_payment.transaction_number, 'status': 'CANCELLED', 'amount': '1000.00'},
        ]})
        response = client.post(reverse('payments:sslcommerz_ipn'), {
            'tran_id': sslcommerz_payment.transaction_number, 'status': 'CANCELLED',
        })

        assert response.status_code == 200
        assert response.json()['data']['status'] == 'cancelled'
        sslcommerz_payment.refresh_from_db()
        assert sslcommerz_payment.status == Transaction.STATUS_CANCELLED

    def test_sslcommerz_failure_for_paid_payment_completes_it(self, client, sslcommerz_payment, http_reply,
                                                              accepted_order):
        http_reply({'APIConnect': 'DONE', 'no_of_trans_found': 1, 'element': [
            {'tran_id': sslcommerz_payment.transaction_number, 'status': 'VALID', 'amount': '1000.00',
             'val_id': 'val-3', 'bank_tran_id': 'BANK-3'},
        ]})
        response = client.post(reverse('payments:sslcommerz_ipn'), {
            'tran_id': sslcommerz_payment.transaction_number, 'status': 'FAILED',
        })

        assert response.status_code == 200
        sslcommerz_payment.refresh_from_db()
        assert sslcommerz_payment.status == Transaction.STATUS_COMPLETED
        assert sslcommerz_payment.sslcommerz_bank_tran_id == 'BANK-3'
        accepted_order.refresh_from_db()
        assert accepted_order.payment_status == 'paid'

    def test_stripe_bad_signature(self, client, monkeypatch):
        def reject(payload, sig, secret):
            raise stripe.SignatureVerificationError('bad signature', sig)

        monkeypatch.setattr(stripe.Webhook, 'construct_event', reject)
        response = client.post(reverse('payments:stripe_webhook'), b'{}', content_type='application/json')
        assert response.status_code == 400

    def test_refund_then_excess(self, as_admin, completed_payment, fake_gateway):
        url = reverse('payments:refund_transaction', args=[completed_payment.transaction_number])

        first = post_json(as_admin, url, {'amount': '300', 'reason': 'Late arrival'})
        assert first.status_code == 200
        assert first.json()['data']['transaction']['status'] == 'partially_refunded'
        assert first.json()['data']['refund']['type'] == 'refund'

        second = post_json(as_admin, url, {'amount': '800'})
        assert second.status_code == 400

    def test_refund_admin_only(self, as_customer, completed_payment):
        url = reverse('payments:refund_transaction', args=[completed_payment.transaction_number])
        assert post_json(as_customer, url, {'amount': '1'}).status_code == 403

    def test_verify_requires_decision(self, as_admin, accepted_order, customer):
        txn, _ = payment_services.initiate_payment(accepted_order, customer, 'cash')
        url = reverse('payments:verify_payment', args=[txn.transaction_number])

        assert post_json(as_admin, url).status_code == 400
        response = post_json(as_admin, url, {'approve': True, 'reference_number': 'CASH-7'})
        assert response.status_code == 200
        assert response.json()['data']['status'] == 'completed'

    def test_my_transactions(self, as_customer, completed_payment):
        response = as_customer.get(reverse('payments:my_transactions'))
        assert [t['transaction_number'] for t in response.json()['data']] == [completed_payment.transaction_number]

    def test_vendor_transactions_include_statistics(self, as_vendor, completed_payment):
        response = as_vendor.get(reverse('payments:vendor_transactions'))
        assert response.status_code == 200
        assert response.json()['statistics']['total_vendor_amount'] == '950.00'


class TestPayoutViews:
    def test_request_and_approve(self, client, vendor_user, admin_user, completed_payment):
        client.force_login(vendor_user)
        response = post_json(client, reverse('payouts:request_payout'))
        assert response.status_code == 201
        payout_number = response.json()['data']['payout_number']
        assert response.json()['data']['amount'] == '950.00'

        balance = client.get(reverse('payouts:my_payouts')).json()['available_balance']
        assert balance == '0.00'

        client.force_login(admin_user)
        url = reverse('payouts:process_payout', args=[payout_number])
        assert post_json(client, url, {'action': 'maybe'}).status_code == 400
        response = post_json(client, url, {'action': 'approve'})
        assert response.status_code == 200
        assert Payout.objects.get(payout_number=payout_number).status == Payout.STATUS_PROCESSING

    def test_request_with_nothing_to_pay(self, as_vendor):
        response = post_json(as_vendor, reverse('payouts:request_payout'))
        assert response.status_code == 400

    def test_customers_cannot_request(self, as_customer):
        assert post_json(as_customer, reverse('payouts:request_payout')).status_code == 403


class TestCouponViews:
    def test_validate_previews_discount(self, as_customer, make_coupon, service):
        make_coupon('SAVE10', max_discount_amount=Decimal('80'))
        response = post_json(as_customer, reverse('promotions:validate_coupon'), {
            'code': 'save10', 'order_amount': '1000', 'service_id': service.pk,
        })
        assert response.status_code == 200
        data = response.json()['data']
        assert data['discount_amount'] == '80.00'
        assert data['final_amount'] == '920.00'

    def test_validate_unknown_code(self, as_customer):
        response = post_json(as_customer, reverse('promotions:validate_coupon'), {
            'code': 'NOPE', 'order_amount': '100',
        })
        assert response.status_code == 404

    def test_available(self, as_customer, make_coupon):
        make_coupon('GOOD')
        response = as_customer.get(reverse('promotions:available_coupons'))
        assert [c['code'] for c in response.json()['data']] == ['GOOD']

    def test_toggle_is_admin_only(self, client, customer, admin_user, make_coupon):
        make_coupon('GOOD')
        url = reverse('promotions:toggle_coupon', args=['good'])

        client.force_login(customer)
        assert post_json(client, url).status_code == 403

        client.force_login(admin_user)
        response = post_json(client, url)
        assert response.status_code == 200
        assert response.json()['data']['status'] == 'inactive'
