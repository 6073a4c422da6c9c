from decimal import Decimal
from types import SimpleNamespace

import pytest

from core.exceptions import GatewayError, ValidationError
from payments import gateways
from payments.gateways import PaymentGatewayFactory, SSLCommerzGateway, StripeGateway, to_minor_units
from payments.models import Transaction


def make_txn(**kwargs):
    values = {
        'transaction_number':       'TXN-20260101-000042',
        'amount':                   Decimal('1000.00'),
        'currency':                 'USD',
        'stripe_payment_intent_id': 'pi_42',
    }
    values.update(kwargs)
    return Transaction(**values)


def test_minor_units():
    assert to_minor_units(Decimal('10.50')) == 1050
    assert to_minor_units(Decimal('0.01')) == 1


def test_factory_rejects_unknown_gateway():
    with pytest.raises(ValidationError):
        PaymentGatewayFactory.get_gateway('bitcoin')


def test_factory_is_case_insensitive():
    assert isinstance(PaymentGatewayFactory.get_gateway('SSLCommerz'), SSLCommerzGateway)


class TestStripeVerify:
    def intent(self, **kwargs):
        values = {'id': 'pi_42', 'status': 'succeeded', 'amount': 100000, 'currency': 'usd', 'latest_charge': 'ch_1'}
        values.update(kwargs)
        return SimpleNamespace(**values)

    def test_succeeded(self, monkeypatch):
        monkeypatch.setattr(gateways.stripe.PaymentIntent, 'retrieve', lambda pid: self.intent())
        result = StripeGateway().verify(make_txn())

        assert result.authentic and result.paid and not result.pending
        assert result.fields == {'stripe_charge_id': 'ch_1'}

    def test_amount_mismatch_is_not_authentic(self, monkeypatch):
        monkeypatch.setattr(gateways.stripe.PaymentIntent, 'retrieve', lambda pid: self.intent(amount=100))
        assert not StripeGateway().verify(make_txn()).authentic

    def test_processing_is_pending(self, monkeypatch):
        monkeypatch.setattr(
            gateways.stripe.PaymentIntent, 'retrieve',
            lambda pid: self.intent(status='processing', latest_charge=None),
        )
        result = StripeGateway().verify(make_txn())
        assert result.pending and not result.paid

    def test_api_error_becomes_gateway_error(self, monkeypatch):
        def boom(pid):
            raise gateways.stripe.StripeError('connection reset')

        monkeypatch.setattr(gateways.stripe.PaymentIntent, 'retrieve', boom)
        with pytest.raises(GatewayError):
            StripeGateway().verify(make_txn())


class TestSSLCommerz:
    def test_valid_payment(self, http_reply):
        calls = http_reply({
            'status': 'VALID', 'tran_id': 'TXN-20260101-000042',
            'amount': '1000.00', 'bank_tran_id': 'BANK-9',
        })
        result = SSLCommerzGateway().verify(make_txn(), 'val-1')

        assert result.authentic and result.paid
        assert result.fields['sslcommerz_bank_tran_id'] == 'BANK-9'
        method, url, kwargs = calls[0]
        assert url.endswith('/validator/api/validationserverAPI.php')
        assert kwargs['params']['val_id'] == 'val-1'

    def test_foreign_transaction_is_not_authentic(self, http_reply):
        http_reply({'status': 'VALID', 'tran_id': 'TXN-OTHER', 'amount': '1000.00'})
        assert not SSLCommerzGateway().verify(make_txn(), 'val-1').authentic

    def test_missing_val_id(self):
        assert not SSLCommerzGateway().verify(make_txn(), '').authentic

    def test_http_failure(self, http_reply):
        http_reply({}, 503)
        with pytest.raises(GatewayError):
            SSLCommerzGateway().verify(make_txn(), 'val-1')


class TestSSLCommerzQuery:
    def reply(self, *elements):
        return {'APIConnect': 'DONE', 'no_of_trans_found': len(elements), 'element': list(elements)}

    def element(self, status, **kwargs):
        values = {'tran_id': 'TXN-20260101-000042', 'status': status, 'amount': '1000.00'}
        values.update(kwargs)
        return values

    def test_looks_up_by_merchant_id(self, http_reply):
        calls = http_reply(self.reply(self.element('FAILED')))
        result = SSLCommerzGateway().query(make_txn())

        assert result.authentic and not result.paid and not result.pending
        assert result.status == 'FAILED'
        assert calls[0][2]['params']['tran_id'] == 'TXN-20260101-000042'

    def test_unknown_transaction_stays_pending(self, http_reply):
        http_reply({'APIConnect': 'DONE', 'no_of_trans_found': 0, 'element': []})
        result = SSLCommerzGateway().query(make_txn())
        assert result.pending and not result.authentic

    def test_paid_attempt_wins(self, http_reply):
        http_reply(self.reply(
            self.element('FAILED'),
            self.element('VALID', val_id='val-7', bank_tran_id='BANK-7'),
        ))
        result = SSLCommerzGateway().query(make_txn())

        assert result.paid and result.authentic
        assert result.fields == {'sslcommerz_validation_id': 'val-7', 'sslcommerz_bank_tran_id': 'BANK-7'}

    def test_still_in_progress(self, http_reply):
        http_reply(self.reply(self.element('PENDING')))
        assert SSLCommerzGateway().query(make_txn()).pending
