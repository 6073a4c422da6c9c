# payments/gateways.py
"""
Payment Gateway Integration
Supports: Stripe, PayPal, Razorpay, SSLCommerz

Every gateway exposes the same three calls:

    create_intent(transaction, order) -> GatewayIntent
    verify(transaction, token)        -> GatewayVerification
    refund(transaction, amount)       -> refund id

and raises GatewayError for anything that goes wrong talking to the
provider. Cash and bank transfer are settled by hand and have no gateway.
SSLCommerz also offers ``query(transaction)`` for its unsigned callbacks.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal

import requests
import stripe
from django.conf import settings
from django.urls import reverse

from core.exceptions import GatewayError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class GatewayIntent:
    reference: str
    payload: dict = field(default_factory=dict)
    # extra correlation fields to store on the transaction
    fields: dict = field(default_factory=dict)


@dataclass
class GatewayVerification:
    authentic: bool
    paid: bool
    status: str = ''
    raw: dict = field(default_factory=dict)
    fields: dict = field(default_factory=dict)
    # the provider has not decided yet, leave the transaction open
    pending: bool = False


def to_minor_units(amount):
    return int((Decimal(amount) * 100).quantize(Decimal('1')))


def _backend_url(path):
    return getattr(settings, 'BACKEND_URL', 'http://localhost:8000').rstrip('/') + path


# ══════════════════════════════════════════════════════════════
# STRIPE
# ══════════════════════════════════════════════════════════════

class StripeGateway:
    name = 'stripe'
    REFERENCE_FIELD = 'stripe_payment_intent_id'

    PENDING_STATES = ('processing', 'requires_action', 'requires_confirmation', 'requires_capture')

    def __init__(self):
        stripe.api_key = getattr(settings, 'STRIPE_SECRET_KEY', '')

    def create_intent(self, transaction, order):
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(transaction.amount),
                currency=transaction.currency.lower(),
                description=f"Order {order.order_number}",
                metadata={
                    'transaction_number': transaction.transaction_number,
                    'order_number':       order.order_number,
                    'customer_email':     order.customer_email,
                },
                receipt_email=order.customer_email or None,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe intent failed for {transaction.transaction_number}: {e}", exc_info=True)
            raise GatewayError(f'Stripe error: {e}') from e

        return GatewayIntent(
            reference=intent.id,
            payload={
                'client_secret':     intent.client_secret,
                'payment_intent_id': intent.id,
            },
        )

    def verify(self, transaction, token=None):
        try:
            intent = stripe.PaymentIntent.retrieve(transaction.stripe_payment_intent_id)
        except stripe.StripeError as e:
            logger.error(f"Stripe retrieve failed for {transaction.transaction_number}: {e}", exc_info=True)
            raise GatewayError(f'Stripe error: {e}') from e

        raw = {
            'id':       intent.id,
            'status':   intent.status,
            'amount':   intent.amount,
            'currency': intent.currency,
        }
        authentic = (
            intent.id == transaction.stripe_payment_intent_id
            and intent.amount == to_minor_units(transaction.amount)
        )
        charge_id = getattr(intent, 'latest_charge', None) or ''
        return GatewayVerification(
            authentic=authentic,
            paid=intent.status == 'succeeded',
            status=intent.status,
            raw=raw,
            fields={'stripe_charge_id': charge_id if isinstance(charge_id, str) else charge_id.id},
            pending=intent.status in self.PENDING_STATES,
        )

    def refund(self, transaction, amount):
        try:
            refund = stripe.Refund.create(
                payment_intent=transaction.stripe_payment_intent_id,
                amount=to_minor_units(amount),
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe refund failed for {transaction.transaction_number}: {e}", exc_info=True)
            raise GatewayError(f'Stripe error: {e}') from e
        return refund.id


# ══════════════════════════════════════════════════════════════
# PAYPAL
# ══════════════════════════════════════════════════════════════

class PayPalGateway:
    name = 'paypal'
    REFERENCE_FIELD = 'paypal_payment_id'

    def _api(self):
        import paypalrestsdk
        return paypalrestsdk, paypalrestsdk.Api({
            "mode":          getattr(settings, 'PAYPAL_MODE', 'sandbox'),
            "client_id":     getattr(settings, 'PAYPAL_CLIENT_ID', ''),
            "client_secret": getattr(settings, 'PAYPAL_CLIENT_SECRET', ''),
        })

    def create_intent(self, transaction, order):
        paypalrestsdk, api = self._api()
        execute_url = _backend_url(reverse('payments:paypal_execute'))
        payment = paypalrestsdk.Payment({
            "intent": "sale",
            "payer":  {"payment_method": "paypal"},
            "redirect_urls": {
                "return_url": execute_url,
                "cancel_url": f"{execute_url}?cancelled=1&transaction={transaction.transaction_number}",
            },
            "transactions": [{
                "item_list": {"items": [{
                    "name":     order.service.name,
                    "sku":      order.order_number,
                    "price":    str(transaction.amount),
                    "currency": transaction.currency,
                    "quantity": 1
                }]},
                "amount":      {"total": str(transaction.amount), "currency": transaction.currency},
                "description": f"Payment for Order {order.order_number}",
                "invoice_number": transaction.transaction_number,
            }]
        }, api=api)

        try:
            created = payment.create()
        except Exception as e:
            logger.error(f"PayPal create failed for {transaction.transaction_number}: {e}", exc_info=True)
            raise GatewayError(f'PayPal error: {e}') from e
        if not created:
            raise GatewayError(f'PayPal error: {payment.error}')

        approval_url = next((str(link.href) for link in payment.links if link.rel == "approval_url"), '')
        return GatewayIntent(
            reference=payment.id,
            payload={'payment_id': payment.id, 'approval_url': approval_url},
        )

    def verify(self, transaction, token):
        """``token`` is the payer id PayPal appends to the return url."""
        if not token:
            return GatewayVerification(authentic=False, paid=False, status='missing_payer')

        paypalrestsdk, api = self._api()
        try:
            payment = paypalrestsdk.Payment.find(transaction.paypal_payment_id, api=api)
            executed = payment.execute({"payer_id": token})
        except paypalrestsdk.ResourceNotFound:
            return GatewayVerification(authentic=False, paid=False, status='not_found')
        except Exception as e:
            logger.error(f"PayPal execute failed for {transaction.transaction_number}: {e}", exc_info=True)
            raise GatewayError(f'PayPal error: {e}') from e

        sale_id = ''
        if executed:
            resources = payment.transactions[0].related_resources
            if resources:
                sale_id = resources[0].sale.id

        return GatewayVerification(
            authentic=True,
            paid=bool(executed) and payment.state == 'approved',
            status=payment.state,
            raw={'id': payment.id, 'state': payment.state, 'sale_id': sale_id,
                 'error': payment.error if not executed else None},
            fields={'paypal_payer_id': token},
        )

    def refund(self, transaction, amount):
        paypalrestsdk, api = self._api()
        sale_id = (transaction.gateway_response or {}).get('sale_id')
        if not sale_id:
            raise GatewayError('PayPal sale id missing, cannot refund')
        try:
            sale = paypalrestsdk.Sale.find(sale_id, api=api)
            refund = sale.refund({"amount": {"total": str(amount), "currency": transaction.currency}})
        except Exception as e:
            logger.error(f"PayPal refund failed for {transaction.transaction_number}: {e}", exc_info=True)
            raise GatewayError(f'PayPal error: {e}') from e
        if not refund.success():
            raise GatewayError(f'PayPal error: {refund.error}')
        return refund.id


# ══════════════════════════════════════════════════════════════
# RAZORPAY
# ══════════════════════════════════════════════════════════════

class RazorpayGateway:
    name = 'razorpay'
    REFERENCE_FIELD = 'razorpay_order_id'

    def _client(self):
        import razorpay
        return razorpay, razorpay.Client(auth=(
            getattr(settings, 'RAZORPAY_KEY_ID', ''),
            getattr(settings, 'RAZORPAY_KEY_SECRET', ''),
        ))

    def create_intent(self, transaction, order):
        _, client = self._client()
        try:
            rp_order = client.order.create({
                'amount':   to_minor_units(transaction.amount),
                'currency': transaction.currency,
                'receipt':  transaction.transaction_number,
                'notes':    {
                    'order_number':   order.order_number,
                    'customer_email': order.customer_email,
                }
            })
        except Exception as e:
            logger.error(f"Razorpay order failed for {transaction.transaction_number}: {e}", exc_info=True)
            raise GatewayError(f'Razorpay error: {e}') from e

        return GatewayIntent(
            reference=rp_order['id'],
            payload={
                'razorpay_order_id': rp_order['id'],
                'amount':            rp_order['amount'],
                'currency':          transaction.currency,
                'key_id':            getattr(settings, 'RAZORPAY_KEY_ID', ''),
            },
        )

    def verify(self, transaction, token):
        """``token`` is ``{'payment_id': ..., 'signature': ...}`` from checkout."""
        token = token or {}
        razorpay, client = self._client()
        try:
            client.utility.verify_payment_signature({
                'razorpay_order_id':   transaction.razorpay_order_id,
                'razorpay_payment_id': token.get('payment_id', ''),
                'razorpay_signature':  token.get('signature', ''),
            })
        except razorpay.errors.SignatureVerificationError:
            return GatewayVerification(authentic=False, paid=False, status='bad_signature')

        try:
            payment = client.payment.fetch(token['payment_id'])
        except Exception as e:
            logger.error(f"Razorpay fetch failed for {transaction.transaction_number}: {e}", exc_info=True)
            raise GatewayError(f'Razorpay error: {e}') from e

        status = payment.get('status', '')
        return GatewayVerification(
            authentic=payment.get('order_id') == transaction.razorpay_order_id,
            paid=status == 'captured',
            status=status,
            raw={k: payment.get(k) for k in ('id', 'order_id', 'status', 'amount', 'currency', 'method')},
            fields={'razorpay_payment_id': token['payment_id']},
            pending=status in ('created', 'authorized'),
        )

    def refund(self, transaction, amount):
        _, client = self._client()
        try:
            refund = client.payment.refund(transaction.razorpay_payment_id, {'amount': to_minor_units(amount)})
        except Exception as e:
            logger.error(f"Razorpay refund failed for {transaction.transaction_number}: {e}", exc_info=True)
            raise GatewayError(f'Razorpay error: {e}') from e
        return refund['id']


# ══════════════════════════════════════════════════════════════
# SSLCOMMERZ
# ══════════════════════════════════════════════════════════════

class SSLCommerzGateway:
    """
    SSLCommerz hosted checkout (v4 API) over plain HTTPS.

    The merchant transaction id is our own transaction number, so the IPN
    and success callbacks are correlated on ``transaction_number``.
    """
    name = 'sslcommerz'
    REFERENCE_FIELD = 'transaction_number'

    TIMEOUT = 30
    VALID_STATES = ('VALID', 'VALIDATED')
    FAILED_STATES = ('FAILED', 'CANCELLED', 'UNATTEMPTED', 'EXPIRED')

    def __init__(self):
        self.store_id = getattr(settings, 'SSLCOMMERZ_STORE_ID', '')
        self.store_password = getattr(settings, 'SSLCOMMERZ_STORE_PASSWORD', '')
        sandbox = getattr(settings, 'SSLCOMMERZ_SANDBOX', True)
        self.base_url = 'https://sandbox.sslcommerz.com' if sandbox else 'https://securepay.sslcommerz.com'

    def _call(self, method, path, **kwargs):
        try:
            response = requests.request(method, f"{self.base_url}{path}", timeout=self.TIMEOUT, **kwargs)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"SSLCommerz {path} failed: {e}", exc_info=True)
            raise GatewayError(f'SSLCommerz error: {e}') from e

    def create_intent(self, transaction, order):
        ipn_url = _backend_url(reverse('payments:sslcommerz_ipn'))
        data = {
            'store_id':         self.store_id,
            'store_passwd':     self.store_password,
            'total_amount':     str(transaction.amount),
            'currency':         transaction.currency,
            'tran_id':          transaction.transaction_number,
            'success_url':      ipn_url,
            'fail_url':         ipn_url,
            'cancel_url':       ipn_url,
            'ipn_url':          ipn_url,
            'shipping_method':  'NO',
            'product_name':     order.service.name,
            'product_category': 'Service',
            'product_profile':  'general',
            'cus_name':         order.customer_name,
            'cus_email':        order.customer_email,
            'cus_add1':         order.address_street or 'N/A',
            'cus_city':         order.address_city or 'N/A',
            'cus_state':        order.address_state or 'N/A',
            'cus_postcode':     order.address_zip_code or '1000',
            'cus_country':      order.address_country,
            'cus_phone':        order.customer_phone or 'N/A',
            'value_a':          order.order_number,
        }
        body = self._call('POST', '/gwprocess/v4/api.php', data=data)
        if body.get('status') != 'SUCCESS' or not body.get('GatewayPageURL'):
            raise GatewayError(f"SSLCommerz error: {body.get('failedreason') or 'session not created'}")

        return GatewayIntent(
            reference=transaction.transaction_number,
            payload={'gateway_url': body['GatewayPageURL'], 'session_key': body.get('sessionkey', '')},
            fields={'sslcommerz_session_key': body.get('sessionkey', '')},
        )

    def verify(self, transaction, token):
        """``token`` is the ``val_id`` posted back by SSLCommerz."""
        if not token:
            return GatewayVerification(authentic=False, paid=False, status='missing_val_id')

        body = self._call('GET', '/validator/api/validationserverAPI.php', params={
            'val_id':       token,
            'store_id':     self.store_id,
            'store_passwd': self.store_password,
            'format':       'json',
        })
        status = body.get('status', '')
        amount = body.get('currency_amount') or body.get('amount') or '0'
        authentic = (
            body.get('tran_id') == transaction.transaction_number
            and Decimal(str(amount)) == transaction.amount
        )
        return GatewayVerification(
            authentic=authentic,
            paid=status in self.VALID_STATES,
            status=status,
            raw=body,
            fields={
                'sslcommerz_validation_id': token,
                'sslcommerz_bank_tran_id':  body.get('bank_tran_id', ''),
            },
        )

    def query(self, transaction):
        """Look the payment up by merchant transaction id, for callbacks that carry no ``val_id``."""
        body = self._call('GET', '/validator/api/merchantTransIDvalidationAPI.php', params={
            'tran_id':      transaction.transaction_number,
            'store_id':     self.store_id,
            'store_passwd': self.store_password,
            'format':       'json',
        })
        elements = [
            e for e in body.get('element') or []
            if e.get('tran_id') == transaction.transaction_number
        ]
        if body.get('APIConnect') != 'DONE' or not elements:
            return GatewayVerification(
                authentic=False, paid=False, status=body.get('APIConnect') or 'not_found', raw=body, pending=True,
            )

        # a paid attempt wins over the failed ones that preceded it
        paid = [e for e in elements if e.get('status') in self.VALID_STATES]
        element = paid[0] if paid else elements[-1]
        status = element.get('status', '')
        amount = element.get('currency_amount') or element.get('amount') or '0'
        return GatewayVerification(
            authentic=Decimal(str(amount)) == transaction.amount,
            paid=bool(paid),
            status=status,
            raw=element,
            fields={
                'sslcommerz_validation_id': element.get('val_id', ''),
                'sslcommerz_bank_tran_id':  element.get('bank_tran_id', ''),
            },
            pending=not paid and status not in self.FAILED_STATES,
        )

    def refund(self, transaction, amount):
        body = self._call('GET', '/validator/api/merchantTransIDvalidationAPI.php', params={
            'bank_tran_id':   transaction.sslcommerz_bank_tran_id,
            'refund_amount':  str(amount),
            'refund_remarks': f'Refund for {transaction.transaction_number}',
            'store_id':       self.store_id,
            'store_passwd':   self.store_password,
            'format':         'json',
        })
        if body.get('status') != 'success':
            raise GatewayError(f"SSLCommerz refund error: {body.get('errorReason') or body.get('status')}")
        return body.get('refund_ref_id', '')


# ══════════════════════════════════════════════════════════════
# FACTORY
# ══════════════════════════════════════════════════════════════

class PaymentGatewayFactory:
    GATEWAYS = {
        'stripe':     StripeGateway,
        'paypal':     PayPalGateway,
        'razorpay':   RazorpayGateway,
        'sslcommerz': SSLCommerzGateway,
    }

    @classmethod
    def get_gateway(cls, gateway_name):
        gateway = cls.GATEWAYS.get((gateway_name or '').lower())
        if not gateway:
            raise ValidationError(f"Unsupported gateway: {gateway_name}")
        return gateway()
