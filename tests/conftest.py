from datetime import timedelta
from decimal import Decimal

import pytest
import requests
from django.utils import timezone

from catalog.models import Category, Service
from orders import services as order_services
from payments import gateways
from payments.gateways import GatewayIntent, GatewayVerification, PaymentGatewayFactory
from payments.models import Transaction
from promotions.models import Coupon
from users.models import User
from vendors.models import Vendor


@pytest.fixture(autouse=True)
def marketplace_settings(settings):
    # flat pricing so totals equal subtotals unless a test says otherwise
    settings.CURRENCY = 'USD'
    settings.PLATFORM_COMMISSION_RATE = Decimal('5')
    settings.PLATFORM_FEE_RATE = Decimal('0')
    settings.ORDER_TAX_RATE = Decimal('0')
    settings.PAYMENT_PENDING_TIMEOUT_MINUTES = 60
    settings.DEFAULT_PAYOUT_PERIOD_DAYS = 30
    settings.BACKEND_URL = 'http://testserver'
    return settings


@pytest.fixture
def customer(db):
    return User.objects.create_user(
        username='alice', email='alice@example.com', password='pass1234',
        first_name='Alice', last_name='Doe', role=User.ROLE_CUSTOMER, phone='555-0100',
    )


@pytest.fixture
def other_customer(db):
    return User.objects.create_user(
        username='bob', email='bob@example.com', password='pass1234', role=User.ROLE_CUSTOMER,
    )


@pytest.fixture
def admin_user(db):
    return User.objects.create_user(
        username='root', email='root@example.com', password='pass1234', role=User.ROLE_ADMIN,
    )


@pytest.fixture
def vendor_user(db):
    return User.objects.create_user(
        username='cleanco', email='owner@cleanco.example', password='pass1234', role=User.ROLE_VENDOR,
    )


@pytest.fixture
def vendor(vendor_user):
    return Vendor.objects.create(
        user=vendor_user,
        business_name='CleanCo',
        approval_status='approved',
        is_active=True,
        payout_method='bank_transfer',
        bank_name='First Bank',
        account_number='000123',
        account_holder_name='CleanCo Ltd',
    )


@pytest.fixture
def category(db):
    return Category.objects.create(name='Cleaning', slug='cleaning')


@pytest.fixture
def service(vendor, category):
    return Service.objects.create(
        vendor=vendor, category=category, name='Deep clean',
        price=Decimal('1000.00'), discount=Decimal('0'), duration=120,
    )


@pytest.fixture
def make_service(vendor, category):
    def make(price, **kwargs):
        kwargs.setdefault('name', f'Service {price}')
        return Service.objects.create(vendor=vendor, category=category, price=Decimal(price), **kwargs)
    return make


@pytest.fixture
def make_coupon(db):
    def make(code='SAVE10', **kwargs):
        now = timezone.now()
        defaults = {
            'name':       code,
            'type':       Coupon.TYPE_PERCENTAGE,
            'value':      Decimal('10'),
            'start_date': now - timedelta(days=1),
            'end_date':   now + timedelta(days=30),
        }
        defaults.update(kwargs)
        return Coupon.objects.create(code=code, **defaults)
    return make


@pytest.fixture
def address():
    return {'street': '1 Main St', 'city': 'Springfield', 'state': 'IL', 'zip_code': '62701', 'country': 'US'}


@pytest.fixture
def make_order(customer, service, address):
    def make(user=None, service_=None, coupon_code=None, **kwargs):
        kwargs.setdefault('scheduled_date', timezone.now() + timedelta(days=3))
        kwargs.setdefault('scheduled_time', '10:00')
        kwargs.setdefault('address', address)
        return order_services.create_order(
            user or customer, service_ or service, coupon_code=coupon_code, **kwargs
        )
    return make


@pytest.fixture
def accepted_order(make_order, vendor_user):
    order = make_order()
    return order_services.accept_order(order, vendor_user)


class FakeGateway:
    """In-memory stand-in for the Stripe adapter."""
    name = 'stripe'
    REFERENCE_FIELD = 'stripe_payment_intent_id'

    verification = GatewayVerification(authentic=True, paid=True, status='succeeded', raw={'status': 'succeeded'})
    fail_intent = None
    on_verify = None
    on_refund = None

    def create_intent(self, transaction, order):
        if self.fail_intent is not None:
            raise self.fail_intent
        return GatewayIntent(
            reference=f'pi_{transaction.transaction_number}',
            payload={'client_secret': 'secret_123'},
        )

    def verify(self, transaction, token=None):
        type(self).verify_calls += 1
        hook = type(self).on_verify
        if hook is not None:
            hook(transaction)
        return self.verification

    def refund(self, transaction, amount):
        hook = type(self).on_refund
        if hook is not None:
            hook(transaction, amount)
        type(self).refunds.append(amount)
        return f're_{len(self.refunds)}'


@pytest.fixture
def fake_gateway(monkeypatch):
    gateway = type('FakeStripeGateway', (FakeGateway,), {'verify_calls': 0, 'refunds': []})
    monkeypatch.setitem(PaymentGatewayFactory.GATEWAYS, 'stripe', gateway)
    return gateway


class FakeResponse:
    def __init__(self, body, status=200):
        self.body = body
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'{self.status_code} error')

    def json(self):
        return self.body


@pytest.fixture
def http_reply(monkeypatch):
    """Answer every HTTP call a gateway makes with ``body``; returns the call log."""
    def install(body, status=200):
        calls = []

        def fake_request(method, url, timeout, **kwargs):
            calls.append((method, url, kwargs))
            return FakeResponse(body, status)

        monkeypatch.setattr(gateways.requests, 'request', fake_request)
        return calls
    return install


@pytest.fixture
def sslcommerz_payment(accepted_order, customer):
    """An open SSLCommerz payment; its merchant id is the transaction number."""
    txn = Transaction(
        order=accepted_order,
        user=customer,
        vendor_id=accepted_order.vendor_id,
        amount=accepted_order.total_amount,
        currency=accepted_order.currency,
        commission_rate=Decimal('5'),
        payment_method=Transaction.METHOD_SSLCOMMERZ,
        status=Transaction.STATUS_PENDING,
    )
    txn.save()
    return txn
