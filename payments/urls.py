# payments/urls.py
from django.urls import path
from . import views

app_name = 'payments'

urlpatterns = [
    # Checkout
    path('initiate/', views.initiate_payment, name='initiate_payment'),
    path('razorpay/verify/', views.razorpay_verify, name='razorpay_verify'),
    path('paypal/execute/', views.paypal_execute, name='paypal_execute'),

    # Gateway callbacks
    path('webhooks/stripe/', views.stripe_webhook, name='stripe_webhook'),
    path('sslcommerz/ipn/', views.sslcommerz_ipn, name='sslcommerz_ipn'),

    # History
    path('my-transactions/', views.my_transactions, name='my_transactions'),
    path('vendor-transactions/', views.vendor_transactions, name='vendor_transactions'),

    # Admin
    path('statistics/', views.revenue_statistics, name='revenue_statistics'),
    path('<str:transaction_number>/refund/', views.refund_transaction, name='refund_transaction'),
    path('<str:transaction_number>/verify/', views.verify_payment, name='verify_payment'),
]
