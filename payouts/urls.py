# payouts/urls.py
from django.urls import path
from . import views

app_name = 'payouts'

urlpatterns = [
    # Vendor
    path('request/', views.request_payout, name='request_payout'),
    path('my-payouts/', views.my_payouts, name='my_payouts'),

    # Admin
    path('admin/all/', views.all_payouts, name='all_payouts'),
    path('admin/statistics/', views.payout_statistics, name='payout_statistics'),
    path('admin/<str:payout_number>/process/', views.process_payout, name='process_payout'),
    path('admin/<str:payout_number>/complete/', views.complete_payout, name='complete_payout'),
    path('admin/<str:payout_number>/fail/', views.fail_payout, name='fail_payout'),

    path('<str:payout_number>/', views.payout_detail, name='payout_detail'),
]
