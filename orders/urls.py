# orders/urls.py
from django.urls import path
from . import views

app_name = 'orders'

urlpatterns = [
    # Customer
    path('', views.create_order, name='create_order'),
    path('mine/', views.my_orders, name='my_orders'),

    # Vendor
    path('vendor/', views.vendor_orders, name='vendor_orders'),
    path('vendor/<str:order_number>/accept/', views.accept_order, name='accept_order'),
    path('vendor/<str:order_number>/reject/', views.reject_order, name='reject_order'),
    path('vendor/<str:order_number>/start/', views.start_order, name='start_order'),
    path('vendor/<str:order_number>/complete/', views.complete_order, name='complete_order'),
    path('vendor/<str:order_number>/cancel/', views.vendor_cancel_order, name='vendor_cancel_order'),

    # Admin
    path('admin/all/', views.admin_orders, name='admin_orders'),
    path('admin/statistics/', views.order_statistics, name='order_statistics'),
    path('admin/<str:order_number>/cancel/', views.admin_cancel_order, name='admin_cancel_order'),

    # Order Management
    path('<str:order_number>/', views.order_detail, name='order_detail'),
    path('<str:order_number>/cancel/', views.cancel_my_order, name='cancel_order'),
    path('<str:order_number>/reschedule/', views.reschedule_order, name='reschedule_order'),
    path('<str:order_number>/apply-coupon/', views.apply_coupon, name='apply_coupon'),
]
