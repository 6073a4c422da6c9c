from django.contrib import admin
from unfold.admin import ModelAdmin, TabularInline
from unfold.decorators import display

from .models import Order, OrderStatusHistory


class OrderStatusHistoryInline(TabularInline):
    model = OrderStatusHistory
    extra = 0
    can_delete = False
    readonly_fields = ("from_status", "to_status", "notes", "changed_by", "created_at")


@admin.register(Order)
class OrderAdmin(ModelAdmin):
    list_display = (
        "order_number",
        "customer_name",
        "vendor_display",
        "service",
        "scheduled_date",
        "total_amount",
        "status",
        "payment_status",
        "created_at",
    )
    list_filter = ("status", "payment_status", "cancelled_by", "created_at")
    search_fields = ("order_number", "customer_name", "customer_email", "vendor__business_name", "coupon_code")
    list_select_related = ("vendor", "service")
    date_hierarchy = "created_at"
    inlines = [OrderStatusHistoryInline]
    # Status and money only move through orders.services
    readonly_fields = (
        "order_number",
        "status",
        "payment_status",
        "paid_at",
        "service_price",
        "discount",
        "discount_amount",
        "subtotal",
        "tax",
        "platform_fee",
        "total_amount",
        "coupon",
        "coupon_code",
        "coupon_discount_amount",
        "created_at",
        "updated_at",
    )

    @display(description="Vendor")
    def vendor_display(self, obj):
        return obj.vendor.business_name
