from django.contrib import admin
from unfold.admin import ModelAdmin

from .models import Coupon, CouponUsage


@admin.register(Coupon)
class CouponAdmin(ModelAdmin):
    list_display = (
        "code",
        "name",
        "type",
        "value",
        "status",
        "usage_count",
        "usage_limit",
        "start_date",
        "end_date",
    )
    list_filter = ("status", "type", "applicable_for", "is_first_order_only")
    search_fields = ("code", "name")
    readonly_fields = ("usage_count", "created_at", "updated_at")
    filter_horizontal = ("applicable_users", "applicable_categories", "applicable_services", "applicable_vendors")


@admin.register(CouponUsage)
class CouponUsageAdmin(ModelAdmin):
    list_display = ("coupon", "order", "user", "discount_amount", "created_at")
    search_fields = ("coupon__code", "order__order_number", "user__email")
    readonly_fields = ("coupon", "order", "user", "discount_amount", "created_at")
