from django.contrib import admin
from unfold.admin import ModelAdmin

from .models import Vendor


@admin.register(Vendor)
class VendorAdmin(ModelAdmin):
    list_display = (
        "business_name",
        "user",
        "approval_status",
        "is_active",
        "commission_rate",
        "total_revenue",
        "total_commission",
        "completed_orders",
    )
    list_filter = ("approval_status", "is_active", "payout_method")
    search_fields = ("business_name", "email", "user__username")
    readonly_fields = ("total_revenue", "total_commission", "total_orders", "completed_orders", "created_at")
