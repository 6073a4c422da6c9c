from django.contrib import admin
from unfold.admin import ModelAdmin
from unfold.decorators import display

from .models import Payout


@admin.register(Payout)
class PayoutAdmin(ModelAdmin):
    list_display = (
        "payout_number",
        "vendor_display",
        "amount",
        "currency",
        "method",
        "status",
        "period_start",
        "period_end",
        "requested_at",
    )
    list_filter = ("status", "method", "requested_at")
    search_fields = ("payout_number", "vendor__business_name", "gateway_transaction_id")
    list_select_related = ("vendor",)
    date_hierarchy = "requested_at"
    readonly_fields = (
        "payout_number",
        "vendor",
        "amount",
        "gross_amount",
        "refund_deductions",
        "currency",
        "status",
        "transactions",
        "period_start",
        "period_end",
        "requested_at",
        "processed_at",
        "completed_at",
        "processed_by",
        "gateway_response",
    )

    @display(description="Vendor")
    def vendor_display(self, obj):
        return obj.vendor.business_name
