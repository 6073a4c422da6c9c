from django.contrib import admin
from unfold.admin import ModelAdmin
from unfold.decorators import display

from .models import Transaction


@admin.register(Transaction)
class TransactionAdmin(ModelAdmin):
    list_display = (
        "transaction_number",
        "order_display",
        "type",
        "payment_method",
        "amount",
        "commission_amount",
        "vendor_amount",
        "status",
        "payout",
        "created_at",
    )
    list_filter = ("type", "status", "payment_method", "created_at")
    search_fields = (
        "transaction_number",
        "order__order_number",
        "vendor__business_name",
        "stripe_payment_intent_id",
        "paypal_payment_id",
        "razorpay_order_id",
    )
    list_select_related = ("order", "vendor", "payout")
    date_hierarchy = "created_at"
    # The ledger is written by payments.services only
    readonly_fields = (
        "transaction_number",
        "order",
        "user",
        "vendor",
        "parent",
        "type",
        "amount",
        "currency",
        "commission_rate",
        "commission_amount",
        "vendor_amount",
        "payment_method",
        "status",
        "refund_amount",
        "refunded_at",
        "refunded_by",
        "payout",
        "paid_out_at",
        "gateway_response",
        "processed_at",
        "completed_at",
        "created_at",
    )

    @display(description="Order")
    def order_display(self, obj):
        return obj.order.order_number

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
