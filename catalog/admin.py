from django.contrib import admin
from unfold.admin import ModelAdmin
from unfold.decorators import display

from .models import Category, Service


@admin.register(Category)
class CategoryAdmin(ModelAdmin):
    list_display = ("name", "is_active")
    prepopulated_fields = {"slug": ("name",)}
    list_filter = ("is_active",)
    search_fields = ("name",)


@admin.register(Service)
class ServiceAdmin(ModelAdmin):
    list_display = [
        "name",
        "vendor_display",
        "category",
        "price",
        "discount",
        "is_active",
        "is_available",
    ]
    list_filter = ["category", "is_active", "is_available"]
    search_fields = ["name", "vendor__business_name"]
    list_select_related = ["vendor", "category"]

    @display(description="Vendor")
    def vendor_display(self, obj):
        return obj.vendor.business_name
