from django.contrib import admin

from .models import Discount, DiscountRedemption


@admin.register(Discount)
class DiscountAdmin(admin.ModelAdmin):
    list_display = (
        "title",
        "store",
        "code",
        "kind",
        "value",
        "scope",
        "priority",
        "stackable",
        "is_active",
        "used_count",
    )
    list_filter = ("store", "kind", "scope", "stackable", "is_active")
    search_fields = ("title", "code")
    readonly_fields = ("used_count", "created_at")


@admin.register(DiscountRedemption)
class DiscountRedemptionAdmin(admin.ModelAdmin):
    list_display = ("discount", "email", "order_reference", "amount", "created_at")
    search_fields = ("email", "order_reference", "discount__code")
