from django.contrib import admin

from artmarket.models import Account, Asset, Sale, SettlementAttempt


@admin.register(Account)
class AccountAdmin(admin.ModelAdmin):
    list_display = ("wallet_address", "role", "display_name", "created_at")
    list_filter = ("role",)
    search_fields = ("wallet_address", "display_name", "email")


@admin.register(Asset)
class AssetAdmin(admin.ModelAdmin):
    list_display = ("title", "token_id", "serial_number", "owner", "price_hbar", "is_listed")
    list_filter = ("is_listed",)
    search_fields = ("title", "token_id")


@admin.register(Sale)
class SaleAdmin(admin.ModelAdmin):
    list_display = ("transaction_id", "asset", "buyer", "seller", "sale_price_hbar", "status", "created_at")
    list_filter = ("status",)
    search_fields = ("transaction_id",)


@admin.register(SettlementAttempt)
class SettlementAttemptAdmin(admin.ModelAdmin):
    list_display = ("id", "asset", "buyer", "status", "transaction_id", "failure_reason", "created_at")
    list_filter = ("status",)
    search_fields = ("transaction_id",)
