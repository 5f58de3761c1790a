from django.contrib import admin

from .models import Payment


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("stripe_charge_id", "user", "kind", "booking", "amount", "currency", "status", "created_at")
    list_filter = ("kind", "status", "currency")
    search_fields = ("stripe_charge_id", "user__email")
    readonly_fields = ("created_at", "updated_at")
