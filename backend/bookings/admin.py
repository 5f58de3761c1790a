from django.contrib import admin

from .models import Booking, ReceiptNotification


class ReceiptNotificationInline(admin.StackedInline):
    model = ReceiptNotification
    extra = 0
    readonly_fields = ("recipient", "amount", "status", "attempts", "last_error", "sent_at")


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ("id", "property", "user", "check_in_date", "check_out_date", "total_price", "status")
    list_filter = ("status",)
    search_fields = ("property__title", "user__email", "stripe_payment_intent")
    readonly_fields = ("stripe_payment_intent", "created_at", "updated_at")
    inlines = [ReceiptNotificationInline]


@admin.register(ReceiptNotification)
class ReceiptNotificationAdmin(admin.ModelAdmin):
    list_display = ("booking", "recipient", "status", "attempts", "sent_at")
    list_filter = ("status",)
    search_fields = ("recipient", "booking__property__title")
