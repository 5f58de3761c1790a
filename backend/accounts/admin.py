from django.contrib import admin
from django.contrib.auth.admin import UserAdmin

from .models import User


@admin.register(User)
class LodgepointUserAdmin(UserAdmin):
    list_display = ("email", "display_name", "stripe_customer_id", "is_staff")
    search_fields = ("email", "display_name", "stripe_customer_id")
    fieldsets = UserAdmin.fieldsets + (
        ("Billing", {"fields": ("display_name", "stripe_customer_id")}),
    )
