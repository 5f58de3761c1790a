from django.contrib import admin

from .models import Property


@admin.register(Property)
class PropertyAdmin(admin.ModelAdmin):
    list_display = ("title", "location", "price_per_night", "max_guests", "is_active")
    list_filter = ("is_active",)
    search_fields = ("title", "location", "host_name")
