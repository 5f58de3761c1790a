from django.contrib.auth import get_user_model
from rest_framework import serializers

from bookings.models import Booking
from properties.models import Property


class StaffBookingSerializer(serializers.ModelSerializer):
    property_title = serializers.CharField(source="property.title", read_only=True)
    user_email = serializers.EmailField(source="user.email", read_only=True)

    class Meta:
        model = Booking
        fields = [
            "id",
            "user_email",
            "property_title",
            "status",
            "total_price",
            "num_guests",
            "check_in_date",
            "check_out_date",
            "created_at",
        ]
        read_only_fields = fields


class StaffPropertySerializer(serializers.ModelSerializer):
    class Meta:
        model = Property
        fields = ["id", "title", "location", "price_per_night", "is_active", "created_at"]
        read_only_fields = fields


class CustomerSerializer(serializers.ModelSerializer):
    bookings_count = serializers.IntegerField(read_only=True)

    class Meta:
        model = get_user_model()
        fields = ["id", "email", "first_name", "last_name", "display_name", "date_joined", "bookings_count"]
        read_only_fields = fields
