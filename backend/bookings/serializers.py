from rest_framework import serializers

from properties.models import Property

from .models import Booking, ReceiptNotification
from .pricing import build_quote


class StayDatesMixin:
    def validate(self, attrs):
        attrs = super().validate(attrs)
        check_in = attrs.get("check_in_date")
        check_out = attrs.get("check_out_date")
        if check_in and check_out and check_out <= check_in:
            raise serializers.ValidationError({"check_out_date": "Check-out must be after check-in."})
        listing = attrs.get("property")
        guests = attrs.get("num_guests")
        if listing and guests and guests > listing.max_guests:
            raise serializers.ValidationError(
                {"num_guests": f"{listing.title} sleeps at most {listing.max_guests} guests."}
            )
        return attrs


class BookingCreateSerializer(StayDatesMixin, serializers.Serializer):
    property_id = serializers.PrimaryKeyRelatedField(
        queryset=Property.objects.filter(is_active=True),
        source="property",
    )
    check_in_date = serializers.DateField()
    check_out_date = serializers.DateField()
    num_guests = serializers.IntegerField(min_value=1, required=False, default=1)
    total_price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False)
    platform_revenue = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False)
    billing_address_line1 = serializers.CharField(required=False, allow_blank=True, max_length=255)
    billing_city = serializers.CharField(required=False, allow_blank=True, max_length=120)
    billing_country = serializers.CharField(required=False, allow_blank=True, max_length=120)
    billing_postal_code = serializers.CharField(required=False, allow_blank=True, max_length=20)


class QuoteRequestSerializer(StayDatesMixin, serializers.Serializer):
    property_id = serializers.PrimaryKeyRelatedField(
        queryset=Property.objects.filter(is_active=True),
        source="property",
    )
    check_in_date = serializers.DateField()
    check_out_date = serializers.DateField()
    num_guests = serializers.IntegerField(min_value=1, required=False, default=1)

    def to_quote(self) -> dict:
        data = self.validated_data
        quote = build_quote(
            price_per_night=data["property"].price_per_night,
            check_in=data["check_in_date"],
            check_out=data["check_out_date"],
        )
        return {
            "property_id": data["property"].pk,
            "nights": quote.nights,
            "price_per_night": str(quote.price_per_night),
            "subtotal": str(quote.subtotal),
            "cleaning_fee": str(quote.cleaning_fee),
            "service_fee": str(quote.service_fee),
            "total": str(quote.total),
            "platform_revenue": str(quote.platform_revenue),
        }


class BookingSerializer(serializers.ModelSerializer):
    property_title = serializers.CharField(source="property.title", read_only=True)
    property_location = serializers.CharField(source="property.location", read_only=True)
    nights = serializers.IntegerField(read_only=True)
    receipt_status = serializers.SerializerMethodField()

    class Meta:
        model = Booking
        fields = [
            "id",
            "property",
            "property_title",
            "property_location",
            "check_in_date",
            "check_out_date",
            "nights",
            "num_guests",
            "total_price",
            "platform_revenue",
            "billing_address_line1",
            "billing_city",
            "billing_country",
            "billing_postal_code",
            "status",
            "stripe_payment_intent",
            "receipt_status",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_receipt_status(self, obj: Booking):
        try:
            return obj.receipt.status
        except ReceiptNotification.DoesNotExist:
            return None
