from rest_framework import serializers


class PaymentIntentRequestSerializer(serializers.Serializer):
    total = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True)
    booking_id = serializers.IntegerField(required=False, min_value=1)
    property_id = serializers.IntegerField(required=False, min_value=1)
    check_in_date = serializers.DateField(required=False)
    check_out_date = serializers.DateField(required=False)
    num_guests = serializers.IntegerField(required=False, min_value=1)
    platform_revenue = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, min_value=0)
    billing_address_line1 = serializers.CharField(required=False, allow_blank=True, max_length=255)
    billing_city = serializers.CharField(required=False, allow_blank=True, max_length=120)
    billing_country = serializers.CharField(required=False, allow_blank=True, max_length=120)
    billing_postal_code = serializers.CharField(required=False, allow_blank=True, max_length=20)
    payment_method_id = serializers.CharField(required=False, allow_blank=True, max_length=255)

    def validate(self, attrs):
        check_in = attrs.get("check_in_date")
        check_out = attrs.get("check_out_date")
        if check_in and check_out and check_out <= check_in:
            raise serializers.ValidationError({"check_out_date": "Check-out must be after check-in."})
        if not attrs.get("booking_id") and not attrs.get("property_id"):
            raise serializers.ValidationError({"property_id": "Provide a property or an existing booking."})
        return attrs
