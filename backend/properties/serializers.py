from rest_framework import serializers

from .models import Property


class PropertySerializer(serializers.ModelSerializer):
    host_name = serializers.CharField(source="display_host_name", read_only=True)

    class Meta:
        model = Property
        fields = [
            "id",
            "title",
            "location",
            "description",
            "host_name",
            "price_per_night",
            "max_guests",
        ]
