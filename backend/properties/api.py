from rest_framework import permissions, viewsets

from .models import Property
from .serializers import PropertySerializer


class PropertyViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = PropertySerializer
    permission_classes = [permissions.AllowAny]
    filterset_fields = ["location"]
    ordering_fields = ["price_per_night", "title"]

    def get_queryset(self):
        return Property.objects.filter(is_active=True).select_related("host")
