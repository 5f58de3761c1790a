from django.contrib.auth import get_user_model
from django.db.models import Count
from rest_framework import generics, permissions
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from .serializers import CustomerSerializer, StaffBookingSerializer, StaffPropertySerializer
from .services import build_overview


class CustomerPagination(PageNumberPagination):
    page_size = 10


class OverviewView(APIView):
    """Revenue, booking counts and the latest activity for staff."""

    permission_classes = [permissions.IsAdminUser]

    def get(self, request, *args, **kwargs):
        overview = build_overview()
        overview["recent_bookings"] = StaffBookingSerializer(overview["recent_bookings"], many=True).data
        overview["recent_properties"] = StaffPropertySerializer(overview["recent_properties"], many=True).data
        return Response(overview)


class CustomerListView(generics.ListAPIView):
    serializer_class = CustomerSerializer
    permission_classes = [permissions.IsAdminUser]
    pagination_class = CustomerPagination
    filter_backends: list = []

    def get_queryset(self):
        return (
            get_user_model()
            .objects.filter(is_staff=False)
            .annotate(bookings_count=Count("bookings"))
            .order_by("-date_joined", "-id")
        )
