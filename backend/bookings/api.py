import logging

from django.utils import timezone
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from .models import Booking
from .serializers import BookingCreateSerializer, BookingSerializer, QuoteRequestSerializer
from .services.checkout import create_pending_booking, release_booking_intent

logger = logging.getLogger(__name__)


class BookingViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    viewsets.GenericViewSet,
):
    """A traveller's own bookings. Confirmation only ever comes from the Stripe webhook."""

    serializer_class = BookingSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ["status"]
    ordering_fields = ["created_at", "check_in_date"]

    def get_queryset(self):
        return (
            Booking.objects.filter(user=self.request.user)
            .select_related("property", "receipt")
            .order_by("-created_at", "-id")
        )

    def create(self, request, *args, **kwargs):
        serializer = BookingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        listing = data.pop("property")
        booking = create_pending_booking(user=request.user, property=listing, data=data)
        return Response(BookingSerializer(booking).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["post"], permission_classes=[permissions.AllowAny])
    def quote(self, request):
        serializer = QuoteRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return Response(serializer.to_quote())

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        booking = self.get_object()
        if booking.status == Booking.PENDING:
            release_booking_intent(booking)
            Booking.objects.filter(pk=booking.pk, status=Booking.PENDING).update(
                status=Booking.CANCELLED,
                updated_at=timezone.now(),
            )
            booking.refresh_from_db()
            if booking.status == Booking.CANCELLED:
                logger.info("Booking %s cancelled by user %s", booking.pk, request.user.pk)

        if booking.status == Booking.CONFIRMED:
            return Response(
                {"detail": "Confirmed bookings cannot be cancelled here."},
                status=status.HTTP_409_CONFLICT,
            )
        return Response(BookingSerializer(booking).data)
