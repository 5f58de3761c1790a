import logging

from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from bookings.services.checkout import initiate_booking_payment

from .exceptions import WebhookAuthError
from .serializers import PaymentIntentRequestSerializer
from .services.methods import create_setup_intent, detach_saved_card, list_saved_cards
from .services.webhooks import reconcile_webhook

logger = logging.getLogger(__name__)


class PaymentIntentView(APIView):
    """Create or reuse a pending booking and start the Stripe charge for it."""

    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, *args, **kwargs):
        serializer = PaymentIntentRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = initiate_booking_payment(user=request.user, data=serializer.validated_data)
        return Response(result.as_response())


class PaymentMethodListView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, *args, **kwargs):
        return Response({"payment_methods": list_saved_cards(request.user)})


class PaymentMethodSetupView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, *args, **kwargs):
        return Response(create_setup_intent(request.user), status=status.HTTP_201_CREATED)


class PaymentMethodDetailView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def delete(self, request, payment_method_id, *args, **kwargs):
        detach_saved_card(request.user, payment_method_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class StripeWebhookView(APIView):
    """Receive Stripe webhook events for bookings and subscriptions."""

    permission_classes: list = []
    authentication_classes: list = []

    def post(self, request, *args, **kwargs):
        try:
            outcome = reconcile_webhook(request.body, request.META.get("HTTP_STRIPE_SIGNATURE"))
        except WebhookAuthError as exc:
            return Response({"detail": exc.detail}, status=status.HTTP_400_BAD_REQUEST)
        except Exception as exc:
            logger.exception("Error handling Stripe webhook: %s", exc)
            return Response(status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        return Response({"received": True, "action": outcome.action})
