from rest_framework import generics, permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import SubscriptionPlan
from .serializers import (
    SubscriptionCreateSerializer,
    SubscriptionPlanSerializer,
    SubscriptionStatusSerializer,
    UserSubscriptionSerializer,
)
from .services.lifecycle import cancel_at_period_end, create_subscription, subscription_status


class SubscriptionPlanListView(generics.ListAPIView):
    serializer_class = SubscriptionPlanSerializer
    permission_classes = [permissions.AllowAny]
    queryset = SubscriptionPlan.objects.filter(is_active=True)


class SubscriptionView(APIView):
    """Premium status for the current user, and subscription sign-up."""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, *args, **kwargs):
        return Response(SubscriptionStatusSerializer(subscription_status(request.user)).data)

    def post(self, request, *args, **kwargs):
        serializer = SubscriptionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payload = create_subscription(request.user, serializer.validated_data["plan"])
        return Response(payload, status=status.HTTP_201_CREATED)


class SubscriptionCancelView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, *args, **kwargs):
        subscription = cancel_at_period_end(request.user)
        return Response(UserSubscriptionSerializer(subscription).data)
