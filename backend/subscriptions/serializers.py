from rest_framework import serializers

from .models import SubscriptionPlan, UserSubscription


class SubscriptionPlanSerializer(serializers.ModelSerializer):
    class Meta:
        model = SubscriptionPlan
        fields = ["id", "name", "stripe_price_id", "price", "interval"]


class UserSubscriptionSerializer(serializers.ModelSerializer):
    plan = SubscriptionPlanSerializer(read_only=True)
    is_premium = serializers.BooleanField(source="is_entitled", read_only=True)

    class Meta:
        model = UserSubscription
        fields = ["id", "plan", "status", "start_date", "end_date", "is_premium"]
        read_only_fields = fields


class SubscriptionCreateSerializer(serializers.Serializer):
    plan_id = serializers.PrimaryKeyRelatedField(
        queryset=SubscriptionPlan.objects.filter(is_active=True),
        source="plan",
    )


class SubscriptionStatusSerializer(serializers.Serializer):
    is_premium = serializers.BooleanField()
    status = serializers.CharField()
    plan = serializers.CharField(allow_null=True)
    end_date = serializers.DateTimeField(allow_null=True)
