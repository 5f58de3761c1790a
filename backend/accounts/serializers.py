from django.contrib.auth import get_user_model
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from subscriptions.services.lifecycle import current_subscription

User = get_user_model()


def normalize_email(value: str) -> str:
    return value.strip().lower()


def ensure_display_name(user) -> None:
    if not user.display_name:
        user.display_name = user.get_full_name() or user.email
        user.save(update_fields=["display_name"])


def _email_in_use(email: str, exclude_pk=None) -> bool:
    queryset = User.objects.filter(email__iexact=email)
    if exclude_pk is not None:
        queryset = queryset.exclude(pk=exclude_pk)
    return queryset.exists()


class UserSerializer(serializers.ModelSerializer):
    """Profile as the booking and checkout screens see it."""

    is_premium = serializers.SerializerMethodField()
    has_billing_profile = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            "id",
            "email",
            "first_name",
            "last_name",
            "display_name",
            "is_premium",
            "has_billing_profile",
        ]
        read_only_fields = fields

    def get_is_premium(self, obj) -> bool:
        subscription = current_subscription(obj)
        return bool(subscription and subscription.is_entitled)

    def get_has_billing_profile(self, obj) -> bool:
        return bool(obj.stripe_customer_id)


class RegisterSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True, min_length=8)
    first_name = serializers.CharField(required=False, allow_blank=True, max_length=150)
    last_name = serializers.CharField(required=False, allow_blank=True, max_length=150)
    display_name = serializers.CharField(required=False, allow_blank=True, max_length=120)

    def validate_email(self, value: str) -> str:
        email = normalize_email(value)
        if _email_in_use(email):
            raise serializers.ValidationError("A user with this email already exists.")
        return email

    def create(self, validated_data):
        # Usernames mirror emails so login can stay email-only.
        email = validated_data.pop("email")
        user = User.objects.create_user(username=email, email=email, **validated_data)
        ensure_display_name(user)
        return user


class EmailTokenObtainPairSerializer(TokenObtainPairSerializer):
    """Exchange email + password for a JWT pair."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields.pop(self.username_field, None)
        self.fields["email"] = serializers.EmailField()

    def validate(self, attrs):
        credentials = {
            self.username_field: normalize_email(attrs["email"]),
            "password": attrs["password"],
        }
        data = super().validate(credentials)
        data["user"] = UserSerializer(self.user).data
        return data


class ProfileUpdateSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ["email", "first_name", "last_name", "display_name"]

    def validate_email(self, value: str) -> str:
        email = normalize_email(value)
        if _email_in_use(email, exclude_pk=self.instance.pk):
            raise serializers.ValidationError("A user with this email already exists.")
        return email

    def update(self, instance, validated_data):
        if "email" in validated_data:
            instance.username = validated_data["email"]
        user = super().update(instance, validated_data)
        ensure_display_name(user)
        return user
