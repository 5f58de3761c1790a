from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone


class SubscriptionPlan(models.Model):
    name = models.CharField(max_length=120)
    stripe_price_id = models.CharField(max_length=255, unique=True)
    price = models.DecimalField(max_digits=10, decimal_places=2)
    interval = models.CharField(max_length=20, default="month")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["price", "id"]

    def __str__(self):
        return f"{self.name} ({self.price}/{self.interval})"


class UserSubscription(models.Model):
    """Local mirror of a Stripe subscription; Stripe remains the source of truth."""

    ACTIVE = "active"
    CANCELLING = "cancelling"
    INACTIVE = "inactive"
    STATUSES = [
        (ACTIVE, "Active"),
        (CANCELLING, "Cancelling"),
        (INACTIVE, "Inactive"),
    ]
    ENTITLED_STATUSES = (ACTIVE, CANCELLING)

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="subscriptions",
    )
    plan = models.ForeignKey(
        "SubscriptionPlan",
        on_delete=models.PROTECT,
        related_name="subscriptions",
    )
    stripe_subscription_id = models.CharField(max_length=255, unique=True)
    status = models.CharField(max_length=12, choices=STATUSES, default=ACTIVE)
    start_date = models.DateTimeField(null=True, blank=True)
    end_date = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-start_date", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["user"],
                condition=Q(status="active"),
                name="one_active_subscription_per_user",
            ),
        ]

    def __str__(self):
        return f"{self.user} → {self.plan.name} ({self.status})"

    @property
    def is_entitled(self) -> bool:
        """Cancelling subscriptions keep premium access until their end date."""
        if self.status == self.ACTIVE:
            return True
        if self.status == self.CANCELLING:
            return self.end_date is None or self.end_date > timezone.now()
        return False
