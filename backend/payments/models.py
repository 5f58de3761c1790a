from django.conf import settings
from django.db import models


class Payment(models.Model):
    """Ledger entry for a settled Stripe charge; one row per charge id."""

    KIND_BOOKING = "booking"
    KIND_SUBSCRIPTION = "subscription"
    KINDS = [
        (KIND_BOOKING, "Booking"),
        (KIND_SUBSCRIPTION, "Subscription"),
    ]

    stripe_charge_id = models.CharField(max_length=255, unique=True)
    # Set for invoice payments so an early invoice can be linked once its subscription row exists.
    stripe_subscription_id = models.CharField(max_length=255, blank=True, db_index=True)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="payments",
    )
    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
    )
    subscription = models.ForeignKey(
        "subscriptions.UserSubscription",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
    )
    kind = models.CharField(max_length=20, choices=KINDS)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=10, default="usd")
    status = models.CharField(max_length=30, default="succeeded")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.stripe_charge_id} {self.amount} {self.currency} ({self.kind})"
