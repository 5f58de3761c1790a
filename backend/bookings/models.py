import builtins

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone


class Booking(models.Model):
    """A stay at a property; confirmed only once Stripe reports the payment."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    STATUSES = [
        (PENDING, "Pending"),
        (CONFIRMED, "Confirmed"),
        (CANCELLED, "Cancelled"),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="bookings",
    )
    property = models.ForeignKey(
        "properties.Property",
        on_delete=models.PROTECT,
        related_name="bookings",
    )
    check_in_date = models.DateField()
    check_out_date = models.DateField()
    num_guests = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    total_price = models.DecimalField(max_digits=10, decimal_places=2)
    platform_revenue = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    billing_address_line1 = models.CharField(max_length=255, default="N/A")
    billing_city = models.CharField(max_length=120, default="N/A")
    billing_country = models.CharField(max_length=120, default="N/A")
    billing_postal_code = models.CharField(max_length=20, default="00000")
    status = models.CharField(max_length=12, choices=STATUSES, default=PENDING)
    stripe_payment_intent = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [models.Index(fields=["status", "created_at"], name="booking_status_created_idx")]

    def __str__(self):
        return f"{self.property.title} booking #{self.pk} ({self.status})"

    # The `property` field shadows the builtin inside this class body.
    @builtins.property
    def nights(self) -> int:
        return max((self.check_out_date - self.check_in_date).days, 1)

    def clean(self):
        super().clean()
        if self.check_in_date and self.check_out_date and self.check_out_date <= self.check_in_date:
            raise ValidationError({"check_out_date": "Check-out must be after check-in."})


class ReceiptNotification(models.Model):
    """Outbox row for the booking receipt email; one per booking."""

    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"
    STATUSES = [
        (PENDING, "Pending"),
        (SENDING, "Sending"),
        (SENT, "Sent"),
        (FAILED, "Failed"),
    ]

    booking = models.OneToOneField(
        "Booking",
        on_delete=models.CASCADE,
        related_name="receipt",
    )
    recipient = models.EmailField()
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    status = models.CharField(max_length=10, choices=STATUSES, default=PENDING)
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.CharField(max_length=500, blank=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"Receipt for booking #{self.booking_id} → {self.recipient} ({self.status})"

    def mark_sent(self):
        self.status = self.SENT
        self.attempts += 1
        self.sent_at = timezone.now()
        self.last_error = ""
        self.save(update_fields=["status", "attempts", "sent_at", "last_error", "updated_at"])

    def mark_failed(self, error: str):
        self.status = self.FAILED
        self.attempts += 1
        self.last_error = error[:500]
        self.save(update_fields=["status", "attempts", "last_error", "updated_at"])
