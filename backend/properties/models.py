from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models


class Property(models.Model):
    """A rentable listing; bookings reference it for pricing and receipts."""

    host = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="hosted_properties",
    )
    host_name = models.CharField(max_length=200, blank=True)
    title = models.CharField(max_length=200)
    location = models.CharField(max_length=200, blank=True)
    description = models.TextField(blank=True)
    price_per_night = models.DecimalField(
        max_digits=10, decimal_places=2, validators=[MinValueValidator(0)]
    )
    max_guests = models.PositiveIntegerField(default=1)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["title", "id"]
        verbose_name_plural = "properties"

    def __str__(self):
        return f"{self.title} @ {self.location}" if self.location else self.title

    @property
    def display_host_name(self) -> str:
        if self.host_name:
            return self.host_name
        if self.host_id:
            return self.host.display_name or self.host.email
        return "Unknown Host"
