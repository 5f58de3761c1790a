from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    display_name = models.CharField(max_length=120, blank=True)
    # Cached Stripe customer; rewritten when Stripe no longer recognises it.
    stripe_customer_id = models.CharField(max_length=255, blank=True, null=True, db_index=True)

    @property
    def billing_name(self) -> str:
        return self.display_name or self.get_full_name() or self.email
