from __future__ import annotations

import logging
from dataclasses import dataclass

import stripe
from django.contrib.auth import get_user_model
from django.db import DatabaseError

from .processor import configure_stripe, is_missing_resource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CustomerResolution:
    customer_id: str
    created: bool = False
    persisted: bool = True
    warning: str | None = None


def _cached_customer_is_valid(customer_id: str) -> bool:
    try:
        customer = stripe.Customer.retrieve(customer_id)
    except stripe.InvalidRequestError as exc:
        if not is_missing_resource(exc):
            raise
        return False
    # Deleted customers still resolve, flagged as deleted.
    return not getattr(customer, "deleted", False)


def resolve_customer(user) -> CustomerResolution:
    """
    Return the Stripe customer for `user`, creating one when the cached id is
    missing or no longer known to Stripe.

    Only the creation path writes to the user row. If that write fails the new
    id is still returned (with `persisted=False`) so checkout can continue; the
    next call will create another customer.
    """
    configure_stripe()

    cached_id = user.stripe_customer_id
    if cached_id:
        if _cached_customer_is_valid(cached_id):
            return CustomerResolution(customer_id=cached_id)
        logger.warning("Stripe customer %s for user %s not found. Recreating.", cached_id, user.pk)

    customer = stripe.Customer.create(
        email=user.email,
        name=user.billing_name,
        metadata={"user_id": str(user.pk)},
    )

    try:
        get_user_model().objects.filter(pk=user.pk).update(stripe_customer_id=customer.id)
    except DatabaseError as exc:
        logger.error("Failed to store Stripe customer %s on user %s: %s", customer.id, user.pk, exc)
        return CustomerResolution(
            customer_id=customer.id,
            created=True,
            persisted=False,
            warning=f"Stripe customer {customer.id} was created but not saved on the profile.",
        )

    user.stripe_customer_id = customer.id
    logger.info("Created Stripe customer %s for user %s", customer.id, user.pk)
    return CustomerResolution(customer_id=customer.id, created=True)
