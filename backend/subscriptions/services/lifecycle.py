from __future__ import annotations

import logging
from typing import Any, Dict

import stripe
from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound

from payments.exceptions import PaymentProcessorError, SubscriptionConflict
from payments.services.customers import resolve_customer
from payments.services.processor import (
    configure_stripe,
    subscription_period_bounds,
    subscription_price_id,
)

from ..models import SubscriptionPlan, UserSubscription

logger = logging.getLogger(__name__)


def current_subscription(user) -> UserSubscription | None:
    return (
        UserSubscription.objects.filter(user=user, status__in=UserSubscription.ENTITLED_STATUSES)
        .select_related("plan")
        .order_by("-start_date", "-id")
        .first()
    )


def subscription_status(user) -> Dict[str, Any]:
    subscription = current_subscription(user)
    if subscription is None:
        return {"is_premium": False, "status": UserSubscription.INACTIVE, "plan": None, "end_date": None}
    return {
        "is_premium": subscription.is_entitled,
        "status": subscription.status,
        "plan": subscription.plan.name,
        "end_date": subscription.end_date,
    }


def _adopt_remote_subscription(user, remote, fallback_plan: SubscriptionPlan) -> UserSubscription:
    """Mirror a subscription Stripe already reports as active."""
    price_id = subscription_price_id(remote)
    plan = SubscriptionPlan.objects.filter(stripe_price_id=price_id).first() if price_id else None
    period_start, period_end = subscription_period_bounds(remote)
    with transaction.atomic():
        UserSubscription.objects.filter(user=user).exclude(stripe_subscription_id=remote["id"]).update(
            status=UserSubscription.INACTIVE,
            updated_at=timezone.now(),
        )
        subscription, _ = UserSubscription.objects.update_or_create(
            stripe_subscription_id=remote["id"],
            defaults={
                "user": user,
                "plan": plan or fallback_plan,
                "status": UserSubscription.CANCELLING if remote.get("cancel_at_period_end") else UserSubscription.ACTIVE,
                "start_date": period_start or timezone.now(),
                "end_date": period_end,
            },
        )
    logger.info("Restored local record of Stripe subscription %s for user %s", remote["id"], user.pk)
    return subscription


def _client_secret(subscription) -> str | None:
    invoice = subscription.get("latest_invoice")
    if not invoice or isinstance(invoice, str):
        return None
    secret = invoice.get("confirmation_secret") or invoice.get("payment_intent") or {}
    if isinstance(secret, str):
        return None
    return secret.get("client_secret")


def create_subscription(user, plan: SubscriptionPlan) -> Dict[str, Any]:
    """
    Start a Stripe subscription for `plan`; it becomes active locally once the
    subscription webhook arrives.

    If Stripe already has an active subscription for the customer the request
    is refused and the local mirror is repaired from Stripe's copy.
    """
    try:
        resolution = resolve_customer(user)
        existing = stripe.Subscription.list(customer=resolution.customer_id, status="active", limit=1)
    except stripe.StripeError as exc:
        logger.exception("Could not look up subscriptions for user %s: %s", user.pk, exc)
        raise PaymentProcessorError() from exc

    if existing.data:
        _adopt_remote_subscription(user, existing.data[0], plan)
        raise SubscriptionConflict()

    try:
        subscription = stripe.Subscription.create(
            customer=resolution.customer_id,
            items=[{"price": plan.stripe_price_id}],
            payment_behavior="default_incomplete",
            payment_settings={"save_default_payment_method": "on_subscription"},
            expand=["latest_invoice.confirmation_secret"],
            metadata={"user_id": str(user.pk), "plan_id": str(plan.pk)},
        )
    except stripe.StripeError as exc:
        logger.exception("Stripe error creating subscription for user %s: %s", user.pk, exc)
        raise PaymentProcessorError() from exc

    logger.info("Created Stripe subscription %s for user %s (plan=%s)", subscription["id"], user.pk, plan.pk)
    payload = {
        "subscription_id": subscription["id"],
        "status": subscription.get("status"),
        "client_secret": _client_secret(subscription),
    }
    if resolution.warning:
        payload["warnings"] = [resolution.warning]
    return payload


def cancel_at_period_end(user) -> UserSubscription:
    """Stop renewal; access continues until the current period ends."""
    subscription = (
        UserSubscription.objects.filter(user=user, status=UserSubscription.ACTIVE).select_related("plan").first()
    )
    if subscription is None:
        raise NotFound("No active subscription.")

    configure_stripe()
    try:
        remote = stripe.Subscription.modify(subscription.stripe_subscription_id, cancel_at_period_end=True)
    except stripe.StripeError as exc:
        logger.exception("Stripe error cancelling subscription %s: %s", subscription.stripe_subscription_id, exc)
        raise PaymentProcessorError() from exc

    _, period_end = subscription_period_bounds(remote)
    subscription.status = UserSubscription.CANCELLING
    subscription.end_date = period_end or subscription.end_date
    subscription.save(update_fields=["status", "end_date", "updated_at"])
    logger.info("Subscription %s set to cancel at %s", subscription.stripe_subscription_id, subscription.end_date)
    return subscription
