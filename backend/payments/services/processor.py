from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

import stripe
from django.conf import settings

CENT = Decimal("0.01")
DECLINE_CODES = {"card_declined", "card_error", "expired_card", "incorrect_cvc", "insufficient_funds"}
SETTLING_INTENT_STATUSES = {"succeeded", "processing", "requires_capture"}


def configure_stripe():
    if not settings.STRIPE_SECRET_KEY:
        raise RuntimeError("STRIPE_SECRET_KEY is not configured.")
    stripe.api_key = settings.STRIPE_SECRET_KEY


def to_minor_units(amount) -> int:
    """Stripe amounts are integers in the currency's smallest unit."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int | None) -> Decimal:
    return (Decimal(amount or 0) / 100).quantize(CENT)


def timestamp_to_datetime(value: int | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def is_missing_resource(exc: stripe.StripeError) -> bool:
    if getattr(exc, "code", None) == "resource_missing":
        return True
    message = getattr(exc, "user_message", None) or str(exc)
    return "No such customer" in message


def is_decline(exc: stripe.StripeError) -> bool:
    if isinstance(exc, stripe.CardError):
        return True
    return getattr(exc, "code", None) in DECLINE_CODES


def requires_authentication(exc: stripe.StripeError) -> bool:
    return getattr(exc, "code", None) == "authentication_required"


def error_payment_intent(exc: stripe.StripeError):
    """The PaymentIntent attached to a card error, when Stripe includes one."""
    error = getattr(exc, "error", None)
    return getattr(error, "payment_intent", None)


def release_payment_intent(payment_intent_id: str) -> bool:
    """
    Cancel an intent so its client secret can no longer be confirmed.

    Returns False, leaving the intent alone, when Stripe may still settle it.
    Stripe errors propagate; cancelling an intent that settled in the meantime
    fails on Stripe's side rather than here.
    """
    intent = stripe.PaymentIntent.retrieve(payment_intent_id)
    if intent.status in SETTLING_INTENT_STATUSES:
        return False
    if intent.status != "canceled":
        stripe.PaymentIntent.cancel(payment_intent_id)
    return True


def subscription_period_bounds(subscription) -> tuple[datetime | None, datetime | None]:
    """
    Current billing period of a subscription payload.

    Newer API versions report the period on the subscription items rather than
    the subscription itself; the start date and billing anchor are last resorts.
    """
    items = (subscription.get("items") or {}).get("data") or []
    item = items[0] if items else {}
    start = (
        subscription.get("current_period_start")
        or item.get("current_period_start")
        or subscription.get("start_date")
    )
    end = (
        subscription.get("current_period_end")
        or item.get("current_period_end")
        or subscription.get("billing_cycle_anchor")
    )
    return timestamp_to_datetime(start), timestamp_to_datetime(end)


def subscription_price_id(subscription) -> str | None:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    return (items[0].get("price") or {}).get("id")
