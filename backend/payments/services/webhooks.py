"""
Stripe webhook reconciliation.

Events are verified, parsed into one dataclass per event class and applied by
exactly one handler. Stripe delivers at least once, so every handler is safe to
replay: ledger rows are keyed by charge id, subscriptions by Stripe
subscription id, and booking confirmation is guarded by the booking status.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Union

import stripe
from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from bookings.models import Booking
from bookings.services.receipts import queue_booking_receipt
from subscriptions.models import SubscriptionPlan, UserSubscription

from ..exceptions import ReconciliationWarning, WebhookAuthError
from ..models import Payment
from .processor import (
    configure_stripe,
    from_minor_units,
    subscription_period_bounds,
    subscription_price_id,
    timestamp_to_datetime,
)

logger = logging.getLogger(__name__)

APPLIED = "applied"
IGNORED = "ignored"
DUPLICATE = "duplicate"


@dataclass(frozen=True)
class WebhookOutcome:
    event_type: str
    action: str
    detail: str = ""


@dataclass(frozen=True)
class SubscriptionChanged:
    type: str
    subscription_id: str
    customer_id: str
    status: str
    cancel_at_period_end: bool
    price_id: Optional[str]
    period_start: Optional[datetime]
    period_end: Optional[datetime]


@dataclass(frozen=True)
class SubscriptionDeleted:
    type: str
    subscription_id: str


@dataclass(frozen=True)
class InvoicePaid:
    type: str
    invoice_id: str
    customer_id: str
    charge_id: Optional[str]
    subscription_id: Optional[str]
    billing_reason: Optional[str]
    amount_paid: Decimal
    currency: str
    period_end: Optional[datetime]


@dataclass(frozen=True)
class InvoicePaymentFailed:
    type: str
    invoice_id: str
    subscription_id: Optional[str]


@dataclass(frozen=True)
class PaymentIntentSucceeded:
    type: str
    payment_intent_id: str
    charge_id: Optional[str]
    invoice_id: Optional[str]
    booking_id: Optional[str]
    user_id: Optional[str]
    amount: Decimal
    currency: str


@dataclass(frozen=True)
class UnhandledEvent:
    type: str


WebhookEvent = Union[
    SubscriptionChanged,
    SubscriptionDeleted,
    InvoicePaid,
    InvoicePaymentFailed,
    PaymentIntentSucceeded,
    UnhandledEvent,
]


def _expandable_id(value) -> Optional[str]:
    """Stripe fields may hold an id string or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _parse_subscription_changed(event_type: str, obj: Dict[str, Any]) -> SubscriptionChanged:
    period_start, period_end = subscription_period_bounds(obj)
    return SubscriptionChanged(
        type=event_type,
        subscription_id=obj["id"],
        customer_id=_expandable_id(obj.get("customer")) or "",
        status=obj.get("status") or "",
        cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
        price_id=subscription_price_id(obj),
        period_start=period_start,
        period_end=period_end,
    )


def _parse_subscription_deleted(event_type: str, obj: Dict[str, Any]) -> SubscriptionDeleted:
    return SubscriptionDeleted(type=event_type, subscription_id=obj["id"])


def _invoice_subscription_id(obj: Dict[str, Any]) -> Optional[str]:
    subscription = _expandable_id(obj.get("subscription"))
    if subscription:
        return subscription
    details = (obj.get("parent") or {}).get("subscription_details") or {}
    return _expandable_id(details.get("subscription"))


def _invoice_period_end(obj: Dict[str, Any]) -> Optional[datetime]:
    lines = (obj.get("lines") or {}).get("data") or []
    for line in lines:
        end = (line.get("period") or {}).get("end")
        if end:
            return timestamp_to_datetime(end)
    return None


def _parse_invoice_paid(event_type: str, obj: Dict[str, Any]) -> InvoicePaid:
    charge_id = _expandable_id(obj.get("charge")) or _expandable_id(obj.get("payment_intent"))
    return InvoicePaid(
        type=event_type,
        invoice_id=obj["id"],
        customer_id=_expandable_id(obj.get("customer")) or "",
        charge_id=charge_id,
        subscription_id=_invoice_subscription_id(obj),
        billing_reason=obj.get("billing_reason"),
        amount_paid=from_minor_units(obj.get("amount_paid")),
        currency=obj.get("currency") or settings.STRIPE_CURRENCY,
        period_end=_invoice_period_end(obj),
    )


def _parse_invoice_payment_failed(event_type: str, obj: Dict[str, Any]) -> InvoicePaymentFailed:
    return InvoicePaymentFailed(
        type=event_type,
        invoice_id=obj["id"],
        subscription_id=_invoice_subscription_id(obj),
    )


def _parse_payment_intent_succeeded(event_type: str, obj: Dict[str, Any]) -> PaymentIntentSucceeded:
    metadata = obj.get("metadata") or {}
    return PaymentIntentSucceeded(
        type=event_type,
        payment_intent_id=obj["id"],
        charge_id=_expandable_id(obj.get("latest_charge")),
        invoice_id=_expandable_id(obj.get("invoice")),
        booking_id=metadata.get("booking_id") or None,
        user_id=metadata.get("user_id") or None,
        amount=from_minor_units(obj.get("amount_received") or obj.get("amount")),
        currency=obj.get("currency") or settings.STRIPE_CURRENCY,
    )


_PARSERS: Dict[str, Callable[[str, Dict[str, Any]], WebhookEvent]] = {
    "customer.subscription.created": _parse_subscription_changed,
    "customer.subscription.updated": _parse_subscription_changed,
    "customer.subscription.deleted": _parse_subscription_deleted,
    "invoice.paid": _parse_invoice_paid,
    "invoice.payment_failed": _parse_invoice_payment_failed,
    "payment_intent.succeeded": _parse_payment_intent_succeeded,
}


def parse_event(payload: Dict[str, Any]) -> WebhookEvent:
    event_type = payload.get("type") or ""
    parser = _PARSERS.get(event_type)
    if parser is None:
        return UnhandledEvent(type=event_type)
    return parser(event_type, payload["data"]["object"])


def _user_for_customer(customer_id: str):
    user = get_user_model().objects.filter(stripe_customer_id=customer_id).first() if customer_id else None
    if user is None:
        raise ReconciliationWarning(f"User not found for Stripe customer {customer_id or '<none>'}.")
    return user


def _handle_subscription_changed(event: SubscriptionChanged) -> WebhookOutcome:
    if event.period_end is None:
        raise ReconciliationWarning(f"Subscription {event.subscription_id} has no period dates.")

    now = timezone.now()
    if event.cancel_at_period_end and event.status == "active":
        updated = UserSubscription.objects.filter(
            stripe_subscription_id=event.subscription_id,
        ).update(status=UserSubscription.CANCELLING, end_date=event.period_end, updated_at=now)
        if not updated:
            raise ReconciliationWarning(f"No local subscription for {event.subscription_id}.")
        logger.info("Subscription %s marked for cancellation", event.subscription_id)
        return WebhookOutcome(event.type, APPLIED, UserSubscription.CANCELLING)

    if event.status != "active":
        return WebhookOutcome(event.type, IGNORED, f"status {event.status}")

    user = _user_for_customer(event.customer_id)
    plan = SubscriptionPlan.objects.filter(stripe_price_id=event.price_id).first() if event.price_id else None
    if plan is None:
        raise ReconciliationWarning(f"Plan not found for price {event.price_id}.")

    with transaction.atomic():
        UserSubscription.objects.filter(user=user).exclude(
            stripe_subscription_id=event.subscription_id,
        ).update(status=UserSubscription.INACTIVE, updated_at=now)
        local, _ = UserSubscription.objects.update_or_create(
            stripe_subscription_id=event.subscription_id,
            defaults={
                "user": user,
                "plan": plan,
                "start_date": event.period_start or now,
                "end_date": event.period_end,
                "status": UserSubscription.ACTIVE,
            },
        )
        # invoice.paid may have arrived first.
        linked = Payment.objects.filter(
            subscription=None,
            stripe_subscription_id=event.subscription_id,
        ).update(subscription=local, updated_at=now)
    if linked:
        logger.info("Linked %s earlier invoice payments to subscription %s", linked, event.subscription_id)
    logger.info("Subscription %s activated for user %s", event.subscription_id, user.pk)
    return WebhookOutcome(event.type, APPLIED, UserSubscription.ACTIVE)


def _renewed_period_end(event: InvoicePaid) -> Optional[datetime]:
    if event.period_end:
        return event.period_end
    configure_stripe()
    subscription = stripe.Subscription.retrieve(event.subscription_id)
    return timestamp_to_datetime(getattr(subscription, "current_period_end", None))


def _handle_invoice_paid(event: InvoicePaid) -> WebhookOutcome:
    user = _user_for_customer(event.customer_id)
    charge_key = event.charge_id or event.invoice_id
    subscription = None
    if event.subscription_id:
        subscription = UserSubscription.objects.filter(stripe_subscription_id=event.subscription_id).first()

    Payment.objects.update_or_create(
        stripe_charge_id=charge_key,
        defaults={
            "user": user,
            "booking": None,
            "subscription": subscription,
            "stripe_subscription_id": event.subscription_id or "",
            "kind": Payment.KIND_SUBSCRIPTION,
            "amount": event.amount_paid,
            "currency": event.currency,
            "status": "succeeded",
        },
    )

    if event.subscription_id and event.billing_reason == "subscription_cycle":
        try:
            period_end = _renewed_period_end(event)
        except stripe.StripeError as exc:
            logger.exception("Renewal lookup failed for %s: %s", event.subscription_id, exc)
            period_end = None
        if period_end:
            UserSubscription.objects.filter(stripe_subscription_id=event.subscription_id).update(
                end_date=period_end,
                status=UserSubscription.ACTIVE,
                updated_at=timezone.now(),
            )
            logger.info("Subscription %s renewed until %s", event.subscription_id, period_end)
    return WebhookOutcome(event.type, APPLIED, charge_key)


def _handle_payment_intent_succeeded(event: PaymentIntentSucceeded) -> WebhookOutcome:
    if event.invoice_id:
        return WebhookOutcome(event.type, IGNORED, "subscription charge")
    if not event.booking_id:
        raise ReconciliationWarning(f"Payment intent {event.payment_intent_id} has no booking_id metadata.")

    booking = Booking.objects.filter(pk=event.booking_id).first() if event.booking_id.isdigit() else None
    if booking is None:
        raise ReconciliationWarning(f"Booking {event.booking_id} not found.")
    if event.user_id and event.user_id != str(booking.user_id):
        raise ReconciliationWarning(
            f"Payment intent {event.payment_intent_id} names user {event.user_id} but booking {booking.pk} "
            f"belongs to {booking.user_id}."
        )

    charge_key = event.charge_id or event.payment_intent_id
    with transaction.atomic():
        booking = Booking.objects.select_for_update().select_related("user", "property").get(pk=booking.pk)
        if booking.status == Booking.CONFIRMED and Payment.objects.filter(stripe_charge_id=charge_key).exists():
            return WebhookOutcome(event.type, DUPLICATE, f"booking {booking.pk}")

        Payment.objects.update_or_create(
            stripe_charge_id=charge_key,
            defaults={
                "user_id": booking.user_id,
                "booking": booking,
                "subscription": None,
                "kind": Payment.KIND_BOOKING,
                "amount": event.amount,
                "currency": event.currency,
                "status": "succeeded",
            },
        )

        if booking.status != Booking.PENDING:
            logger.warning(
                "Payment %s settled for %s booking %s; recorded without confirming.",
                charge_key,
                booking.status,
                booking.pk,
            )
            return WebhookOutcome(event.type, APPLIED, f"booking {booking.pk} is {booking.status}")

        booking.status = Booking.CONFIRMED
        booking.stripe_payment_intent = booking.stripe_payment_intent or event.payment_intent_id
        booking.save(update_fields=["status", "stripe_payment_intent", "updated_at"])
        queue_booking_receipt(booking, event.amount)

    logger.info("Booking %s confirmed by %s", booking.pk, charge_key)
    return WebhookOutcome(event.type, APPLIED, f"booking {booking.pk} confirmed")


def _handle_invoice_payment_failed(event: InvoicePaymentFailed) -> WebhookOutcome:
    if not event.subscription_id:
        return WebhookOutcome(event.type, IGNORED, "no subscription on invoice")
    UserSubscription.objects.filter(stripe_subscription_id=event.subscription_id).update(
        status=UserSubscription.INACTIVE,
        updated_at=timezone.now(),
    )
    logger.info("Payment failed for subscription %s", event.subscription_id)
    return WebhookOutcome(event.type, APPLIED, UserSubscription.INACTIVE)


def _handle_subscription_deleted(event: SubscriptionDeleted) -> WebhookOutcome:
    now = timezone.now()
    UserSubscription.objects.filter(stripe_subscription_id=event.subscription_id).update(
        status=UserSubscription.INACTIVE,
        end_date=now,
        updated_at=now,
    )
    logger.info("Subscription %s cancelled", event.subscription_id)
    return WebhookOutcome(event.type, APPLIED, UserSubscription.INACTIVE)


def _handle_unhandled(event: UnhandledEvent) -> WebhookOutcome:
    logger.info("Unhandled Stripe event type: %s", event.type)
    return WebhookOutcome(event.type, IGNORED, "unhandled event type")


_HANDLERS: Dict[type, Callable[[Any], WebhookOutcome]] = {
    SubscriptionChanged: _handle_subscription_changed,
    SubscriptionDeleted: _handle_subscription_deleted,
    InvoicePaid: _handle_invoice_paid,
    InvoicePaymentFailed: _handle_invoice_payment_failed,
    PaymentIntentSucceeded: _handle_payment_intent_succeeded,
    UnhandledEvent: _handle_unhandled,
}


def verify_event(payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
    """Check the Stripe signature before anything else reads the payload."""
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("Stripe webhook secret not configured.")
        raise WebhookAuthError("Webhook secret not configured.")
    if not signature:
        logger.warning("Stripe webhook received without a signature header.")
        raise WebhookAuthError("Webhook signature missing.")

    try:
        stripe.Webhook.construct_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET)
    except ValueError:
        logger.warning("Invalid payload received on Stripe webhook.")
        raise WebhookAuthError("Invalid payload.")
    except stripe.SignatureVerificationError:
        logger.warning("Invalid Stripe signature on webhook delivery.")
        raise WebhookAuthError("Invalid signature.")

    try:
        return json.loads(payload)
    except ValueError:
        raise WebhookAuthError("Invalid payload.")


def reconcile_webhook(payload: bytes, signature: Optional[str]) -> WebhookOutcome:
    """
    Verify and apply one Stripe delivery.

    Raises WebhookAuthError for unverifiable deliveries. Events missing the
    linkage they need are logged and reported as ignored so Stripe stops retrying.
    """
    event = parse_event(verify_event(payload, signature))
    handler = _HANDLERS[type(event)]
    try:
        with transaction.atomic():
            return handler(event)
    except ReconciliationWarning as warning:
        logger.warning("Stripe %s not applied: %s", event.type, warning)
        return WebhookOutcome(event.type, IGNORED, str(warning))
