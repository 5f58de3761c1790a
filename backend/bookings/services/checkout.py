from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Dict, Optional

import stripe
from django.conf import settings
from django.db import DatabaseError, transaction

from bookings.models import Booking
from bookings.pricing import build_quote, platform_share, quantize
from payments.exceptions import (
    BookingPersistError,
    InvalidRequest,
    PaymentDeclined,
    PaymentInProgress,
    PaymentProcessorError,
)
from payments.services.customers import resolve_customer
from payments.services.processor import (
    configure_stripe,
    error_payment_intent,
    is_decline,
    release_payment_intent,
    requires_authentication,
    to_minor_units,
)
from properties.models import Property

logger = logging.getLogger(__name__)

BILLING_FIELDS = (
    "billing_address_line1",
    "billing_city",
    "billing_country",
    "billing_postal_code",
)


@dataclass(frozen=True)
class CheckoutResult:
    """
    Outcome of a charge initiation.

    New-card checkouts carry a `client_secret` for client-side confirmation.
    Saved-card checkouts are `charged` synchronously, or need `requires_action`
    when the bank asks for 3-D Secure. Either way the webhook is authoritative.
    """

    booking: Booking
    payment_intent_id: str
    status: str
    client_secret: Optional[str] = None
    charged: bool = False
    requires_action: bool = False
    warnings: tuple = field(default_factory=tuple)

    def as_response(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "booking_id": self.booking.pk,
            "payment_intent_id": self.payment_intent_id,
            "status": self.status,
        }
        if self.client_secret:
            payload["client_secret"] = self.client_secret
        if self.charged:
            payload["success"] = True
        if self.requires_action:
            payload["requires_action"] = True
        if self.warnings:
            payload["warnings"] = list(self.warnings)
        return payload


def create_pending_booking(*, user, property: Property, data: Dict[str, Any]) -> Booking:
    """
    Insert a `pending` booking. Prices omitted by the caller are filled from the
    server-side quote and billing fields fall back to model placeholders.
    """
    check_in = data["check_in_date"]
    check_out = data["check_out_date"]
    total = data.get("total_price")
    if total is None:
        total = build_quote(
            price_per_night=property.price_per_night,
            check_in=check_in,
            check_out=check_out,
        ).total
    total = quantize(total)
    platform_revenue = data.get("platform_revenue")
    if platform_revenue is None:
        platform_revenue = platform_share(total)

    billing = {name: data[name] for name in BILLING_FIELDS if data.get(name)}
    try:
        with transaction.atomic():
            booking = Booking.objects.create(
                user=user,
                property=property,
                check_in_date=check_in,
                check_out_date=check_out,
                num_guests=data.get("num_guests") or 1,
                total_price=total,
                platform_revenue=quantize(platform_revenue),
                status=Booking.PENDING,
                **billing,
            )
    except DatabaseError as exc:
        logger.exception("Failed to create booking for user %s: %s", user.pk, exc)
        raise BookingPersistError() from exc

    logger.info("Created pending booking %s for user %s (total=%s)", booking.pk, user.pk, total)
    return booking


def _validated_total(data: Dict[str, Any]) -> Decimal:
    total = data.get("total")
    if total is None or Decimal(total) <= 0:
        raise InvalidRequest("Invalid total amount.")
    return quantize(total)


def _pending_booking_for(user, booking_id, total: Decimal) -> Booking:
    booking = (
        Booking.objects.select_related("property")
        .filter(pk=booking_id, user=user)
        .first()
    )
    if booking is None:
        raise InvalidRequest("Booking not found.")
    if booking.status != Booking.PENDING:
        raise InvalidRequest("Booking is no longer awaiting payment.")
    if booking.total_price != total:
        raise InvalidRequest("Total does not match the booking.")
    return booking


def release_booking_intent(booking: Booking) -> None:
    """
    Cancel the intent attached to a pending booking so its client secret can't
    be confirmed any more. Raises PaymentInProgress when Stripe may still
    settle it; the webhook decides that booking's fate instead.
    """
    if not booking.stripe_payment_intent:
        return
    try:
        configure_stripe()
        released = release_payment_intent(booking.stripe_payment_intent)
    except (stripe.StripeError, RuntimeError) as exc:
        logger.exception(
            "Could not release payment intent %s for booking %s: %s",
            booking.stripe_payment_intent,
            booking.pk,
            exc,
        )
        raise PaymentProcessorError() from exc
    if not released:
        logger.info("Payment intent %s for booking %s is settling", booking.stripe_payment_intent, booking.pk)
        raise PaymentInProgress()
    logger.info("Released payment intent %s for booking %s", booking.stripe_payment_intent, booking.pk)


def _booking_from_request(user, data: Dict[str, Any], total: Decimal) -> Booking:
    property = Property.objects.filter(pk=data.get("property_id"), is_active=True).first()
    if property is None:
        raise InvalidRequest("Property not found.")
    if not data.get("check_in_date") or not data.get("check_out_date"):
        raise InvalidRequest("Check-in and check-out dates are required.")
    return create_pending_booking(
        user=user,
        property=property,
        data={**data, "total_price": total},
    )


def _attach_payment_intent(booking: Booking, payment_intent_id: str) -> None:
    booking.stripe_payment_intent = payment_intent_id
    try:
        Booking.objects.filter(pk=booking.pk).update(stripe_payment_intent=payment_intent_id)
    except DatabaseError as exc:
        # The webhook finds the booking through intent metadata, so this is not fatal.
        logger.error("Could not attach payment intent %s to booking %s: %s", payment_intent_id, booking.pk, exc)


def _charge_saved_method(*, booking: Booking, amount_cents: int, customer_id: str, payment_method_id: str, metadata):
    try:
        intent = stripe.PaymentIntent.create(
            amount=amount_cents,
            currency=settings.STRIPE_CURRENCY,
            customer=customer_id,
            payment_method=payment_method_id,
            confirm=True,
            off_session=True,
            metadata=metadata,
        )
    except stripe.StripeError as exc:
        declined_intent = error_payment_intent(exc)
        if declined_intent is not None:
            _attach_payment_intent(booking, declined_intent.id)
        if requires_authentication(exc) and declined_intent is not None:
            logger.info("Booking %s requires card authentication", booking.pk)
            return CheckoutResult(
                booking=booking,
                payment_intent_id=declined_intent.id,
                status=getattr(declined_intent, "status", "requires_action"),
                client_secret=declined_intent.client_secret,
                requires_action=True,
            )
        if is_decline(exc):
            logger.info("Saved card declined for booking %s: %s", booking.pk, getattr(exc, "code", ""))
            raise PaymentDeclined(getattr(exc, "user_message", None) or PaymentDeclined.default_detail) from exc
        logger.exception("Stripe error charging saved card for booking %s: %s", booking.pk, exc)
        raise PaymentProcessorError() from exc

    _attach_payment_intent(booking, intent.id)
    logger.info("Saved card charged for booking %s (intent=%s, status=%s)", booking.pk, intent.id, intent.status)
    return CheckoutResult(
        booking=booking,
        payment_intent_id=intent.id,
        status=intent.status,
        charged=intent.status == "succeeded",
        requires_action=intent.status == "requires_action",
        client_secret=intent.client_secret if intent.status == "requires_action" else None,
    )


def _start_new_method(*, booking: Booking, amount_cents: int, customer_id: str, metadata):
    try:
        intent = stripe.PaymentIntent.create(
            amount=amount_cents,
            currency=settings.STRIPE_CURRENCY,
            customer=customer_id,
            automatic_payment_methods={"enabled": True},
            metadata=metadata,
        )
    except stripe.StripeError as exc:
        logger.exception("Stripe error creating payment intent for booking %s: %s", booking.pk, exc)
        raise PaymentProcessorError() from exc

    _attach_payment_intent(booking, intent.id)
    return CheckoutResult(
        booking=booking,
        payment_intent_id=intent.id,
        status=intent.status,
        client_secret=intent.client_secret,
    )


def initiate_booking_payment(*, user, data: Dict[str, Any]) -> CheckoutResult:
    """
    Create (or reuse) a pending booking and start charging for it.

    Passing `booking_id` reuses that booking if it belongs to the user and is still
    pending, which lets a declined saved card be retried without a new row. The
    booking's earlier intent is cancelled first, so at most one intent per
    booking stays confirmable. Otherwise a fresh booking is created from the
    property and stay details.
    """
    total = _validated_total(data)

    if data.get("booking_id"):
        booking = _pending_booking_for(user, data["booking_id"], total)
        release_booking_intent(booking)
    else:
        booking = _booking_from_request(user, data, total)

    try:
        resolution = resolve_customer(user)
    except (stripe.StripeError, RuntimeError) as exc:
        logger.exception("Could not resolve Stripe customer for user %s: %s", user.pk, exc)
        raise PaymentProcessorError() from exc

    metadata = {"booking_id": str(booking.pk), "user_id": str(user.pk)}
    amount_cents = to_minor_units(total)
    payment_method_id = data.get("payment_method_id")

    if payment_method_id:
        result = _charge_saved_method(
            booking=booking,
            amount_cents=amount_cents,
            customer_id=resolution.customer_id,
            payment_method_id=payment_method_id,
            metadata=metadata,
        )
    else:
        result = _start_new_method(
            booking=booking,
            amount_cents=amount_cents,
            customer_id=resolution.customer_id,
            metadata=metadata,
        )

    if resolution.warning:
        return replace(result, warnings=(resolution.warning,))
    return result
