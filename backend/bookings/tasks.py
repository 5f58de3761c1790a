"""Celery tasks for receipts and the pending-booking sweep."""

from __future__ import annotations

import logging
from datetime import timedelta

import stripe
from celery import shared_task
from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from payments.services.processor import configure_stripe, release_payment_intent

from .models import Booking, ReceiptNotification
from .services.emails import send_booking_receipt_email

logger = logging.getLogger(__name__)

RECEIPT_CLAIM_TIMEOUT = timedelta(minutes=5)


def _claim_receipt(notification_id: int) -> bool:
    """
    Move the notification to SENDING unless another worker holds it.

    A claim older than RECEIPT_CLAIM_TIMEOUT belongs to a worker that died
    mid-send and may be taken over.
    """
    now = timezone.now()
    claimable = ReceiptNotification.objects.filter(pk=notification_id).filter(
        Q(status__in=[ReceiptNotification.PENDING, ReceiptNotification.FAILED])
        | Q(status=ReceiptNotification.SENDING, updated_at__lte=now - RECEIPT_CLAIM_TIMEOUT)
    )
    return claimable.update(status=ReceiptNotification.SENDING, updated_at=now) == 1


@shared_task(name="bookings.send_booking_receipt")
def send_booking_receipt(notification_id: int) -> str:
    if not _claim_receipt(notification_id):
        current = (
            ReceiptNotification.objects.filter(pk=notification_id)
            .values_list("status", flat=True)
            .first()
        )
        return current or "missing"

    notification = ReceiptNotification.objects.select_related(
        "booking__property", "booking__user"
    ).get(pk=notification_id)

    try:
        send_booking_receipt_email(
            booking=notification.booking,
            amount=notification.amount,
            recipient=notification.recipient,
        )
    except Exception as exc:  # SMTP and template errors alike
        logger.exception("Receipt %s to %s failed: %s", notification.pk, notification.recipient, exc)
        notification.mark_failed(str(exc))
        return ReceiptNotification.FAILED

    notification.mark_sent()
    logger.info("Receipt sent to %s for booking %s", notification.recipient, notification.booking_id)
    return ReceiptNotification.SENT


@shared_task(name="bookings.retry_failed_receipts")
def retry_failed_receipts() -> dict[str, int]:
    """Re-send receipts that failed or never left the queue."""
    stale_before = timezone.now() - RECEIPT_CLAIM_TIMEOUT
    retryable = ReceiptNotification.objects.filter(
        attempts__lt=settings.RECEIPT_MAX_ATTEMPTS,
    ).exclude(status=ReceiptNotification.SENT).filter(updated_at__lte=stale_before)

    retried = 0
    for notification_id in retryable.values_list("pk", flat=True):
        send_booking_receipt.delay(notification_id)
        retried += 1
    return {"retried": retried}


def _intent_blocks_expiry(payment_intent_id: str) -> bool:
    """True when Stripe may still settle the intent, so the booking must stay pending."""
    try:
        return not release_payment_intent(payment_intent_id)
    except stripe.StripeError as exc:
        logger.warning("Could not release payment intent %s: %s", payment_intent_id, exc)
        return True


@shared_task(name="bookings.expire_pending_bookings")
def expire_pending_bookings() -> dict[str, int]:
    """
    Cancel bookings that stayed pending past BOOKING_PENDING_TTL_MINUTES.

    Checkout creates a new pending row for every attempt that does not pass a
    booking id, so abandoned attempts accumulate here. Bookings whose payment
    intent is still settling are left for the webhook.
    """
    cutoff = timezone.now() - timedelta(minutes=settings.BOOKING_PENDING_TTL_MINUTES)
    stale = Booking.objects.filter(status=Booking.PENDING, created_at__lte=cutoff)

    expired = 0
    skipped = 0
    stripe_ready = False
    for booking in stale.only("pk", "stripe_payment_intent"):
        if booking.stripe_payment_intent:
            if not stripe_ready:
                configure_stripe()
                stripe_ready = True
            if _intent_blocks_expiry(booking.stripe_payment_intent):
                skipped += 1
                continue
        updated = Booking.objects.filter(pk=booking.pk, status=Booking.PENDING).update(
            status=Booking.CANCELLED,
            updated_at=timezone.now(),
        )
        expired += updated

    if expired:
        logger.info("Expired %s pending bookings (%s still settling)", expired, skipped)
    return {"expired": expired, "skipped": skipped}
