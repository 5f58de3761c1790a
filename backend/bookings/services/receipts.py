from __future__ import annotations

import logging
from decimal import Decimal

from django.db import transaction

from bookings.models import Booking, ReceiptNotification

logger = logging.getLogger(__name__)


def _enqueue(notification_id: int) -> None:
    from bookings.tasks import send_booking_receipt

    try:
        send_booking_receipt.delay(notification_id)
    except Exception as exc:  # broker outages must not surface to the caller
        logger.error("Could not enqueue receipt %s; the retry sweep will pick it up: %s", notification_id, exc)


def queue_booking_receipt(booking: Booking, amount: Decimal) -> ReceiptNotification | None:
    """
    Record a receipt for `booking` and send it once the current transaction commits.

    The outbox row is unique per booking, so a redelivered payment event never
    produces a second receipt.
    """
    recipient = booking.user.email
    if not recipient:
        logger.warning("No email address for booking %s; receipt skipped.", booking.pk)
        return None

    notification, created = ReceiptNotification.objects.get_or_create(
        booking=booking,
        defaults={"recipient": recipient, "amount": amount},
    )
    if not created:
        logger.info("Receipt for booking %s already queued (%s).", booking.pk, notification.status)
        return notification

    transaction.on_commit(lambda: _enqueue(notification.pk))
    return notification
