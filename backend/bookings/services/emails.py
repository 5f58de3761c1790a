from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.core.mail import send_mail

from bookings.models import Booking


def _format_from_email() -> str:
    default_from = settings.DEFAULT_FROM_EMAIL
    email_addr = default_from
    if '<' in default_from and default_from.endswith('>'):
        email_addr = default_from.split('<', 1)[1].rstrip('>')
    return f"Lodgepoint Receipts <{email_addr}>"


def send_booking_receipt_email(*, booking: Booking, amount: Decimal, recipient: str):
    listing = booking.property
    nights = booking.nights
    guests = booking.num_guests
    subject = f"Booking Confirmed: {listing.title}"

    body_lines = [
        f"Hi {booking.user.billing_name},",
        "",
        f"Your stay at {listing.title} is confirmed.",
        f"Hosted by {listing.display_host_name}" + (f" in {listing.location}." if listing.location else "."),
        "",
        f"Check-in: {booking.check_in_date:%b %d, %Y}",
        f"Check-out: {booking.check_out_date:%b %d, %Y}",
        f"Guests: {guests} guest{'s' if guests > 1 else ''}",
        f"Nights: {nights} night{'s' if nights > 1 else ''}",
        "",
        f"Total paid: ${amount:.2f}",
        "",
        f"View your bookings: {settings.FRONTEND_URL.rstrip('/')}/booking-history",
        "",
        "The Lodgepoint Team",
    ]
    send_mail(
        subject,
        "\n".join(body_lines),
        _format_from_email(),
        [recipient],
        fail_silently=False,
    )
