"""Figures for the staff dashboard, read from the payment ledger and bookings."""
from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from django.db.models import Count, Sum
from django.utils import timezone

from bookings.models import Booking
from payments.models import Payment
from properties.models import Property
from subscriptions.models import UserSubscription

RECENT_LIMIT = 5
TRAILING_DAYS = 30


def _money(value) -> str:
    return str(value or Decimal("0.00"))


def revenue_summary() -> dict:
    """
    Revenue as the ledger records it. Only settled Stripe charges count, so a
    booking paid after it was cancelled still shows up here.
    """
    since = timezone.now() - timedelta(days=TRAILING_DAYS)
    by_kind = {
        row["kind"]: row
        for row in Payment.objects.values("kind").annotate(total=Sum("amount"), count=Count("id"))
    }
    booking_row = by_kind.get(Payment.KIND_BOOKING, {})
    subscription_row = by_kind.get(Payment.KIND_SUBSCRIPTION, {})
    total = (booking_row.get("total") or Decimal("0")) + (subscription_row.get("total") or Decimal("0"))
    trailing = Payment.objects.filter(created_at__gte=since).aggregate(total=Sum("amount"))["total"]
    platform = Booking.objects.filter(status=Booking.CONFIRMED).aggregate(total=Sum("platform_revenue"))["total"]
    return {
        "total": _money(total),
        "bookings": _money(booking_row.get("total")),
        "subscriptions": _money(subscription_row.get("total")),
        "payments_count": booking_row.get("count", 0) + subscription_row.get("count", 0),
        "last_30_days": _money(trailing),
        "platform_share": _money(platform),
    }


def booking_counts() -> dict:
    counts = {status: 0 for status, _ in Booking.STATUSES}
    for row in Booking.objects.values("status").annotate(count=Count("id")):
        counts[row["status"]] = row["count"]
    return counts


def build_overview() -> dict:
    return {
        "revenue": revenue_summary(),
        "bookings": booking_counts(),
        "active_subscriptions": UserSubscription.objects.filter(
            status__in=UserSubscription.ENTITLED_STATUSES,
        ).count(),
        "recent_bookings": Booking.objects.select_related("property", "user").order_by("-created_at", "-id")[
            :RECENT_LIMIT
        ],
        "recent_properties": Property.objects.order_by("-created_at", "-id")[:RECENT_LIMIT],
    }
