from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings

CENT = Decimal("0.01")


def quantize(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PriceQuote:
    nights: int
    price_per_night: Decimal
    subtotal: Decimal
    cleaning_fee: Decimal
    service_fee: Decimal
    total: Decimal
    platform_revenue: Decimal


def count_nights(check_in: date, check_out: date) -> int:
    """Whole nights between the two dates; a same-day stay still bills one night."""
    return max((check_out - check_in).days, 1)


def platform_share(total) -> Decimal:
    return quantize(Decimal(total) * settings.PLATFORM_FEE_RATE)


def build_quote(*, price_per_night, check_in: date, check_out: date) -> PriceQuote:
    """
    Price a stay the way checkout presents it: nightly subtotal, flat cleaning fee and a
    service fee proportional to the subtotal. The platform keeps PLATFORM_FEE_RATE of the total.
    """
    nights = count_nights(check_in, check_out)
    nightly = quantize(price_per_night)
    subtotal = quantize(nightly * nights)
    cleaning_fee = quantize(settings.CLEANING_FEE)
    service_fee = quantize(subtotal * settings.SERVICE_FEE_RATE)
    total = subtotal + cleaning_fee + service_fee
    return PriceQuote(
        nights=nights,
        price_per_night=nightly,
        subtotal=subtotal,
        cleaning_fee=cleaning_fee,
        service_fee=service_fee,
        total=total,
        platform_revenue=platform_share(total),
    )
