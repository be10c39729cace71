"""Rental pricing: tiered hour/day/week rates, GST and late fees.

Everything here is pure. Durations are computed in whole seconds and
money in Decimal, so the same rate card and interval always price to
the same amount.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from .exceptions import InvalidRequest

CENT = Decimal("0.01")
GST_RATE = Decimal("0.18")

HOUR = 60 * 60
DAY = 24 * HOUR
WEEK = 7 * DAY

WEEKLY = "WEEKLY"
DAILY = "DAILY"
HOURLY = "HOURLY"


def money(value) -> Decimal:
    """Round to 2 decimal places, half up. Floats go through str() to avoid binary noise."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def as_utc(value: dt.datetime) -> dt.datetime:
    # naive values are treated as UTC (SQLite drops tzinfo on the way back)
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def _ceil_div(a: int, b: int) -> int:
    return -(-a // b)


@dataclass(frozen=True)
class RentalInterval:
    start: dt.datetime
    end: dt.datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", as_utc(self.start))
        object.__setattr__(self, "end", as_utc(self.end))
        if self.start >= self.end:
            raise InvalidRequest(
                "Rental end must be after rental start",
                start=self.start.isoformat(),
                end=self.end.isoformat(),
            )

    @property
    def seconds(self) -> int:
        delta = self.end - self.start
        return delta.days * DAY + delta.seconds + (1 if delta.microseconds else 0)

    def overlaps(self, other: "RentalInterval") -> bool:
        """Boundary-inclusive: an interval ending exactly when another starts overlaps it."""
        return self.start <= other.end and other.start <= self.end


@dataclass(frozen=True)
class RateCard:
    per_hour: Optional[Decimal] = None
    per_day: Optional[Decimal] = None
    per_week: Optional[Decimal] = None

    @classmethod
    def from_product(cls, product) -> "RateCard":
        return cls(
            per_hour=_rate(product.price_per_hour),
            per_day=_rate(product.price_per_day),
            per_week=_rate(product.price_per_week),
        )

    def is_empty(self) -> bool:
        return not (self.per_hour or self.per_day or self.per_week)


def _rate(value) -> Optional[Decimal]:
    if value is None:
        return None
    return money(value)


@dataclass(frozen=True)
class DurationBreakdown:
    hours: Decimal
    days: Decimal
    weeks: Decimal

    def to_dict(self) -> dict:
        return {"hours": self.hours, "days": self.days, "weeks": self.weeks}


@dataclass(frozen=True)
class PriceQuote:
    amount: Decimal
    classification: str
    duration: DurationBreakdown = field(compare=True)

    def to_dict(self) -> dict:
        return {
            "price": self.amount,
            "pricing_type": self.classification,
            "duration": self.duration.to_dict(),
        }


def duration_breakdown(interval: RentalInterval) -> DurationBreakdown:
    secs = Decimal(interval.seconds)
    return DurationBreakdown(
        hours=money(secs / HOUR),
        days=money(secs / DAY),
        weeks=money(secs / WEEK),
    )


def price(rate_card: RateCard, interval: RentalInterval) -> PriceQuote:
    """Price one unit of a product for the interval.

    Tier priority is week, then day, then hour: the first tier whose
    rate is set and whose minimum duration is met wins. Partial days and
    hours always round up.

    Raises InvalidRequest when no tier applies, rather than pricing at zero.
    """
    secs = interval.seconds
    breakdown = duration_breakdown(interval)

    if secs >= WEEK and rate_card.per_week:
        full_weeks = secs // WEEK
        remaining_days = _ceil_div(secs % WEEK, DAY)
        amount = full_weeks * rate_card.per_week + remaining_days * (rate_card.per_day or Decimal("0"))
        return PriceQuote(money(amount), WEEKLY, breakdown)

    if secs >= DAY and rate_card.per_day:
        amount = _ceil_div(secs, DAY) * rate_card.per_day
        return PriceQuote(money(amount), DAILY, breakdown)

    if rate_card.per_hour:
        amount = _ceil_div(secs, HOUR) * rate_card.per_hour
        return PriceQuote(money(amount), HOURLY, breakdown)

    raise InvalidRequest(
        "No rate configured for a rental of this length",
        hours=str(breakdown.hours),
    )


def line_subtotal(unit_price, quantity: int) -> Decimal:
    return money(money(unit_price) * quantity)


def gst(subtotal) -> Decimal:
    return money(money(subtotal) * GST_RATE)


def gst_split(tax_amount) -> dict:
    """Display-only CGST/SGST halves of a single stored tax amount."""
    half = money(money(tax_amount) / 2)
    return {"cgst": half, "sgst": half}


def with_gst(subtotal) -> dict:
    subtotal = money(subtotal)
    tax = gst(subtotal)
    return {
        "subtotal": subtotal,
        "tax_amount": tax,
        "total_amount": money(subtotal + tax),
    }


def late_fee(
    expected_return: dt.datetime,
    actual_return: dt.datetime,
    daily_rate,
    rate=Decimal("0.10"),
) -> Decimal:
    """Fee for returning late: ceil(delay in days) x daily rate x rate. Zero if on time."""
    expected = as_utc(expected_return)
    actual = as_utc(actual_return)
    if actual <= expected or not daily_rate:
        return Decimal("0.00")
    delay = actual - expected
    delay_secs = delay.days * DAY + delay.seconds + (1 if delay.microseconds else 0)
    delay_days = _ceil_div(delay_secs, DAY)
    return money(delay_days * money(daily_rate) * Decimal(str(rate)))
