import datetime as dt
from decimal import Decimal

import pytest

from rental_service.exceptions import InvalidRequest
from rental_service.pricing import (
    DAILY,
    HOURLY,
    WEEKLY,
    RateCard,
    RentalInterval,
    gst,
    gst_split,
    late_fee,
    line_subtotal,
    money,
    price,
    with_gst,
)

from conftest import UTC, at


def test_two_day_rental_prices_at_daily_rate():
    """Jan 1 to Jan 3 with 100/day costs 200."""
    quote = price(RateCard(per_day=Decimal("100")), RentalInterval(at(1), at(3)))
    assert quote.amount == Decimal("200.00")
    assert quote.classification == DAILY
    assert quote.duration.days == Decimal("2.00")


def test_partial_day_rounds_up():
    quote = price(RateCard(per_day=Decimal("100")), RentalInterval(at(1), at(2, hour=1)))
    assert quote.amount == Decimal("200.00")


def test_short_rental_falls_back_to_hourly():
    card = RateCard(per_hour=Decimal("15"), per_day=Decimal("100"))
    start = at(1, hour=9)
    quote = price(card, RentalInterval(start, start + dt.timedelta(hours=2, minutes=10)))
    assert quote.classification == HOURLY
    assert quote.amount == Decimal("45.00")


def test_week_tier_charges_remaining_days_at_daily_rate():
    card = RateCard(per_day=Decimal("100"), per_week=Decimal("500"))
    quote = price(card, RentalInterval(at(1), at(10)))
    assert quote.classification == WEEKLY
    # one full week plus two days
    assert quote.amount == Decimal("700.00")


def test_week_tier_without_daily_rate_charges_nothing_for_remainder():
    quote = price(RateCard(per_week=Decimal("500")), RentalInterval(at(1), at(10)))
    assert quote.amount == Decimal("500.00")


def test_day_rate_used_when_week_rate_missing():
    quote = price(RateCard(per_day=Decimal("100")), RentalInterval(at(1), at(15)))
    assert quote.classification == DAILY
    assert quote.amount == Decimal("1400.00")


def test_no_eligible_tier_is_rejected():
    # only a weekly rate, rental shorter than a week
    with pytest.raises(InvalidRequest):
        price(RateCard(per_week=Decimal("500")), RentalInterval(at(1), at(3)))


def test_pricing_is_deterministic():
    card = RateCard(per_hour=Decimal("9.99"), per_day=Decimal("75.50"), per_week=Decimal("420"))
    period = RentalInterval(at(1, hour=7), at(12, hour=19))
    assert price(card, period) == price(card, period)


def test_interval_must_move_forward():
    with pytest.raises(InvalidRequest):
        RentalInterval(at(3), at(3))
    with pytest.raises(InvalidRequest):
        RentalInterval(at(3), at(1))


def test_naive_datetimes_are_treated_as_utc():
    period = RentalInterval(dt.datetime(2030, 1, 1), dt.datetime(2030, 1, 2))
    assert period.start.tzinfo == UTC


def test_touching_intervals_overlap():
    assert RentalInterval(at(1), at(3)).overlaps(RentalInterval(at(3), at(5)))
    assert not RentalInterval(at(1), at(3)).overlaps(RentalInterval(at(4), at(5)))


def test_gst_on_quotation_subtotal():
    assert with_gst(Decimal("1000")) == {
        "subtotal": Decimal("1000.00"),
        "tax_amount": Decimal("180.00"),
        "total_amount": Decimal("1180.00"),
    }


def test_gst_rounds_half_up_per_boundary():
    assert gst(Decimal("0.25")) == Decimal("0.05")
    assert line_subtotal(Decimal("33.335"), 3) == Decimal("100.02")
    assert money(2.675) == Decimal("2.68")


def test_gst_split_halves_tax():
    assert gst_split(Decimal("180.00")) == {"cgst": Decimal("90.00"), "sgst": Decimal("90.00")}


def test_late_fee_zero_when_on_time():
    assert late_fee(at(5), at(5), Decimal("100")) == Decimal("0.00")
    assert late_fee(at(5), at(4), Decimal("100")) == Decimal("0.00")


def test_late_fee_rounds_delay_up_to_whole_days():
    # 1 day and 2 hours late -> 2 days x 100 x 10%
    assert late_fee(at(5), at(6, hour=2), Decimal("100")) == Decimal("20.00")
    assert late_fee(at(5), at(6), Decimal("100"), rate=Decimal("0.5")) == Decimal("50.00")
