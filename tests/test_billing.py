"""Billing period dates and tax amounts."""

from datetime import datetime, timezone
from decimal import Decimal

from subsync.utils.dates import calculate_end_date, from_epoch, parse_iso_datetime
from subsync.utils.tax import calculate_tax


class TestCalculateEndDate:
    def test_monthly_clamps_to_month_end(self):
        assert calculate_end_date("monthly", datetime(2024, 1, 31)) == datetime(2024, 2, 29)

    def test_each_frequency(self):
        start = datetime(2024, 1, 10)
        assert calculate_end_date("weekly", start) == datetime(2024, 1, 17)
        assert calculate_end_date("quarterly", start) == datetime(2024, 4, 10)
        assert calculate_end_date("biannually", start) == datetime(2024, 7, 10)
        assert calculate_end_date("annually", start) == datetime(2025, 1, 10)

    def test_unknown_frequency_bills_monthly(self):
        assert calculate_end_date("fortnightly", datetime(2024, 5, 1)) == datetime(2024, 6, 1)
        assert calculate_end_date(None, datetime(2024, 5, 1)) == datetime(2024, 6, 1)


class TestDateParsing:
    def test_iso_with_z_suffix_becomes_naive_utc(self):
        assert parse_iso_datetime("2024-03-01T10:00:00Z") == datetime(2024, 3, 1, 10, 0, 0)

    def test_iso_with_offset_is_converted(self):
        assert parse_iso_datetime("2024-03-01T10:00:00+02:00") == datetime(2024, 3, 1, 8, 0, 0)

    def test_iso_with_fractional_seconds(self):
        assert parse_iso_datetime("2024-03-01T10:00:00.12Z") == datetime(2024, 3, 1, 10, 0, 0, 120000)
        assert parse_iso_datetime("2024-03-01T10:00:00.123456789Z") == datetime(2024, 3, 1, 10, 0, 0, 123456)

    def test_invalid_iso_is_none(self):
        assert parse_iso_datetime("not a date") is None
        assert parse_iso_datetime(None) is None

    def test_from_epoch(self):
        ts = int(datetime(2024, 3, 1, tzinfo=timezone.utc).timestamp())
        assert from_epoch(ts) == datetime(2024, 3, 1)
        assert from_epoch(None) is None


class TestCalculateTax:
    RATES = {"DE": Decimal("19"), "FR": Decimal("20")}

    def test_rate_for_customer_country(self):
        assert calculate_tax(Decimal("10.00"), {"country": "de"}, self.RATES) == Decimal("1.90")

    def test_rounds_half_up_to_cents(self):
        assert calculate_tax(Decimal("9.99"), {"country": "DE"}, self.RATES) == Decimal("1.90")
        assert calculate_tax(Decimal("0.025"), {"country": "FR"}, self.RATES) == Decimal("0.01")

    def test_no_rate_means_no_tax(self):
        assert calculate_tax(Decimal("10.00"), {"country": "US"}, self.RATES) == Decimal("0.00")
        assert calculate_tax(Decimal("10.00"), None, self.RATES) == Decimal("0.00")
        assert calculate_tax(Decimal("10.00"), {"country": "DE"}) == Decimal("0.00")
