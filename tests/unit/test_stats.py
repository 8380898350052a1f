"""Unit tests for gig_etl.stats."""

from datetime import date
from decimal import Decimal

from gig_etl.stats import (
    average_daily_price_by_year,
    festival_daily_price,
    longest_month_streak,
)


class TestLongestMonthStreak:
    def test_five_consecutive_months(self):
        dates = [date(2023, m, 10) for m in range(1, 6)]
        assert longest_month_streak(dates) == 5

    def test_gap_breaks_the_run(self):
        dates = [date(2023, m, 1) for m in (1, 2, 3, 5, 6, 7, 8)]
        assert longest_month_streak(dates) == 4

    def test_same_month_counts_once(self):
        dates = [date(2023, 3, 1), date(2023, 3, 15), date(2023, 3, 30)]
        assert longest_month_streak(dates) == 1

    def test_crosses_year_boundary(self):
        dates = [date(2022, 11, 5), date(2022, 12, 5), date(2023, 1, 5)]
        assert longest_month_streak(dates) == 3

    def test_unsorted_input(self):
        dates = [date(2023, 3, 1), date(2023, 1, 1), date(2023, 2, 1)]
        assert longest_month_streak(dates) == 3

    def test_no_gigs(self):
        assert longest_month_streak([]) is None


class TestFestivalDailyPrice:
    def test_two_day_festival(self):
        assert festival_daily_price(Decimal("200"), date(2024, 6, 1), date(2024, 6, 2)) == Decimal("100.00")

    def test_single_day_festival(self):
        assert festival_daily_price(Decimal("75"), date(2024, 6, 1), date(2024, 6, 1)) == Decimal("75.00")

    def test_backwards_dates(self):
        assert festival_daily_price(Decimal("200"), date(2024, 6, 2), date(2024, 6, 1)) is None

    def test_missing_price(self):
        assert festival_daily_price(None, date(2024, 6, 1), date(2024, 6, 2)) is None

    def test_rounds_to_cents(self):
        assert festival_daily_price(Decimal("100"), date(2024, 6, 1), date(2024, 6, 3)) == Decimal("33.33")


class TestAverageDailyPriceByYear:
    def test_mean_per_year(self):
        festivals = [
            (Decimal("200"), date(2024, 6, 1), date(2024, 6, 2)),
            (Decimal("450"), date(2024, 8, 1), date(2024, 8, 3)),
            (Decimal("90"), date(2023, 7, 1), date(2023, 7, 1)),
        ]
        assert average_daily_price_by_year(festivals) == {
            2023: Decimal("90.00"),
            2024: Decimal("125.00"),
        }

    def test_festivals_without_dates_ignored(self):
        festivals = [(Decimal("200"), None, None)]
        assert average_daily_price_by_year(festivals) == {}
