"""gig_etl.stats

Derived metrics over stored gigs and festivals.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

import psycopg

_CENTS = Decimal("0.01")


def longest_month_streak(dates: Iterable[date]) -> int | None:
    """Longest run of consecutive calendar months containing at least one gig.

    Several gigs in one month count once. None when there are no dates.
    """
    months = sorted({d.year * 12 + (d.month - 1) for d in dates})
    if not months:
        return None
    best = run = 1
    for prev, cur in zip(months, months[1:]):
        run = run + 1 if cur == prev + 1 else 1
        best = max(best, run)
    return best


def festival_daily_price(
    price: Decimal | None, start_date: date | None, end_date: date | None
) -> Decimal | None:
    """Price divided by the festival's inclusive day count.

    None when price or either date is missing, or the dates run backwards.
    """
    if price is None or start_date is None or end_date is None:
        return None
    days = (end_date - start_date).days + 1
    if days < 1:
        return None
    return (Decimal(price) / days).quantize(_CENTS, rounding=ROUND_HALF_UP)


def average_daily_price_by_year(
    festivals: Iterable[tuple[Decimal | None, date | None, date | None]],
) -> dict[int, Decimal]:
    """Mean per-day festival price keyed by the festival's start year."""
    by_year: dict[int, list[Decimal]] = defaultdict(list)
    for price, start_date, end_date in festivals:
        per_day = festival_daily_price(price, start_date, end_date)
        if per_day is not None:
            by_year[start_date.year].append(per_day)
    return {
        year: (sum(values) / len(values)).quantize(_CENTS, rounding=ROUND_HALF_UP)
        for year, values in sorted(by_year.items())
    }


def gig_month_streak(conn: psycopg.Connection) -> int | None:
    rows = conn.execute("SELECT gig_date FROM gig").fetchall()
    return longest_month_streak(r[0] for r in rows)


def festival_price_by_year(conn: psycopg.Connection) -> dict[int, Decimal]:
    rows = conn.execute("SELECT price, start_date, end_date FROM festival").fetchall()
    return average_daily_price_by_year((r[0], r[1], r[2]) for r in rows)
