"""Normalization functions shared by every ingestion path.

All functions accept str | None and return the appropriate type or None.
"""

from __future__ import annotations

import re
import unicodedata
import uuid
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d %B %Y", "%d %b %Y", "%b %d, %Y")
_CURRENCY_SYMBOLS = "£$€"


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: normalize_name  (natural-key match for artist/venue/person/...)
# ---------------------------------------------------------------------------

def normalize_name(value: str | None) -> str | None:
    """Lowercase with whitespace collapsed.

    Accents are kept: "Motörhead" and "Motorhead" are different artists.
    Stored in the normalized_name / normalized_city / normalized_title
    columns and used as the identity-cache key.
    """
    v = normalize_space(value)
    if v is None:
        return None
    return v.lower()


# ---------------------------------------------------------------------------
# Rule 4: slug_name / new_slug
# ---------------------------------------------------------------------------

def slug_name(value: str | None) -> str | None:
    """Lowercase alnum with '-' separators."""
    v = trim(value)
    if v is None:
        return None
    v = unicodedata.normalize("NFKD", v)
    v = "".join(c for c in v if not unicodedata.combining(c))
    v = v.lower()
    v = re.sub(r"[^a-z0-9]+", "-", v)
    v = v.strip("-")
    return v if v else None


def new_slug(value: str | None) -> str:
    """Return a fresh, globally unique slug for a newly created entity.

    The readable prefix comes from slug_name; the random suffix makes the
    slug unique even for two entities with the same display name.
    """
    suffix = uuid.uuid4().hex[:8]
    base = slug_name(value)
    if base is None:
        return uuid.uuid4().hex
    return f"{base[:60]}-{suffix}"


# ---------------------------------------------------------------------------
# Rule 5: parse_numeric / parse_currency
# ---------------------------------------------------------------------------

def parse_numeric(value: str | None) -> Decimal | None:
    """Parse a decimal number from a string, returning None on failure."""
    v = trim(value)
    if v is None:
        return None
    try:
        d = Decimal(v)
    except InvalidOperation:
        return None
    return d if d.is_finite() else None


def parse_currency(value: str | None) -> Decimal | None:
    """Strip currency symbols and thousands separators, then parse_numeric.

    '£85.00' -> Decimal('85.00'); 'free' / '' -> None.
    """
    v = trim(value)
    if v is None:
        return None
    for symbol in _CURRENCY_SYMBOLS:
        v = v.replace(symbol, "")
    return parse_numeric(v.replace(",", ""))


# ---------------------------------------------------------------------------
# Rule 6: parse_date
# ---------------------------------------------------------------------------

def parse_date(value: str | date | None) -> date | None:
    """Parse a calendar date from the formats seen in exports.

    ISO '2023-11-20' first, then '20/11/2023', '20 November 2023',
    '20 Nov 2023', 'Nov 20, 2023'. An ISO datetime is truncated to its day.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    v = trim(value)
    if v is None:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(v, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(v.replace("Z", "+00:00")).date()
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Rule 7: free-text name lists
# ---------------------------------------------------------------------------

_NAME_LIST_SPLIT = re.compile(r"[,/]")
_SUPPORT_LIST_SPLIT = re.compile(r"[,&/]")


def _split(pattern: re.Pattern[str], value: str | None) -> list[str]:
    v = trim(value)
    if v is None:
        return []
    return [t for t in (normalize_space(p) for p in pattern.split(v)) if t]


def split_names(value: str | None) -> list[str]:
    """Split a CSV list cell on commas and slashes.

    Ampersands stay inside the token: "Florence & The Machine" is one band.
    """
    return _split(_NAME_LIST_SPLIT, value)


def split_support_acts(value: str | None) -> list[str]:
    """Split a calendar 'support:' fragment on commas, ampersands and slashes."""
    return _split(_SUPPORT_LIST_SPLIT, value)
