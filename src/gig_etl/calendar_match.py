"""gig_etl.calendar_match

Heuristics that decide whether a calendar event is a gig.

An event only becomes a GigCandidate when it can be pinned to an existing
venue; artist names in the title are used to confirm a gig, never to
invent a venue. The matcher only reads: artists and venues it names are
created later by the calendar importer.
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal, InvalidOperation

import psycopg

from gig_etl.models import CalendarEvent, GigCandidate, VenueMatch
from gig_etl.normalize import normalize_name, normalize_space, split_support_acts

log = logging.getLogger(__name__)

_LIVE_SUFFIXES = (" (live)", " - live")
_VENUE_SEPARATORS = (" @ ", " at ", " - ")
_SUPPORT_RE = re.compile(r"(?:supported\s+by|support\s*:?|with\s*:)\s*(.+)", re.IGNORECASE)
_COST_RE = re.compile(r"[£$€]\s*(\d+(?:\.\d{2})?)")


# ---------------------------------------------------------------------------
# Pure text helpers
# ---------------------------------------------------------------------------

def location_segments(location: str | None) -> list[str]:
    """'Wembley Stadium, London' -> ['Wembley Stadium', 'London']."""
    if not location:
        return []
    return [s for s in (normalize_space(p) for p in location.split(",")) if s]


def strip_live_suffix(title: str) -> str:
    """Remove a trailing '(Live)' or '- Live' marker, case-insensitively."""
    t = title.strip()
    for suffix in _LIVE_SUFFIXES:
        if t.lower().endswith(suffix):
            return t[: -len(suffix)].strip()
    return t


def title_artist_variants(title: str) -> list[str]:
    """Candidate artist names to look up for a title, most literal first."""
    t = title.strip()
    variants = [t, strip_live_suffix(t)]
    if " @ " in t:
        variants.append(t.split(" @ ", 1)[0].strip())
    out: list[str] = []
    for v in variants:
        if v and v not in out:
            out.append(v)
    return out


def artist_name_from_title(title: str) -> str:
    """Drop a trailing ' @ <venue>', ' at <venue>' or ' - <venue>' from the title.

    Falls back to the untouched title when nothing is left.
    """
    t = title.strip()
    lowered = t.lower()
    for sep in _VENUE_SEPARATORS:
        idx = lowered.find(sep)
        if idx != -1:
            head = t[:idx].strip()
            return head or t
    return t


def parse_support_acts(description: str | None) -> list[str]:
    if not description:
        return []
    m = _SUPPORT_RE.search(description)
    if not m:
        return []
    return split_support_acts(m.group(1))


def parse_ticket_cost(description: str | None) -> Decimal | None:
    if not description:
        return None
    m = _COST_RE.search(description)
    if not m:
        return None
    try:
        return Decimal(m.group(1))
    except InvalidOperation:
        return None


# ---------------------------------------------------------------------------
# Storage lookups (read-only)
# ---------------------------------------------------------------------------

def _venue_row(row: tuple | None) -> VenueMatch | None:
    return VenueMatch(id=str(row[0]), name=row[1], city=row[2]) if row else None


def find_venue_in_text(conn: psycopg.Connection, text: str) -> VenueMatch | None:
    """Venue whose name appears inside text; the longest name wins."""
    key = normalize_name(text)
    if key is None:
        return None
    row = conn.execute(
        """
        SELECT id, name, city FROM venue
        WHERE strpos(%s, normalized_name) > 0
        ORDER BY length(normalized_name) DESC, created_at
        LIMIT 1
        """,
        (key,),
    ).fetchone()
    return _venue_row(row)


def find_venue_by_name(
    conn: psycopg.Connection, name: str, city: str | None = None
) -> VenueMatch | None:
    if city is None:
        row = conn.execute(
            """
            SELECT id, name, city FROM venue
            WHERE normalized_name = %s
            ORDER BY created_at
            LIMIT 1
            """,
            (normalize_name(name),),
        ).fetchone()
    else:
        row = conn.execute(
            """
            SELECT id, name, city FROM venue
            WHERE normalized_name = %s AND normalized_city = %s
            """,
            (normalize_name(name), normalize_name(city)),
        ).fetchone()
    return _venue_row(row)


def find_artist_by_name(conn: psycopg.Connection, name: str) -> str | None:
    key = normalize_name(name)
    if key is None:
        return None
    row = conn.execute(
        "SELECT id FROM artist WHERE normalized_name = %s", (key,)
    ).fetchone()
    return str(row[0]) if row else None


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

def _match_venue_from_location(
    conn: psycopg.Connection, location: str
) -> VenueMatch | None:
    venue = find_venue_in_text(conn, location)
    if venue is not None:
        return venue
    segments = location_segments(location)
    if len(segments) < 2:
        return None
    return find_venue_by_name(conn, segments[0]) or find_venue_by_name(
        conn, segments[0], segments[-1]
    )


def match_event(conn: psycopg.Connection, event: CalendarEvent) -> GigCandidate | None:
    """Turn a calendar event into a GigCandidate, or None when it is not a gig."""
    title = normalize_space(event.title) or ""
    location = normalize_space(event.location)

    venue = _match_venue_from_location(conn, location) if location else None

    if venue is None:
        artist_id = None
        for variant in title_artist_variants(title):
            artist_id = find_artist_by_name(conn, variant)
            if artist_id is not None:
                break
        if artist_id is not None and location is None:
            log.debug("event %s: artist matched but no location; rejected", event.id)
            return None
        if artist_id is not None:
            segments = location_segments(location)
            if segments:
                venue = find_venue_by_name(conn, segments[0]) or find_venue_in_text(
                    conn, segments[0]
                )

    if venue is None:
        return None

    return GigCandidate(
        artist_name=artist_name_from_title(title),
        venue=venue,
        date=event.start.date(),
        support_acts=parse_support_acts(event.description),
        ticket_cost=parse_ticket_cost(event.description),
    )
