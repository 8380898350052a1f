"""gig_etl.calendar_import

Calendar events -> gigs.

Providers:
  JsonFileCalendarProvider  a JSON export of events (list, or {"items": [...]})
  GoogleCalendarProvider    Google Calendar v3 events.list over requests;
                            the OAuth bearer token is read from an env var

run_calendar_import() matches each event (calendar_match.match_event) and
writes it in its own transaction (SKIP_ON_CONFLICT): a conflict skips
that event only. An existing gig at the same venue on the same day is
reused; its acts are only written when it has none, so a re-sync never
overwrites acts or setlists entered by hand.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Protocol
from urllib.parse import quote

import psycopg
import requests

from gig_etl.batch import BatchPolicy, run_batch
from gig_etl.calendar_match import match_event
from gig_etl.gig_upsert import (
    find_gig_by_venue_date,
    insert_gig,
    load_gig,
    set_ticket_cost,
)
from gig_etl.models import CalendarEvent, TicketType
from gig_etl.reconcile import DesiredAct, apply_acts
from gig_etl.resolver import Resolver
from gig_etl.shared import ParseError, RunCounters

log = logging.getLogger(__name__)

GOOGLE_EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/{calendar_id}/events"


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

class CalendarProvider(Protocol):
    def get_events(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> list[CalendarEvent]:
        ...


def default_window(
    start: datetime | None, end: datetime | None, lookback_years: int = 5
) -> tuple[datetime, datetime]:
    """Missing bounds default to [now - lookback_years, now] in UTC."""
    now = datetime.now(timezone.utc)
    end = end or now
    start = start or now - timedelta(days=365 * lookback_years)
    return _as_utc(start), _as_utc(end)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _events_from_dicts(items: Iterable[dict[str, Any]]) -> list[CalendarEvent]:
    events = []
    for item in items:
        try:
            events.append(CalendarEvent.from_dict(item))
        except ParseError as exc:
            log.warning("dropping calendar event: %s", exc)
    return events


@dataclass
class JsonFileCalendarProvider:
    path: Path

    def get_events(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> list[CalendarEvent]:
        raw = json.loads(self.path.read_text(encoding="utf-8"))
        items = raw.get("items", []) if isinstance(raw, dict) else raw
        events = _events_from_dicts(items)
        if start is not None:
            events = [e for e in events if _as_utc(e.start) >= _as_utc(start)]
        if end is not None:
            events = [e for e in events if _as_utc(e.start) <= _as_utc(end)]
        return sorted(events, key=lambda e: _as_utc(e.start))


def _google_time(value: dict[str, Any] | None) -> str | None:
    """events.list start/end: {'dateTime': ...} or {'date': 'YYYY-MM-DD'} for all-day."""
    if not value:
        return None
    return value.get("dateTime") or value.get("date")


@dataclass
class GoogleCalendarProvider:
    """Read events from Google Calendar's REST API."""

    calendar_id: str = "primary"
    token_env: str = "GOOGLE_CALENDAR_TOKEN"
    lookback_years: int = 5
    page_size: int = 250
    timeout: int = 30
    session: requests.Session = field(default_factory=requests.Session)

    def _token(self) -> str:
        token = os.environ.get(self.token_env, "")
        if not token:
            raise RuntimeError(f"env var {self.token_env} must hold a Google OAuth access token")
        return token

    def get_events(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> list[CalendarEvent]:
        start, end = default_window(start, end, self.lookback_years)
        url = GOOGLE_EVENTS_URL.format(calendar_id=quote(self.calendar_id, safe=""))
        headers = {"Authorization": f"Bearer {self._token()}"}
        params: dict[str, Any] = {
            "timeMin": start.isoformat(),
            "timeMax": end.isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": self.page_size,
        }

        items: list[dict[str, Any]] = []
        while True:
            resp = self.session.get(url, headers=headers, params=params, timeout=self.timeout)
            resp.raise_for_status()
            body = resp.json()
            for item in body.get("items", []):
                item_start = _google_time(item.get("start"))
                if item_start is None:
                    continue
                items.append({
                    "id": item.get("id"),
                    "title": item.get("summary"),
                    "start": item_start,
                    "end": _google_time(item.get("end")),
                    "location": item.get("location"),
                    "description": item.get("description"),
                })
            token = body.get("nextPageToken")
            if not token:
                break
            params["pageToken"] = token

        log.info("fetched %d events from calendar %s", len(items), self.calendar_id)
        return _events_from_dicts(items)


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

def run_calendar_import(
    conn: psycopg.Connection,
    events: list[CalendarEvent],
    counters: RunCounters,
    dry_run: bool = False,
    new_gig_ticket_type: TicketType = TicketType.STANDING,
) -> RunCounters:
    """Apply matched events as gigs, one transaction per event."""
    counters.events_found += len(events)

    def handle(event: CalendarEvent) -> bool:
        candidate = match_event(conn, event)
        if candidate is None:
            counters.events_skipped += 1
            return False

        gig_id = find_gig_by_venue_date(conn, candidate.venue.id, candidate.date)
        created = gig_id is None
        if created:
            gig_id = insert_gig(
                conn,
                candidate.venue.id,
                candidate.date,
                ticket_type=new_gig_ticket_type,
                ticket_cost=candidate.ticket_cost,
                slug_hint=candidate.artist_name,
            )
            has_acts = False
            counters.gigs_created += 1
        else:
            if candidate.ticket_cost is not None:
                set_ticket_cost(conn, gig_id, candidate.ticket_cost)
            has_acts = bool(load_gig(conn, gig_id).acts)
            counters.gigs_updated += 1

        if not has_acts:
            # Identity cache scoped to this event's transaction.
            resolver = Resolver(conn, counters=counters)
            desired = [
                DesiredAct(
                    artist_id=resolver.get_or_create_artist(candidate.artist_name),
                    order=0,
                    is_headliner=True,
                )
            ]
            for order, name in enumerate(candidate.support_acts, start=1):
                desired.append(
                    DesiredAct(artist_id=resolver.get_or_create_artist(name), order=order)
                )
            apply_acts(conn, gig_id, [], desired, counters)

        log.debug(
            "event %s -> gig %s (%s)", event.id, gig_id, "created" if created else "updated"
        )
        return True

    result = run_batch(
        conn, events, handle, BatchPolicy.SKIP_ON_CONFLICT, counters,
        label="calendar", dry_run=dry_run,
    )
    counters.events_skipped += result.skipped
    log.info(
        "calendar import: %d events, %d created, %d updated, %d skipped",
        counters.events_found, counters.gigs_created,
        counters.gigs_updated, counters.events_skipped,
    )
    return counters


def parse_window_date(value: str | None) -> datetime | None:
    """CLI --start-date/--end-date: YYYY-MM-DD, as midnight UTC."""
    if not value:
        return None
    d = date.fromisoformat(value)
    return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)
