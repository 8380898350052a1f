"""gig_etl.models

Typed records passed between the resolver, reconciler, orchestrator and the
importers: ticket types, entity references, upsert requests, loaded gig
graphs, calendar events and enrichment results.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Union

from gig_etl.normalize import parse_date, parse_numeric, trim
from gig_etl.shared import ParseError

NEW_REFERENCE_PREFIX = "new:"


# ---------------------------------------------------------------------------
# Ticket types
# ---------------------------------------------------------------------------

class TicketType(Enum):
    """Stored in gig.ticket_type by value."""

    STANDING = "Standing"
    SEATED = "Seated"
    VIP = "VIP"
    GUEST_LIST = "GuestList"
    OTHER = "Other"


TICKET_TYPE_LABELS: dict[TicketType, str] = {
    TicketType.STANDING: "Standing",
    TicketType.SEATED: "Seated",
    TicketType.VIP: "VIP",
    TicketType.GUEST_LIST: "Guest List",
    TicketType.OTHER: "Other",
}


def validate_ticket_type_labels(labels: dict[TicketType, str]) -> dict[str, TicketType]:
    """Check the label table is a bijection over TicketType; return the reverse map.

    Raises ValueError when a variant is missing a label or two variants
    share one.
    """
    missing = [t.name for t in TicketType if not trim(labels.get(t))]
    if missing:
        raise ValueError(f"ticket type labels missing for: {missing}")
    reverse: dict[str, TicketType] = {}
    for ticket_type, label in labels.items():
        key = _ticket_key(label)
        if key in reverse and reverse[key] is not ticket_type:
            raise ValueError(f"ticket type label {label!r} is ambiguous")
        reverse[key] = ticket_type
    return reverse


def _ticket_key(text: str) -> str:
    return "".join(text.split()).casefold()


_LABEL_LOOKUP = validate_ticket_type_labels(TICKET_TYPE_LABELS)


def parse_ticket_type(value: str | TicketType | None) -> TicketType:
    """Case-insensitive match on enum name, stored value or label.

    'vip', 'Guest List', 'guestlist', 'GUEST_LIST' all resolve; anything
    unrecognized (or blank) is TicketType.OTHER.
    """
    if isinstance(value, TicketType):
        return value
    v = trim(value)
    if v is None:
        return TicketType.OTHER
    key = _ticket_key(v).replace("_", "")
    for ticket_type in TicketType:
        if key in (_ticket_key(ticket_type.value), ticket_type.name.replace("_", "").casefold()):
            return ticket_type
    return _LABEL_LOOKUP.get(key, TicketType.OTHER)


def ticket_type_label(ticket_type: TicketType) -> str:
    return TICKET_TYPE_LABELS[ticket_type]


# ---------------------------------------------------------------------------
# References
# ---------------------------------------------------------------------------

class EntityKind(Enum):
    ARTIST = "artist"
    VENUE = "venue"
    PERSON = "person"
    FESTIVAL = "festival"
    SONG = "song"


@dataclass(frozen=True)
class ById:
    id: str


@dataclass(frozen=True)
class ByName:
    name: str


Reference = Union[ById, ByName]


def parse_reference(raw: str | None) -> Reference | None:
    """Decode a loose reference string once, at the input boundary.

    - "new:<name>"  -> ByName(name), even when <name> looks like a UUID
    - a valid UUID  -> ById(canonical uuid string)
    - anything else -> ByName(trimmed string)
    - blank / None  -> None
    """
    v = trim(raw)
    if v is None:
        return None
    if v.lower().startswith(NEW_REFERENCE_PREFIX):
        return ByName(v[len(NEW_REFERENCE_PREFIX):].strip())
    try:
        return ById(str(uuid.UUID(v)))
    except ValueError:
        return ByName(v)


# ---------------------------------------------------------------------------
# Upsert requests
# ---------------------------------------------------------------------------

@dataclass
class SetlistEntry:
    """One song in a requested or enriched setlist."""

    title: str
    is_encore: bool = False
    info: str | None = None
    is_tape: bool = False
    with_artist_name: str | None = None
    cover_artist_name: str | None = None

    @classmethod
    def from_value(cls, value: str | dict[str, Any] | SetlistEntry) -> SetlistEntry:
        if isinstance(value, SetlistEntry):
            return value
        if isinstance(value, str):
            return cls(title=value)
        return cls(
            title=str(_pick(value, "title") or ""),
            is_encore=bool(_pick(value, "is_encore", "isEncore") or False),
            info=_pick(value, "info"),
            is_tape=bool(_pick(value, "is_tape", "isTape") or False),
            with_artist_name=_pick(value, "with_artist_name", "withArtistName"),
            cover_artist_name=_pick(value, "cover_artist_name", "coverArtistName"),
        )


@dataclass
class ActRequest:
    """A desired act. `artist` is an ID, a name, or 'new:<name>'.

    setlist=None leaves the act's songs as they are; a list (even empty)
    is the desired setlist.
    """

    artist: str
    is_headliner: bool = False
    order: int | None = None
    setlist_url: str | None = None
    setlist: list[SetlistEntry] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActRequest:
        raw_setlist = _pick(data, "setlist")
        order = _pick(data, "order")
        return cls(
            artist=str(
                _pick(data, "artist", "artist_id", "artistId", "artist_name", "artistName") or ""
            ),
            is_headliner=bool(_pick(data, "is_headliner", "isHeadliner") or False),
            order=_parse_int(order, "order"),
            setlist_url=trim(_pick(data, "setlist_url", "setlistUrl")),
            setlist=(
                [SetlistEntry.from_value(s) for s in raw_setlist]
                if raw_setlist is not None else None
            ),
        )


@dataclass
class UpsertGigRequest:
    date: date
    venue_id: str | None = None
    venue_name: str | None = None
    venue_city: str | None = None
    festival_id: str | None = None
    festival_name: str | None = None
    order: int = 0
    ticket_cost: Decimal | None = None
    ticket_type: TicketType = TicketType.OTHER
    image_url: str | None = None
    acts: list[ActRequest] = field(default_factory=list)
    attendees: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UpsertGigRequest:
        """Decode a JSON-shaped request; snake_case and camelCase keys both work."""
        raw_date = _pick(data, "date")
        gig_date = parse_date(raw_date)
        if gig_date is None:
            raise ParseError(f"unparseable gig date: {raw_date!r}")
        return cls(
            date=gig_date,
            venue_id=trim(_pick(data, "venue_id", "venueId")),
            venue_name=trim(_pick(data, "venue_name", "venueName")),
            venue_city=trim(_pick(data, "venue_city", "venueCity")),
            festival_id=trim(_pick(data, "festival_id", "festivalId")),
            festival_name=trim(_pick(data, "festival_name", "festivalName")),
            order=_parse_int(_pick(data, "order"), "order") or 0,
            ticket_cost=_parse_decimal(_pick(data, "ticket_cost", "ticketCost"), "ticket cost"),
            ticket_type=parse_ticket_type(_pick(data, "ticket_type", "ticketType")),
            image_url=trim(_pick(data, "image_url", "imageUrl")),
            acts=[ActRequest.from_dict(a) for a in _pick(data, "acts") or []],
            attendees=[str(a) for a in _pick(data, "attendees") or []],
        )


@dataclass
class UpsertFestivalRequest:
    name: str
    year: int | None = None
    image_url: str | None = None
    poster_image_url: str | None = None
    venue_id: str | None = None
    venue_name: str | None = None
    venue_city: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    price: Decimal | None = None
    attendees: list[str] = field(default_factory=list)
    gig_orders: list[tuple[str, int]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UpsertFestivalRequest:
        start = _pick(data, "start_date", "startDate")
        end = _pick(data, "end_date", "endDate")
        return cls(
            name=str(_pick(data, "name") or ""),
            year=_parse_int(_pick(data, "year"), "year"),
            image_url=trim(_pick(data, "image_url", "imageUrl")),
            poster_image_url=trim(_pick(data, "poster_image_url", "posterImageUrl")),
            venue_id=trim(_pick(data, "venue_id", "venueId")),
            venue_name=trim(_pick(data, "venue_name", "venueName")),
            venue_city=trim(_pick(data, "venue_city", "venueCity")),
            start_date=_parse_optional_date(start, "start date"),
            end_date=_parse_optional_date(end, "end date"),
            price=_parse_decimal(_pick(data, "price"), "price"),
            attendees=[str(a) for a in _pick(data, "attendees") or []],
            gig_orders=[
                (str(_pick(g, "gig_id", "gigId")), _parse_int(_pick(g, "order"), "gig order") or 0)
                for g in _pick(data, "gig_orders", "gigOrders") or []
            ],
        )


def _pick(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _parse_int(value: Any, what: str) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ParseError(f"invalid {what}: {value!r}") from None


def _parse_decimal(value: Any, what: str) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ParseError(f"invalid {what}: {value!r}")
    parsed = parse_numeric(str(value))
    if parsed is None:
        raise ParseError(f"invalid {what}: {value!r}")
    return parsed


def _parse_optional_date(value: Any, what: str) -> date | None:
    if value is None:
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ParseError(f"unparseable {what}: {value!r}")
    return parsed


# ---------------------------------------------------------------------------
# Loaded gig graph
# ---------------------------------------------------------------------------

@dataclass
class SongRecord:
    song_id: str
    title: str
    order: int
    is_encore: bool = False
    info: str | None = None
    is_tape: bool = False
    with_artist_id: str | None = None
    cover_artist_id: str | None = None


@dataclass
class ActRecord:
    id: str
    artist_id: str
    artist_name: str
    is_headliner: bool
    order: int
    setlist_url: str | None = None
    songs: list[SongRecord] = field(default_factory=list)


@dataclass
class AttendeeRecord:
    person_id: str
    name: str


@dataclass
class GigRecord:
    id: str
    slug: str
    venue_id: str
    venue_name: str
    venue_city: str
    date: date
    order: int
    ticket_type: TicketType
    row_version: int
    festival_id: str | None = None
    festival_name: str | None = None
    ticket_cost: Decimal | None = None
    image_url: str | None = None
    acts: list[ActRecord] = field(default_factory=list)
    attendees: list[AttendeeRecord] = field(default_factory=list)

    @property
    def headliner(self) -> ActRecord | None:
        """First act flagged as headliner, in act order."""
        return next((a for a in self.acts if a.is_headliner), None)


# ---------------------------------------------------------------------------
# Calendar
# ---------------------------------------------------------------------------

@dataclass
class CalendarEvent:
    id: str
    title: str
    start: datetime
    end: datetime | None = None
    location: str | None = None
    description: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CalendarEvent:
        start = _parse_datetime(_pick(data, "start", "start_date_time", "startDateTime"))
        if start is None:
            raise ParseError(f"calendar event {data.get('id')!r} has no usable start")
        return cls(
            id=str(data.get("id") or ""),
            title=trim(_pick(data, "title", "summary")) or "Untitled Event",
            start=start,
            end=_parse_datetime(_pick(data, "end", "end_date_time", "endDateTime")),
            location=trim(data.get("location")),
            description=trim(data.get("description")),
        )


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    v = trim(str(value))
    if v is None:
        return None
    try:
        return datetime.fromisoformat(v.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass
class VenueMatch:
    id: str
    name: str
    city: str


@dataclass
class GigCandidate:
    artist_name: str
    venue: VenueMatch
    date: date
    support_acts: list[str] = field(default_factory=list)
    ticket_cost: Decimal | None = None


# ---------------------------------------------------------------------------
# Enrichment
# ---------------------------------------------------------------------------

@dataclass
class Enrichment:
    support_acts: list[str] = field(default_factory=list)
    setlist: list[SetlistEntry | str] = field(default_factory=list)
    image_search_query: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.support_acts and not self.setlist and not self.image_search_query
