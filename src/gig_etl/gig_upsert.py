"""gig_etl.gig_upsert

Create-or-update of a Gig and everything hanging off it.

upsert_gig() is the direct path: one unit of work per call. The CSV and
calendar importers reuse apply_gig() / insert_gig() inside their own
transactions so that batch scope and failure policy stay theirs.

Flow for one request:
  1. resolve venue (explicit ref, name + city, or the festival's venue)
  2. resolve festival; festival gigs carry no ticket cost
  3. resolve acts, per-act setlists and the headliner
  4. on create, look for an existing gig at venue + date + headliner
  5. write scalars (optimistic row_version check on update)
  6. reconcile acts, then setlists, then attendees
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

import psycopg

from gig_etl.enrichment import EnrichmentProvider
from gig_etl.models import (
    ActRecord,
    ActRequest,
    AttendeeRecord,
    ByName,
    EntityKind,
    Enrichment,
    GigRecord,
    Reference,
    SetlistEntry,
    SongRecord,
    TicketType,
    UpsertGigRequest,
    parse_reference,
)
from gig_etl.normalize import new_slug, normalize_space
from gig_etl.reconcile import (
    DesiredAct,
    DesiredSong,
    apply_acts,
    apply_gig_attendees,
    apply_setlist,
)
from gig_etl.resolver import Resolver
from gig_etl.shared import (
    ConflictError,
    NotFoundError,
    RunCounters,
    ValidationError,
    translate_db_errors,
)

log = logging.getLogger(__name__)


@dataclass
class GigWriteResult:
    gig_id: str
    created: bool
    venue_id: str
    headliner_id: str | None


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def _opt_str(value: Any) -> str | None:
    return str(value) if value is not None else None


def load_gig(conn: psycopg.Connection, gig_id: str) -> GigRecord:
    """Load a gig with venue, festival, acts, setlists and attendees.

    Raises NotFoundError when no gig has that ID.
    """
    row = conn.execute(
        """
        SELECT g.id, g.slug, g.venue_id, v.name, v.city,
               g.gig_date, g.gig_order, g.ticket_type, g.row_version,
               g.festival_id, f.name, g.ticket_cost, g.image_url
        FROM gig g
        JOIN venue v ON v.id = g.venue_id
        LEFT JOIN festival f ON f.id = g.festival_id
        WHERE g.id = %s
        """,
        (gig_id,),
    ).fetchone()
    if row is None:
        raise NotFoundError(f"gig {gig_id} not found")

    gig = GigRecord(
        id=str(row[0]),
        slug=row[1],
        venue_id=str(row[2]),
        venue_name=row[3],
        venue_city=row[4],
        date=row[5],
        order=row[6],
        ticket_type=TicketType(row[7]),
        row_version=row[8],
        festival_id=_opt_str(row[9]),
        festival_name=row[10],
        ticket_cost=row[11],
        image_url=row[12],
    )

    acts_by_id: dict[str, ActRecord] = {}
    for a in conn.execute(
        """
        SELECT ga.id, ga.artist_id, a.name, ga.is_headliner, ga.act_order, ga.setlist_url
        FROM gig_artist ga
        JOIN artist a ON a.id = ga.artist_id
        WHERE ga.gig_id = %s
        ORDER BY ga.act_order, a.normalized_name
        """,
        (gig.id,),
    ).fetchall():
        act = ActRecord(
            id=str(a[0]),
            artist_id=str(a[1]),
            artist_name=a[2],
            is_headliner=a[3],
            order=a[4],
            setlist_url=a[5],
        )
        acts_by_id[act.id] = act
        gig.acts.append(act)

    for s in conn.execute(
        """
        SELECT gas.gig_artist_id, gas.song_id, s.title, gas.song_order,
               gas.is_encore, gas.info, gas.is_tape,
               gas.with_artist_id, gas.cover_artist_id
        FROM gig_artist_song gas
        JOIN gig_artist ga ON ga.id = gas.gig_artist_id
        JOIN song s ON s.id = gas.song_id
        WHERE ga.gig_id = %s
        ORDER BY gas.song_order, s.normalized_title
        """,
        (gig.id,),
    ).fetchall():
        acts_by_id[str(s[0])].songs.append(
            SongRecord(
                song_id=str(s[1]),
                title=s[2],
                order=s[3],
                is_encore=s[4],
                info=s[5],
                is_tape=s[6],
                with_artist_id=_opt_str(s[7]),
                cover_artist_id=_opt_str(s[8]),
            )
        )

    gig.attendees = [
        AttendeeRecord(person_id=str(p[0]), name=p[1])
        for p in conn.execute(
            """
            SELECT p.id, p.name
            FROM gig_attendee ga
            JOIN person p ON p.id = ga.person_id
            WHERE ga.gig_id = %s
            ORDER BY p.normalized_name
            """,
            (gig.id,),
        ).fetchall()
    ]
    return gig


def find_duplicate_gig(
    conn: psycopg.Connection,
    venue_id: str,
    gig_date: date,
    headliner_id: str | None,
) -> str | None:
    """Return the oldest gig at venue + date whose first headliner matches.

    A request with no headliner matches a gig with no headliner.
    """
    row = conn.execute(
        """
        SELECT g.id
        FROM gig g
        WHERE g.venue_id = %s
          AND g.gig_date = %s
          AND (
            SELECT ga.artist_id
            FROM gig_artist ga
            WHERE ga.gig_id = g.id AND ga.is_headliner
            ORDER BY ga.act_order
            LIMIT 1
          ) IS NOT DISTINCT FROM %s::uuid
        ORDER BY g.created_at, g.id
        LIMIT 1
        """,
        (venue_id, gig_date, headliner_id),
    ).fetchone()
    return str(row[0]) if row else None


def find_gig_by_venue_date(
    conn: psycopg.Connection, venue_id: str, gig_date: date
) -> str | None:
    row = conn.execute(
        """
        SELECT id FROM gig
        WHERE venue_id = %s AND gig_date = %s
        ORDER BY gig_order, created_at, id
        LIMIT 1
        """,
        (venue_id, gig_date),
    ).fetchone()
    return str(row[0]) if row else None


# ---------------------------------------------------------------------------
# Scalar writes
# ---------------------------------------------------------------------------

def insert_gig(
    conn: psycopg.Connection,
    venue_id: str,
    gig_date: date,
    ticket_type: TicketType = TicketType.OTHER,
    ticket_cost: Decimal | None = None,
    festival_id: str | None = None,
    order: int = 0,
    image_url: str | None = None,
    slug_hint: str | None = None,
) -> str:
    row = conn.execute(
        """
        INSERT INTO gig
          (slug, venue_id, festival_id, gig_date, gig_order,
           ticket_cost, ticket_type, image_url)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            new_slug(f"{slug_hint or 'gig'} {gig_date.isoformat()}"),
            venue_id, festival_id, gig_date, order,
            ticket_cost, ticket_type.value, image_url,
        ),
    ).fetchone()
    return str(row[0])


def _update_gig_row(
    conn: psycopg.Connection,
    gig: GigRecord,
    venue_id: str,
    festival_id: str | None,
    request: UpsertGigRequest,
    ticket_cost: Decimal | None,
) -> None:
    cur = conn.execute(
        """
        UPDATE gig
        SET venue_id = %s, festival_id = %s, gig_date = %s, gig_order = %s,
            ticket_cost = %s, ticket_type = %s, image_url = %s,
            row_version = row_version + 1, updated_at = now()
        WHERE id = %s AND row_version = %s
        """,
        (
            venue_id, festival_id, request.date, request.order,
            ticket_cost, request.ticket_type.value, request.image_url,
            gig.id, gig.row_version,
        ),
    )
    if cur.rowcount == 0:
        raise ConflictError(
            "gig was modified concurrently",
            entity_type="gig",
            key=gig.id,
            state={"expected_row_version": gig.row_version},
        )


def set_ticket_cost(conn: psycopg.Connection, gig_id: str, ticket_cost: Decimal) -> None:
    conn.execute(
        """
        UPDATE gig
        SET ticket_cost = %s, row_version = row_version + 1, updated_at = now()
        WHERE id = %s
        """,
        (ticket_cost, gig_id),
    )


# ---------------------------------------------------------------------------
# Reference resolution for a request
# ---------------------------------------------------------------------------

def reference_from(id_value: str | None, name_value: str | None) -> Reference | None:
    ref = parse_reference(id_value)
    if ref is None and normalize_space(name_value):
        ref = ByName(normalize_space(name_value))
    return ref


def _festival_venue(conn: psycopg.Connection, festival_id: str) -> str | None:
    row = conn.execute(
        "SELECT venue_id FROM festival WHERE id = %s", (festival_id,)
    ).fetchone()
    if row is None:
        raise NotFoundError(f"festival {festival_id} not found")
    return _opt_str(row[0])


def resolve_setlist(
    resolver: Resolver, artist_id: str, entries: list[SetlistEntry], start: int = 1
) -> list[DesiredSong]:
    """Resolve titles (and guest/cover artists) to IDs; position gives order."""
    songs = []
    for idx, entry in enumerate(entries):
        songs.append(
            DesiredSong(
                song_id=resolver.get_or_create_song(artist_id, entry.title),
                order=start + idx,
                is_encore=entry.is_encore,
                info=normalize_space(entry.info),
                is_tape=entry.is_tape,
                with_artist_id=(
                    resolver.get_or_create_artist(entry.with_artist_name)
                    if normalize_space(entry.with_artist_name) else None
                ),
                cover_artist_id=(
                    resolver.get_or_create_artist(entry.cover_artist_name)
                    if normalize_space(entry.cover_artist_name) else None
                ),
            )
        )
    return songs


def resolve_acts(resolver: Resolver, acts: list[ActRequest]) -> list[DesiredAct]:
    desired = []
    for idx, act in enumerate(acts):
        artist_id = resolver.resolve(act.artist, EntityKind.ARTIST)
        desired.append(
            DesiredAct(
                artist_id=artist_id,
                order=act.order if act.order is not None else idx,
                is_headliner=act.is_headliner,
                setlist_url=act.setlist_url,
                setlist=(
                    resolve_setlist(resolver, artist_id, act.setlist)
                    if act.setlist is not None else None
                ),
            )
        )
    return desired


def _slug_hint(request: UpsertGigRequest) -> str | None:
    for act in request.acts:
        ref = parse_reference(act.artist)
        if act.is_headliner and isinstance(ref, ByName):
            return ref.name
    return request.venue_name


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

def apply_gig(
    conn: psycopg.Connection,
    request: UpsertGigRequest,
    resolver: Resolver,
    gig_id: str | None = None,
) -> GigWriteResult:
    """Write one gig graph inside the caller's transaction."""
    counters = resolver.counters
    if request.date is None:
        raise ValidationError("gig date is required")

    festival_ref = reference_from(request.festival_id, request.festival_name)
    festival_id = (
        resolver.resolve(festival_ref, EntityKind.FESTIVAL) if festival_ref else None
    )

    venue_ref = reference_from(request.venue_id, request.venue_name)
    if venue_ref is not None:
        venue_id = resolver.resolve(venue_ref, EntityKind.VENUE, city=request.venue_city)
    elif festival_id is not None:
        venue_id = _festival_venue(conn, festival_id)
    else:
        venue_id = None
    if venue_id is None:
        raise ValidationError("a venue is required (venue_id or venue_name)")

    # Per-day pricing lives on the festival.
    ticket_cost = None if festival_id is not None else request.ticket_cost

    desired_acts = resolve_acts(resolver, request.acts)
    headliner_id = next((a.artist_id for a in desired_acts if a.is_headliner), None)

    if gig_id is None:
        gig_id = find_duplicate_gig(conn, venue_id, request.date, headliner_id)
        if gig_id is not None:
            log.debug("upsert matched existing gig %s", gig_id)

    created = gig_id is None
    if created:
        gig_id = insert_gig(
            conn, venue_id, request.date,
            ticket_type=request.ticket_type,
            ticket_cost=ticket_cost,
            festival_id=festival_id,
            order=request.order,
            image_url=request.image_url,
            slug_hint=_slug_hint(request),
        )
        existing_acts: list[ActRecord] = []
        existing_attendees: list[str] = []
        counters.gigs_created += 1
    else:
        gig = load_gig(conn, gig_id)
        _update_gig_row(conn, gig, venue_id, festival_id, request, ticket_cost)
        existing_acts = gig.acts
        existing_attendees = [a.person_id for a in gig.attendees]
        counters.gigs_updated += 1

    apply_acts(conn, gig_id, existing_acts, desired_acts, counters)

    person_ids = [resolver.resolve(a, EntityKind.PERSON) for a in request.attendees]
    apply_gig_attendees(conn, gig_id, existing_attendees, person_ids, counters)

    return GigWriteResult(
        gig_id=gig_id, created=created, venue_id=venue_id, headliner_id=headliner_id
    )


def upsert_gig(
    conn: psycopg.Connection,
    request: UpsertGigRequest,
    gig_id: str | None = None,
    resolver: Resolver | None = None,
) -> GigRecord:
    """Create or update a gig in one unit of work and return it fully loaded.

    With gig_id the call is an update (NotFoundError if it does not exist);
    without, an existing gig at the same venue, date and headliner is
    updated instead of creating a duplicate.
    """
    resolver = resolver or Resolver(conn)
    state = {"venue": request.venue_id or request.venue_name, "date": request.date}
    with translate_db_errors("gig", key=gig_id or state, state=state):
        with conn.transaction():
            result = apply_gig(conn, request, resolver, gig_id=gig_id)
            return load_gig(conn, result.gig_id)


def delete_gig(conn: psycopg.Connection, gig_id: str) -> None:
    """Delete a gig; acts, setlists and attendee rows cascade."""
    with translate_db_errors("gig", key=gig_id):
        with conn.transaction():
            row = conn.execute(
                "DELETE FROM gig WHERE id = %s RETURNING id", (gig_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"gig {gig_id} not found")


# ---------------------------------------------------------------------------
# Enrichment
# ---------------------------------------------------------------------------

def _looks_like_url(value: str | None) -> bool:
    v = (value or "").strip().lower()
    return v.startswith("http://") or v.startswith("https://")


def _apply_enrichment(
    conn: psycopg.Connection, gig: GigRecord, enrichment: Enrichment, resolver: Resolver
) -> bool:
    changed = False
    counters = resolver.counters

    on_gig = {a.artist_id for a in gig.acts}
    next_order = max((a.order for a in gig.acts), default=-1) + 1
    new_acts: list[DesiredAct] = []
    for name in enrichment.support_acts:
        if not normalize_space(name):
            continue
        artist_id = resolver.get_or_create_artist(name)
        if artist_id in on_gig:
            continue
        on_gig.add(artist_id)
        new_acts.append(DesiredAct(artist_id=artist_id, order=next_order))
        next_order += 1
    if new_acts:
        apply_acts(conn, gig.id, gig.acts, new_acts, counters, remove_missing=False)
        changed = True

    headliner = gig.headliner
    if headliner is not None and enrichment.setlist:
        have = {s.song_id for s in headliner.songs}
        start = max((s.order for s in headliner.songs), default=0) + 1
        wanted = [
            s for s in resolve_setlist(
                resolver,
                headliner.artist_id,
                [SetlistEntry.from_value(e) for e in enrichment.setlist],
            )
            if s.song_id not in have
        ]
        # Appended after the songs already recorded, keeping their order.
        for offset, song in enumerate(wanted):
            song.order = start + offset
        if wanted:
            apply_setlist(conn, headliner.id, headliner.songs, wanted, remove_missing=False)
            changed = True

    if not gig.image_url and _looks_like_url(enrichment.image_search_query):
        conn.execute(
            """
            UPDATE gig
            SET image_url = %s, row_version = row_version + 1, updated_at = now()
            WHERE id = %s AND image_url IS NULL
            """,
            (enrichment.image_search_query.strip(), gig.id),
        )
        changed = True

    return changed


def enrich_gig(
    conn: psycopg.Connection,
    gig_id: str,
    provider: EnrichmentProvider,
    counters: RunCounters | None = None,
) -> bool:
    """Best-effort enrichment of one gig; True when anything was written.

    Provider failures and empty results mean no enrichment. Failures while
    applying roll back to a savepoint and leave the gig unchanged. The
    caller owns the commit.
    """
    # Private resolver: a rolled-back savepoint must not leave stale IDs
    # in a cache shared with other gigs.
    resolver = Resolver(conn, counters=counters)
    counters = resolver.counters
    gig = load_gig(conn, gig_id)
    try:
        enrichment = provider.enrich(gig)
    except Exception as exc:
        log.warning("enrichment provider failed for gig %s: %s", gig_id, exc)
        counters.warnings.append(f"enrich {gig_id}: provider error: {exc}")
        return False
    if enrichment is None or enrichment.is_empty:
        return False

    try:
        with conn.transaction():
            changed = _apply_enrichment(conn, gig, enrichment, resolver)
    except Exception as exc:
        log.warning("enrichment apply failed for gig %s: %s", gig_id, exc)
        counters.warnings.append(f"enrich {gig_id}: apply error: {exc}")
        return False

    if changed:
        counters.gigs_enriched += 1
    return changed


def enrich_all_gigs(
    conn: psycopg.Connection,
    provider: EnrichmentProvider,
    counters: RunCounters | None = None,
    dry_run: bool = False,
) -> int:
    """Enrich every gig in date order, committing after each one."""
    counters = counters if counters is not None else RunCounters()
    gig_ids = [
        str(r[0])
        for r in conn.execute("SELECT id FROM gig ORDER BY gig_date, gig_order, id").fetchall()
    ]
    conn.commit()
    enriched = 0
    try:
        for gig_id in gig_ids:
            if enrich_gig(conn, gig_id, provider, counters):
                enriched += 1
            if not dry_run:
                conn.commit()
    finally:
        if dry_run:
            conn.rollback()
    return enriched
