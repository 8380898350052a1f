"""gig_etl.festivals

Festival upsert and delete. A festival owns its gigs (gig.festival_id),
an optional shared venue, per-day pricing and a set of attendees.

run_festival_import() applies a JSON file of festival requests as one
unit of work (FAIL_FAST). Each object is an UpsertFestivalRequest payload;
an optional "id" targets an existing festival.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Iterable

import psycopg

from gig_etl.batch import BatchPolicy, run_batch

from gig_etl.gig_upsert import reference_from
from gig_etl.models import EntityKind, UpsertFestivalRequest
from gig_etl.normalize import normalize_name, normalize_space, trim
from gig_etl.reconcile import apply_festival_attendees
from gig_etl.resolver import Resolver
from gig_etl.shared import (
    NotFoundError,
    RunCounters,
    ValidationError,
    translate_db_errors,
)

log = logging.getLogger(__name__)


@dataclass
class FestivalRecord:
    id: str
    name: str
    slug: str
    year: int | None = None
    image_url: str | None = None
    poster_image_url: str | None = None
    venue_id: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    price: Decimal | None = None
    attendee_ids: list[str] = field(default_factory=list)
    gig_ids: list[str] = field(default_factory=list)


def load_festival(conn: psycopg.Connection, festival_id: str) -> FestivalRecord:
    row = conn.execute(
        """
        SELECT id, name, slug, year, image_url, poster_image_url, venue_id,
               start_date, end_date, price
        FROM festival WHERE id = %s
        """,
        (festival_id,),
    ).fetchone()
    if row is None:
        raise NotFoundError(f"festival {festival_id} not found")
    record = FestivalRecord(
        id=str(row[0]),
        name=row[1],
        slug=row[2],
        year=row[3],
        image_url=row[4],
        poster_image_url=row[5],
        venue_id=str(row[6]) if row[6] is not None else None,
        start_date=row[7],
        end_date=row[8],
        price=row[9],
    )
    record.attendee_ids = [
        str(r[0]) for r in conn.execute(
            "SELECT person_id FROM festival_attendee WHERE festival_id = %s ORDER BY person_id",
            (record.id,),
        ).fetchall()
    ]
    record.gig_ids = [
        str(r[0]) for r in conn.execute(
            "SELECT id FROM gig WHERE festival_id = %s ORDER BY gig_date, gig_order, id",
            (record.id,),
        ).fetchall()
    ]
    return record


def upsert_festival(
    conn: psycopg.Connection,
    request: UpsertFestivalRequest,
    festival_id: str | None = None,
    resolver: Resolver | None = None,
) -> FestivalRecord:
    """Create or update a festival in one unit of work.

    Without festival_id an existing festival with the same name (case
    insensitive) is updated rather than duplicated.
    """
    name = normalize_space(request.name)
    if name is None:
        raise ValidationError("festival name is required")
    resolver = resolver or Resolver(conn)
    counters = resolver.counters

    with translate_db_errors("festival", key=festival_id or name):
        with conn.transaction():
            if festival_id is None:
                festival_id = resolver.get_or_create_festival(name)
            existing = load_festival(conn, festival_id)

            venue_ref = reference_from(request.venue_id, request.venue_name)
            venue_id = (
                resolver.resolve(venue_ref, EntityKind.VENUE, city=request.venue_city)
                if venue_ref is not None else None
            )

            conn.execute(
                """
                UPDATE festival
                SET name = %s, normalized_name = %s, year = %s, image_url = %s,
                    poster_image_url = %s, venue_id = %s, start_date = %s,
                    end_date = %s, price = %s
                WHERE id = %s
                """,
                (
                    name, normalize_name(name), request.year, request.image_url,
                    request.poster_image_url, venue_id, request.start_date,
                    request.end_date, request.price, festival_id,
                ),
            )

            person_ids = [
                resolver.resolve(a, EntityKind.PERSON) for a in request.attendees
            ]
            apply_festival_attendees(
                conn, festival_id, existing.attendee_ids, person_ids, counters
            )

            # Only reorder gigs that belong to this festival.
            owned = set(existing.gig_ids)
            for gig_id, order in request.gig_orders:
                if gig_id not in owned:
                    counters.warnings.append(
                        f"festival {festival_id}: gig {gig_id} is not part of it; order ignored"
                    )
                    continue
                conn.execute(
                    """
                    UPDATE gig
                    SET gig_order = %s, row_version = row_version + 1, updated_at = now()
                    WHERE id = %s AND gig_order <> %s
                    """,
                    (order, gig_id, order),
                )

            return load_festival(conn, festival_id)


def delete_festival(conn: psycopg.Connection, festival_id: str) -> None:
    """Delete a festival; attendee rows cascade and its gigs lose the link."""
    with translate_db_errors("festival", key=festival_id):
        with conn.transaction():
            row = conn.execute(
                "DELETE FROM festival WHERE id = %s RETURNING id", (festival_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"festival {festival_id} not found")


def read_festival_requests(path: Path) -> list[tuple[str | None, UpsertFestivalRequest]]:
    """Decode a JSON list (or {"festivals": [...]}) into (festival_id, request) pairs."""
    raw = json.loads(path.read_text(encoding="utf-8"))
    items = raw.get("festivals", []) if isinstance(raw, dict) else raw
    if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
        raise ValueError(f"{path}: expected a list of festival objects")
    return [
        (trim(item.get("id")), UpsertFestivalRequest.from_dict(item))
        for item in items
    ]


def run_festival_import(
    conn: psycopg.Connection,
    items: Iterable[tuple[str | None, UpsertFestivalRequest]],
    counters: RunCounters,
    dry_run: bool = False,
) -> int:
    """Upsert every festival in one transaction; returns how many were written."""
    resolver = Resolver(conn, counters=counters)

    def handle(item: tuple[str | None, UpsertFestivalRequest]) -> bool:
        festival_id, request = item
        record = upsert_festival(conn, request, festival_id=festival_id, resolver=resolver)
        log.debug("festival %s -> %s", record.name, record.id)
        return True

    result = run_batch(
        conn, items, handle, BatchPolicy.FAIL_FAST, counters,
        label="festival", dry_run=dry_run,
    )
    log.info("festival import: %d festivals written", result.processed)
    return result.processed
