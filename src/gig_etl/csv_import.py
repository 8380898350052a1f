"""gig_etl.csv_import

Bulk import of a gig-history CSV export.

Expected headers (case-sensitive, extra or missing columns are tolerated):
  Date, Artist / Headliner, Support Acts, Venue, City, Ticket Cost,
  Ticket Type, Went With, Genre, Setlist URL

Rows without a Date, Headliner or Venue are skipped. The whole file is one
unit of work (FAIL_FAST): any row error rolls the batch back. A single
Resolver, and so a single identity cache, serves every row, and rows that
repeat a venue + date + headliner update the gig an earlier row created;
the later row's values win.
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Iterator

import psycopg

from gig_etl.batch import BatchPolicy, run_batch
from gig_etl.gig_upsert import apply_gig
from gig_etl.models import (
    NEW_REFERENCE_PREFIX,
    ActRequest,
    TicketType,
    UpsertGigRequest,
    parse_ticket_type,
)
from gig_etl.normalize import (
    normalize_space,
    parse_currency,
    parse_date,
    split_names,
    trim,
)
from gig_etl.resolver import Resolver
from gig_etl.shared import (
    GigEtlError,
    RejectWriter,
    RunCounters,
    normalize_headers,
    translate_db_errors,
)

log = logging.getLogger(__name__)

CSV_HEADERS = (
    "Date",
    "Artist / Headliner",
    "Support Acts",
    "Venue",
    "City",
    "Ticket Cost",
    "Ticket Type",
    "Went With",
    "Genre",
    "Setlist URL",
)


@dataclass
class CsvGigRow:
    date: date
    headliner: str
    venue: str
    city: str | None = None
    support_acts: list[str] = field(default_factory=list)
    ticket_cost: Decimal | None = None
    ticket_type: TicketType = TicketType.OTHER
    went_with: list[str] = field(default_factory=list)
    setlist_url: str | None = None


def read_csv_rows(path: Path) -> Iterator[dict[str, str | None]]:
    """Yield rows with whitespace-stripped header keys."""
    with path.open(encoding="utf-8-sig", newline="") as fh:
        reader = csv.DictReader(fh)
        present = {f.strip() for f in reader.fieldnames or []}
        missing = [h for h in CSV_HEADERS if h not in present]
        if missing:
            log.warning("%s: columns not present: %s", path, missing)
        for raw_row in reader:
            yield normalize_headers(raw_row)


def parse_csv_row(row: dict[str, str | None]) -> CsvGigRow | None:
    """Parse one row; None when Date, Headliner or Venue is missing."""
    gig_date = parse_date(row.get("Date"))
    headliner = normalize_space(row.get("Artist / Headliner"))
    venue = normalize_space(row.get("Venue"))
    if gig_date is None or headliner is None or venue is None:
        return None
    return CsvGigRow(
        date=gig_date,
        headliner=headliner,
        venue=venue,
        city=normalize_space(row.get("City")),
        support_acts=split_names(row.get("Support Acts")),
        ticket_cost=parse_currency(row.get("Ticket Cost")),
        ticket_type=parse_ticket_type(row.get("Ticket Type")),
        went_with=split_names(row.get("Went With")),
        setlist_url=trim(row.get("Setlist URL")),
    )


def _row_state(parsed: CsvGigRow) -> dict[str, object]:
    return {
        "city": parsed.city,
        "support_acts": parsed.support_acts,
        "ticket_cost": parsed.ticket_cost,
        "ticket_type": parsed.ticket_type.value,
        "went_with": parsed.went_with,
        "setlist_url": parsed.setlist_url,
    }


def build_request(parsed: CsvGigRow) -> UpsertGigRequest:
    """Headliner at order 0 with the row's setlist URL; supports 1..n without one."""
    acts = [
        ActRequest(
            artist=f"{NEW_REFERENCE_PREFIX}{parsed.headliner}",
            is_headliner=True,
            order=0,
            setlist_url=parsed.setlist_url,
        )
    ]
    for idx, name in enumerate(parsed.support_acts, start=1):
        acts.append(ActRequest(artist=f"{NEW_REFERENCE_PREFIX}{name}", order=idx))
    return UpsertGigRequest(
        date=parsed.date,
        venue_id=f"{NEW_REFERENCE_PREFIX}{parsed.venue}",
        venue_city=parsed.city,
        ticket_cost=parsed.ticket_cost,
        ticket_type=parsed.ticket_type,
        acts=acts,
        attendees=[f"{NEW_REFERENCE_PREFIX}{name}" for name in parsed.went_with],
    )


def run_csv_import(
    conn: psycopg.Connection,
    rows: Iterable[dict[str, str | None]],
    counters: RunCounters,
    resolver: Resolver | None = None,
    dry_run: bool = False,
    rejects: RejectWriter | None = None,
) -> int:
    """Import rows in one transaction; returns the number of processed rows."""
    resolver = resolver or Resolver(conn, counters=counters)
    # (venue_id, date, headliner_id) -> gig_id for gigs written by this batch
    materialized: dict[tuple[str, date, str], str] = {}

    def handle(row: dict[str, str | None]) -> bool:
        counters.rows_read += 1
        parsed = parse_csv_row(row)
        if parsed is None:
            counters.rows_skipped += 1
            if rejects is not None:
                rejects.write(row, "missing_date_headliner_or_venue")
            return False

        row_key = (counters.rows_read, parsed.venue, parsed.date, parsed.headliner)
        try:
            with translate_db_errors("gig", key=row_key, state=_row_state(parsed)):
                venue_id = resolver.get_or_create_venue(parsed.venue, parsed.city)
                headliner_id = resolver.get_or_create_artist(parsed.headliner)
                key = (venue_id, parsed.date, headliner_id)
                result = apply_gig(
                    conn, build_request(parsed), resolver, gig_id=materialized.get(key)
                )
        except GigEtlError as exc:
            log.error("csv row %d (%s @ %s %s) failed: %s",
                      counters.rows_read, parsed.headliner, parsed.venue, parsed.date, exc)
            raise
        materialized[key] = result.gig_id
        counters.rows_processed += 1
        return True

    result = run_batch(
        conn, rows, handle, BatchPolicy.FAIL_FAST, counters, label="csv", dry_run=dry_run
    )
    log.info(
        "csv import: %d processed, %d skipped, %d gigs created, %d updated",
        result.processed, counters.rows_skipped, counters.gigs_created, counters.gigs_updated,
    )
    return result.processed
