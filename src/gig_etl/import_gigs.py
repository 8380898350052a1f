"""gig_etl.import_gigs

Unified CLI entrypoint for gig ingestion.

Modes (--mode):
  csv       import a gig-history CSV export (one transaction, fail-fast)
  calendar  turn calendar events into gigs (one transaction per event)
  enrich    apply prepared enrichment suggestions to every gig
  festivals create or update festivals from a JSON file (one transaction)
  streak    print the longest consecutive-month gig streak and festival
            per-day prices

Usage (csv):
    python -m gig_etl.import_gigs \\
        --mode csv \\
        --db-dsn "$DB_DSN" \\
        --csv-path "exports/gigs.csv"

Usage (calendar, Google):
    GOOGLE_CALENDAR_TOKEN=... python -m gig_etl.import_gigs \\
        --mode calendar \\
        --db-dsn "$DB_DSN" \\
        --calendar-source google \\
        --start-date 2020-01-01 --end-date 2024-12-31 \\
        --settings-path config/gig_etl.yml

Usage (calendar, JSON export):
    python -m gig_etl.import_gigs \\
        --mode calendar \\
        --db-dsn "$DB_DSN" \\
        --events-path "exports/calendar_events.json"
"""

from __future__ import annotations

import json
import sys
import uuid
from datetime import datetime
from pathlib import Path

import click
import requests

from gig_etl.calendar_import import (
    GoogleCalendarProvider,
    JsonFileCalendarProvider,
    parse_window_date,
    run_calendar_import,
)
from gig_etl.config import SettingsValidationError, load_settings
from gig_etl.csv_import import read_csv_rows, run_csv_import
from gig_etl.enrichment import JsonFileEnrichmentProvider
from gig_etl.festivals import read_festival_requests, run_festival_import
from gig_etl.gig_upsert import enrich_all_gigs
from gig_etl.resolver import Resolver
from gig_etl.shared import (
    ConflictError,
    GigEtlError,
    RejectWriter,
    RunCounters,
    connect,
    write_run_report,
)
from gig_etl.stats import festival_price_by_year, gig_month_streak


@click.command()
@click.option(
    "--mode",
    default="csv",
    type=click.Choice(["csv", "calendar", "enrich", "festivals", "streak"]),
    show_default=True,
    help="Ingestion mode",
)
@click.option("--db-dsn", required=True, help="PostgreSQL DSN")
# csv flags
@click.option("--csv-path", default=None, type=click.Path(), help="[csv] Gig-history CSV export")
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/gig_csv_rejects.csv",
    show_default=True,
    help="[csv] Where skipped rows are written",
)
# calendar flags
@click.option(
    "--calendar-source",
    default=None,
    type=click.Choice(["json", "google"]),
    help="[calendar] Event source (defaults to calendar.source in settings)",
)
@click.option("--events-path", default=None, type=click.Path(), help="[calendar] JSON export of calendar events")
@click.option("--start-date", default=None, help="[calendar] Window start, YYYY-MM-DD")
@click.option("--end-date", default=None, help="[calendar] Window end, YYYY-MM-DD")
# enrich flags
@click.option("--enrichment-path", default=None, type=click.Path(), help="[enrich] JSON enrichment suggestions keyed by gig id or slug")
# festivals flags
@click.option("--festivals-path", default=None, type=click.Path(), help="[festivals] JSON list of festival requests")
# shared flags
@click.option("--settings-path", default=None, type=click.Path(), help="YAML settings file")
@click.option("--dry-run", is_flag=True, default=False)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
def main(
    mode: str,
    db_dsn: str,
    csv_path: str | None,
    rejects_path: str,
    calendar_source: str | None,
    events_path: str | None,
    start_date: str | None,
    end_date: str | None,
    enrichment_path: str | None,
    festivals_path: str | None,
    settings_path: str | None,
    dry_run: bool,
    run_id: str | None,
) -> None:
    """Unified gig ingestion CLI."""
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.utcnow().isoformat()
    counters = RunCounters()

    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")

    try:
        settings = load_settings(Path(settings_path) if settings_path else None)
    except (SettingsValidationError, FileNotFoundError) as exc:
        click.echo(f"[{run_id}] FATAL: invalid settings: {exc}", err=True)
        sys.exit(1)

    if mode == "streak":
        conn = connect(db_dsn)
        try:
            streak = gig_month_streak(conn)
            prices = festival_price_by_year(conn)
            conn.rollback()
        finally:
            conn.close()
        click.echo(f"[{run_id}] Longest consecutive-month gig streak: {streak or 0}")
        for year, per_day in prices.items():
            click.echo(f"[{run_id}] Festival average price per day {year}: {per_day}")
        return

    source_paths: dict[str, str | None] = {
        "csv_path": csv_path,
        "events_path": events_path,
        "enrichment_path": enrichment_path,
        "festivals_path": festivals_path,
    }

    if mode == "csv":
        _validate_csv_flags(csv_path, run_id)
        rejects = RejectWriter(Path(rejects_path))
        conn = connect(db_dsn)
        try:
            processed = run_csv_import(
                conn,
                read_csv_rows(Path(csv_path)),  # type: ignore[arg-type]
                counters,
                resolver=Resolver(conn, counters=counters, unknown_city=settings.unknown_city),
                dry_run=dry_run,
                rejects=rejects,
            )
        except GigEtlError as exc:
            _fatal(run_id, started_at, mode, dry_run, source_paths, counters, exc)
        finally:
            conn.close()
            rejects.close()
        click.echo(f"[{run_id}] Processed {processed} row(s)")

    elif mode == "calendar":
        source = calendar_source or settings.calendar.source
        _validate_calendar_flags(source, events_path, run_id)
        if source == "google":
            provider = GoogleCalendarProvider(
                calendar_id=settings.calendar.calendar_id,
                token_env=settings.calendar.token_env,
                lookback_years=settings.calendar.lookback_years,
                page_size=settings.calendar.page_size,
            )
        else:
            provider = JsonFileCalendarProvider(Path(events_path))  # type: ignore[arg-type]
        try:
            events = provider.get_events(
                parse_window_date(start_date), parse_window_date(end_date)
            )
        except (requests.RequestException, RuntimeError, ValueError) as exc:
            click.echo(f"[{run_id}] FATAL: could not read calendar events: {exc}", err=True)
            sys.exit(1)
        click.echo(f"[{run_id}] {len(events)} calendar event(s) to process")

        conn = connect(db_dsn)
        try:
            run_calendar_import(
                conn, events, counters,
                dry_run=dry_run,
                new_gig_ticket_type=settings.calendar.new_gig_ticket_type,
            )
        except GigEtlError as exc:
            _fatal(run_id, started_at, mode, dry_run, source_paths, counters, exc)
        finally:
            conn.close()

    elif mode == "festivals":
        if not festivals_path:
            click.echo(f"[{run_id}] FATAL: festivals mode requires: --festivals-path", err=True)
            sys.exit(1)
        try:
            festival_requests = read_festival_requests(Path(festivals_path))
        except (OSError, ValueError, GigEtlError) as exc:
            click.echo(f"[{run_id}] FATAL: could not read festivals: {exc}", err=True)
            sys.exit(1)
        conn = connect(db_dsn)
        try:
            written = run_festival_import(conn, festival_requests, counters, dry_run=dry_run)
        except GigEtlError as exc:
            _fatal(run_id, started_at, mode, dry_run, source_paths, counters, exc)
        finally:
            conn.close()
        click.echo(f"[{run_id}] Wrote {written} festival(s)")

    else:
        if not enrichment_path:
            click.echo(f"[{run_id}] FATAL: enrich mode requires: --enrichment-path", err=True)
            sys.exit(1)
        provider = JsonFileEnrichmentProvider(Path(enrichment_path))
        conn = connect(db_dsn)
        try:
            enriched = enrich_all_gigs(conn, provider, counters, dry_run=dry_run)
        finally:
            conn.close()
        click.echo(f"[{run_id}] Enriched {enriched} gig(s)")

    if dry_run:
        click.echo(f"[{run_id}] [dry-run] All changes rolled back.")

    report_path = write_run_report(run_id, started_at, mode, dry_run, source_paths, counters)
    click.echo(f"[{run_id}] Run report: {report_path}")
    click.echo(json.dumps(counters.to_dict(), indent=2, default=str))
    click.echo(f"[{run_id}] Done.")


def _fatal(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, str | None],
    counters: RunCounters,
    exc: GigEtlError,
) -> None:
    detail = exc.diagnostic() if isinstance(exc, ConflictError) else str(exc)
    counters.warnings.append(f"fatal: {detail}")
    report_path = write_run_report(run_id, started_at, mode, dry_run, source_paths, counters)
    click.echo(f"[{run_id}] Run report: {report_path}")
    click.echo(f"[{run_id}] FATAL: {type(exc).__name__}: {detail}", err=True)
    sys.exit(1)


def _validate_csv_flags(csv_path: str | None, run_id: str) -> None:
    if not csv_path:
        click.echo(f"[{run_id}] FATAL: csv mode requires: --csv-path", err=True)
        sys.exit(1)
    if not Path(csv_path).exists():
        click.echo(f"[{run_id}] FATAL: CSV file not found: {csv_path}", err=True)
        sys.exit(1)


def _validate_calendar_flags(source: str, events_path: str | None, run_id: str) -> None:
    if source == "json" and not events_path:
        click.echo(
            f"[{run_id}] FATAL: calendar mode with --calendar-source json requires: --events-path",
            err=True,
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
