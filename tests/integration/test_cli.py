"""Integration tests for the gig_etl.import_gigs CLI.

These tests run against an ephemeral PostgreSQL database with the full
schema applied via the db_conn fixture in conftest.py.
"""

from __future__ import annotations

import csv
import json
from datetime import date
from pathlib import Path

from gig_etl.csv_import import CSV_HEADERS

PROJECT_ROOT = Path(__file__).parent.parent.parent
SETTINGS = PROJECT_ROOT / "config" / "gig_etl.yml"


def _write_csv(path: Path) -> Path:
    rows = [
        {"Date": "2023-11-20", "Artist / Headliner": "Queen", "Support Acts": "Adam Lambert",
         "Venue": "O2", "City": "London", "Ticket Cost": "£85.00", "Ticket Type": "Seated"},
        {"Date": "2023-12-02", "Artist / Headliner": "Muse", "Venue": "O2", "City": "London"},
        {"Date": "", "Artist / Headliner": "Nobody", "Venue": "Nowhere"},
    ]
    with path.open("w", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=list(CSV_HEADERS))
        writer.writeheader()
        for row in rows:
            writer.writerow({h: row.get(h, "") for h in CSV_HEADERS})
    return path


class TestCsvMode:
    def test_import_and_report(self, db_conn, tmp_path, monkeypatch):
        conn, dsn = db_conn
        monkeypatch.chdir(tmp_path)
        csv_path = _write_csv(tmp_path / "gigs.csv")
        rejects_file = tmp_path / "rejects.csv"

        from click.testing import CliRunner
        from gig_etl.import_gigs import main

        runner = CliRunner()
        result = runner.invoke(main, [
            "--mode", "csv",
            "--db-dsn", dsn,
            "--csv-path", str(csv_path),
            "--rejects-path", str(rejects_file),
            "--settings-path", str(SETTINGS),
            "--run-id", "test-csv-run",
        ])

        assert result.exit_code == 0, f"CLI failed:\n{result.output}"
        assert "Done." in result.output
        assert conn.execute("SELECT count(*) FROM gig").fetchone()[0] == 2
        assert rejects_file.exists()

        report = json.loads((tmp_path / "artifacts" / "reports" / "test-csv-run.json").read_text())
        assert report["mode"] == "csv"
        assert report["counters"]["rows_processed"] == 2
        assert report["counters"]["rows_skipped"] == 1
        assert report["counters"]["gigs_created"] == 2

    def test_dry_run_writes_nothing(self, db_conn, tmp_path, monkeypatch):
        conn, dsn = db_conn
        monkeypatch.chdir(tmp_path)
        csv_path = _write_csv(tmp_path / "gigs.csv")

        from click.testing import CliRunner
        from gig_etl.import_gigs import main

        result = CliRunner().invoke(main, [
            "--db-dsn", dsn,
            "--csv-path", str(csv_path),
            "--rejects-path", str(tmp_path / "rejects.csv"),
            "--dry-run",
            "--run-id", "test-dry-run",
        ])

        assert result.exit_code == 0, f"CLI failed:\n{result.output}"
        assert "rolled back" in result.output
        for table in ("gig", "venue", "artist"):
            assert conn.execute(f"SELECT count(*) FROM {table}").fetchone()[0] == 0

    def test_missing_csv_path(self, db_conn, tmp_path, monkeypatch):
        _, dsn = db_conn
        monkeypatch.chdir(tmp_path)

        from click.testing import CliRunner
        from gig_etl.import_gigs import main

        result = CliRunner().invoke(main, ["--mode", "csv", "--db-dsn", dsn])
        assert result.exit_code == 1
        assert "--csv-path" in result.output


class TestCalendarMode:
    def test_json_events(self, db_conn, tmp_path, monkeypatch):
        conn, dsn = db_conn
        monkeypatch.chdir(tmp_path)

        from gig_etl.resolver import Resolver

        Resolver(conn).get_or_create_venue("Wembley", "London")
        conn.commit()

        events_path = tmp_path / "events.json"
        events_path.write_text(json.dumps({"items": [
            {"id": "e1", "title": "Foo Fighters @ Wembley", "location": "Wembley, London",
             "start": "2024-06-22T18:00:00Z", "description": "Support: Wet Leg"},
            {"id": "e2", "title": "Dentist", "start": "2024-06-23T09:00:00Z"},
        ]}))

        from click.testing import CliRunner
        from gig_etl.import_gigs import main

        result = CliRunner().invoke(main, [
            "--mode", "calendar",
            "--db-dsn", dsn,
            "--calendar-source", "json",
            "--events-path", str(events_path),
            "--start-date", "2024-01-01",
            "--end-date", "2024-12-31",
            "--run-id", "test-calendar-run",
        ])

        assert result.exit_code == 0, f"CLI failed:\n{result.output}"
        assert conn.execute("SELECT count(*) FROM gig").fetchone()[0] == 1
        assert conn.execute("SELECT count(*) FROM gig_artist").fetchone()[0] == 2
        report = json.loads(
            (tmp_path / "artifacts" / "reports" / "test-calendar-run.json").read_text()
        )
        assert report["counters"]["events_found"] == 2
        assert report["counters"]["events_skipped"] == 1

    def test_json_source_needs_events_path(self, db_conn, tmp_path, monkeypatch):
        _, dsn = db_conn
        monkeypatch.chdir(tmp_path)

        from click.testing import CliRunner
        from gig_etl.import_gigs import main

        result = CliRunner().invoke(main, ["--mode", "calendar", "--db-dsn", dsn])
        assert result.exit_code == 1
        assert "--events-path" in result.output


class TestStreakMode:
    def test_prints_streak(self, db_conn, tmp_path, monkeypatch):
        conn, dsn = db_conn
        monkeypatch.chdir(tmp_path)

        from gig_etl.gig_upsert import upsert_gig
        from gig_etl.models import ActRequest, UpsertGigRequest

        for month in (1, 2):
            upsert_gig(conn, UpsertGigRequest(
                date=date(2023, month, 1), venue_name="O2", venue_city="London",
                acts=[ActRequest("Queen", is_headliner=True)],
            ))
        conn.commit()

        from click.testing import CliRunner
        from gig_etl.import_gigs import main

        result = CliRunner().invoke(main, ["--mode", "streak", "--db-dsn", dsn, "--run-id", "s"])
        assert result.exit_code == 0, f"CLI failed:\n{result.output}"
        assert "Longest consecutive-month gig streak: 2" in result.output


class TestSettings:
    def test_invalid_settings_file(self, db_conn, tmp_path, monkeypatch):
        _, dsn = db_conn
        monkeypatch.chdir(tmp_path)
        bad = tmp_path / "bad.yml"
        bad.write_text("version: '1'\n")

        from click.testing import CliRunner
        from gig_etl.import_gigs import main

        result = CliRunner().invoke(main, ["--mode", "streak", "--db-dsn", dsn,
                                           "--settings-path", str(bad)])
        assert result.exit_code == 1
        assert "invalid settings" in result.output


class TestFestivalsMode:
    def test_json_festivals(self, db_conn, tmp_path, monkeypatch):
        conn, dsn = db_conn
        monkeypatch.chdir(tmp_path)
        festivals_path = tmp_path / "festivals.json"
        festivals_path.write_text(json.dumps([
            {"name": "Download", "year": 2024, "venueName": "Donington Park",
             "venueCity": "Castle Donington", "startDate": "2024-06-14",
             "endDate": "2024-06-16", "price": "320.00", "attendees": ["Alice"]},
        ]))

        from click.testing import CliRunner
        from gig_etl.import_gigs import main

        result = CliRunner().invoke(main, [
            "--mode", "festivals",
            "--db-dsn", dsn,
            "--festivals-path", str(festivals_path),
            "--run-id", "test-festival-run",
        ])

        assert result.exit_code == 0, f"CLI failed:\n{result.output}"
        assert "Wrote 1 festival(s)" in result.output
        row = conn.execute("SELECT name, price FROM festival").fetchone()
        assert row[0] == "Download"
        assert str(row[1]) == "320.00"
        assert conn.execute("SELECT count(*) FROM festival_attendee").fetchone()[0] == 1

    def test_unparseable_festival_file(self, db_conn, tmp_path, monkeypatch):
        _, dsn = db_conn
        monkeypatch.chdir(tmp_path)
        festivals_path = tmp_path / "festivals.json"
        festivals_path.write_text(json.dumps([{"name": "Download", "price": "lots"}]))

        from click.testing import CliRunner
        from gig_etl.import_gigs import main

        result = CliRunner().invoke(main, [
            "--mode", "festivals", "--db-dsn", dsn, "--festivals-path", str(festivals_path),
        ])
        assert result.exit_code == 1
        assert "could not read festivals" in result.output
