"""gig_etl.shared

Shared utilities used by the upsert orchestrator and both batch importers.
Includes the exception taxonomy, RejectWriter, RunCounters, translation of
PostgreSQL integrity errors, and report-writing support.
"""

from __future__ import annotations

import contextlib
import csv
import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

import psycopg
from psycopg import errors as pg_errors


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class GigEtlError(Exception):
    """Base class for errors surfaced to callers of the engine."""


class ValidationError(GigEtlError):
    """A required reference or name is missing or blank."""


class NotFoundError(GigEtlError):
    """An operation targeted an ID that does not exist."""


class ConflictError(GigEtlError):
    """Duplicate natural key or optimistic-concurrency failure.

    Carries enough detail to diagnose which row lost the race.
    """

    def __init__(
        self,
        message: str,
        entity_type: str | None = None,
        key: Any = None,
        state: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.entity_type = entity_type
        self.key = key
        self.state = state or {}

    def diagnostic(self) -> str:
        return (
            f"{self} entity_type={self.entity_type!r} key={self.key!r} "
            f"state={json.dumps(self.state, default=str, sort_keys=True)}"
        )


class ParseError(GigEtlError):
    """Input text could not be parsed and no safe default exists."""


# ---------------------------------------------------------------------------
# Integrity-error translation at the unit-of-work boundary
# ---------------------------------------------------------------------------

@contextlib.contextmanager
def translate_db_errors(
    entity_type: str,
    key: Any = None,
    state: dict[str, Any] | None = None,
) -> Iterator[None]:
    """Re-raise PostgreSQL integrity failures as engine exceptions."""
    try:
        yield
    except pg_errors.ForeignKeyViolation as exc:
        raise NotFoundError(
            f"referenced row does not exist while saving {entity_type}: "
            f"{exc.diag.message_detail or exc}"
        ) from exc
    except (pg_errors.UniqueViolation, pg_errors.SerializationFailure) as exc:
        raise ConflictError(
            f"conflict while saving {entity_type}: {exc.diag.message_primary or exc}",
            entity_type=entity_type,
            key=key,
            state=dict(state or {}, constraint=exc.diag.constraint_name),
        ) from exc


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for skipped rows."""

    def __init__(self, path: Path | None) -> None:
        self._path = path
        self._fh = None
        self._writer = None

    def write(self, row: dict[str, str], reason: str) -> None:
        if self._path is None:
            return
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            fieldnames = list(row.keys()) + ["_reject_reason"]
            self._writer = csv.DictWriter(
                self._fh, fieldnames=fieldnames, extrasaction="ignore"
            )
            self._writer.writeheader()
        out = dict(row)
        out["_reject_reason"] = reason
        self._writer.writerow(out)
        self._fh.flush()

    def close(self) -> None:
        if self._fh:
            self._fh.close()


# ---------------------------------------------------------------------------
# RunCounters
# ---------------------------------------------------------------------------

@dataclass
class RunCounters:
    # CSV
    rows_read: int = 0
    rows_processed: int = 0
    rows_skipped: int = 0
    # Entity resolution
    artists_inserted: int = 0
    venues_inserted: int = 0
    people_inserted: int = 0
    festivals_inserted: int = 0
    songs_inserted: int = 0
    entities_matched_existing: int = 0
    # Gigs
    gigs_created: int = 0
    gigs_updated: int = 0
    acts_added: int = 0
    acts_updated: int = 0
    acts_removed: int = 0
    attendees_added: int = 0
    attendees_removed: int = 0
    # Calendar
    events_found: int = 0
    events_skipped: int = 0
    # Enrichment
    gigs_enriched: int = 0
    warnings: list[str] = field(default_factory=list)

    def snapshot(self) -> dict[str, int]:
        """Numeric counts, for restoring after a rolled-back unit of work."""
        return {k: v for k, v in self.__dict__.items() if k != "warnings"}

    def restore(self, snapshot: dict[str, int]) -> None:
        self.__dict__.update(snapshot)

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in self.__dict__.items() if k != "warnings"}
        d["warnings"] = self.warnings[:50]
        return d


# ---------------------------------------------------------------------------
# Header normalization
# ---------------------------------------------------------------------------

def normalize_headers(raw: dict[str | None, Any]) -> dict[str, str | None]:
    """Return a new dict with header keys whitespace-stripped.

    Overflow cells that csv.DictReader files under a None key are dropped.
    """
    return {k.strip(): v for k, v in raw.items() if k is not None}


# ---------------------------------------------------------------------------
# Connection helper
# ---------------------------------------------------------------------------

def connect(db_dsn: str) -> psycopg.Connection:
    """Open a non-autocommit connection; callers scope work with conn.transaction()."""
    return psycopg.connect(db_dsn, autocommit=False)


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, str | None],
    counters: RunCounters,
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.utcnow().isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "counters": counters.to_dict(),
    }
    report_path = Path(f"./artifacts/reports/{run_id}.json")
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
