"""gig_etl.batch

Batch runner shared by the CSV, calendar and festival importers.

Failure policies:
  FAIL_FAST         one transaction for the whole batch; the first error
                    rolls everything back and is re-raised (CSV, festivals)
  SKIP_ON_CONFLICT  one transaction per item, committed before the next;
                    a ConflictError skips that item only, any other error
                    is re-raised (calendar)

Conflicts are logged with their full diagnostic (entity type, key and
tracked state) whichever policy is in force. With dry_run the whole batch
runs inside an outer transaction that is rolled back at the end.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, TypeVar

import psycopg

from gig_etl.shared import ConflictError, RunCounters, translate_db_errors

log = logging.getLogger(__name__)

T = TypeVar("T")


class BatchPolicy(Enum):
    FAIL_FAST = "fail_fast"
    SKIP_ON_CONFLICT = "skip_on_conflict"


@dataclass
class BatchResult:
    processed: int = 0
    skipped: int = 0


def run_batch(
    conn: psycopg.Connection,
    items: Iterable[T],
    handler: Callable[[T], bool],
    policy: BatchPolicy,
    counters: RunCounters,
    label: str = "item",
    dry_run: bool = False,
) -> BatchResult:
    """Apply handler to each item under the given failure policy.

    handler returns True when it processed the item and False when it
    chose to ignore it; ignored items count toward neither total.
    """
    result = BatchResult()
    if not dry_run:
        # Start from a clean transaction state so each unit of work below
        # is a real transaction rather than a savepoint.
        conn.commit()
        _run(conn, items, handler, policy, counters, label, result)
        return result

    with conn.transaction():
        _run(conn, items, handler, policy, counters, label, result)
        raise psycopg.Rollback()
    log.info("dry run: %s batch rolled back", label)
    return result


def _run(
    conn: psycopg.Connection,
    items: Iterable[T],
    handler: Callable[[T], bool],
    policy: BatchPolicy,
    counters: RunCounters,
    label: str,
    result: BatchResult,
) -> None:
    if policy is BatchPolicy.FAIL_FAST:
        try:
            with translate_db_errors(label):
                with conn.transaction():
                    for item in items:
                        if handler(item):
                            result.processed += 1
        except ConflictError as exc:
            _log_conflict(counters, label, exc)
            raise
        return

    for idx, item in enumerate(items):
        # Counts bumped by a rolled-back item must not survive it.
        before = counters.snapshot()
        try:
            with translate_db_errors(label, key=idx):
                with conn.transaction():
                    if handler(item):
                        result.processed += 1
        except ConflictError as exc:
            counters.restore(before)
            _log_conflict(counters, label, exc)
            result.skipped += 1


def _log_conflict(counters: RunCounters, label: str, exc: ConflictError) -> None:
    log.error("conflict in %s batch: %s", label, exc.diagnostic())
    counters.warnings.append(f"{label}: {exc.diagnostic()}")
