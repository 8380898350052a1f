"""gig_etl.reconcile

Collection reconciliation for a gig's child rows.

plan_reconcile() is pure: given existing children and a desired list, both
keyed by natural key, it returns what to remove, what to update in place,
and what to add. The apply_* helpers execute a plan against one gig, act
or festival, touching only the rows that differ.

Desired items reach this module already resolved to IDs (artist_id,
song_id, person_id); name resolution is the Resolver's job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, Hashable, Iterable, TypeVar

import psycopg

from gig_etl.models import ActRecord, SongRecord
from gig_etl.shared import RunCounters

log = logging.getLogger(__name__)

E = TypeVar("E")
D = TypeVar("D")


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------

@dataclass
class ReconcilePlan(Generic[E, D]):
    remove: list[E] = field(default_factory=list)
    update: list[tuple[E, D]] = field(default_factory=list)
    add: list[D] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not self.remove and not self.update and not self.add


def plan_reconcile(
    existing: Iterable[E],
    desired: Iterable[D],
    existing_key: Callable[[E], Hashable],
    desired_key: Callable[[D], Hashable],
    remove_missing: bool = True,
) -> ReconcilePlan[E, D]:
    """Diff existing children against the desired list.

    - desired keys repeated later in the list are ignored (first wins)
    - an existing child with a desired key is paired for in-place update
    - an existing child with no desired key is removed, unless
      remove_missing is False
    - a desired key with no existing child is added
    Output lists keep input order.
    """
    plan: ReconcilePlan[E, D] = ReconcilePlan()

    desired_by_key: dict[Hashable, D] = {}
    for item in desired:
        desired_by_key.setdefault(desired_key(item), item)

    matched: set[Hashable] = set()
    for child in existing:
        key = existing_key(child)
        if key in desired_by_key and key not in matched:
            matched.add(key)
            plan.update.append((child, desired_by_key[key]))
        elif remove_missing:
            plan.remove.append(child)

    plan.add = [item for key, item in desired_by_key.items() if key not in matched]
    return plan


# ---------------------------------------------------------------------------
# Desired shapes (resolved)
# ---------------------------------------------------------------------------

@dataclass
class DesiredSong:
    song_id: str
    order: int
    is_encore: bool = False
    info: str | None = None
    is_tape: bool = False
    with_artist_id: str | None = None
    cover_artist_id: str | None = None


@dataclass
class DesiredAct:
    artist_id: str
    order: int
    is_headliner: bool = False
    setlist_url: str | None = None
    # None: leave the act's songs alone. []: remove them all.
    setlist: list[DesiredSong] | None = None


# ---------------------------------------------------------------------------
# Acts
# ---------------------------------------------------------------------------

def apply_acts(
    conn: psycopg.Connection,
    gig_id: str,
    existing: list[ActRecord],
    desired: list[DesiredAct],
    counters: RunCounters,
    remove_missing: bool = True,
) -> ReconcilePlan[ActRecord, DesiredAct]:
    plan = plan_reconcile(
        existing, desired,
        existing_key=lambda a: a.artist_id,
        desired_key=lambda d: d.artist_id,
        remove_missing=remove_missing,
    )

    for act in plan.remove:
        # gig_artist_song rows go with it (ON DELETE CASCADE)
        conn.execute("DELETE FROM gig_artist WHERE id = %s", (act.id,))
        counters.acts_removed += 1

    for act, want in plan.update:
        if (act.is_headliner, act.order, act.setlist_url) != (
            want.is_headliner, want.order, want.setlist_url
        ):
            conn.execute(
                """
                UPDATE gig_artist
                SET is_headliner = %s, act_order = %s, setlist_url = %s
                WHERE id = %s
                """,
                (want.is_headliner, want.order, want.setlist_url, act.id),
            )
            counters.acts_updated += 1
        if want.setlist is not None:
            apply_setlist(conn, act.id, act.songs, want.setlist, remove_missing)

    for want in plan.add:
        row = conn.execute(
            """
            INSERT INTO gig_artist (gig_id, artist_id, is_headliner, act_order, setlist_url)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING id
            """,
            (gig_id, want.artist_id, want.is_headliner, want.order, want.setlist_url),
        ).fetchone()
        counters.acts_added += 1
        if want.setlist:
            apply_setlist(conn, str(row[0]), [], want.setlist, remove_missing)

    return plan


# ---------------------------------------------------------------------------
# Setlist songs
# ---------------------------------------------------------------------------

def apply_setlist(
    conn: psycopg.Connection,
    gig_artist_id: str,
    existing: list[SongRecord],
    desired: list[DesiredSong],
    remove_missing: bool = True,
) -> ReconcilePlan[SongRecord, DesiredSong]:
    plan = plan_reconcile(
        existing, desired,
        existing_key=lambda s: s.song_id,
        desired_key=lambda d: d.song_id,
        remove_missing=remove_missing,
    )

    for song in plan.remove:
        conn.execute(
            "DELETE FROM gig_artist_song WHERE gig_artist_id = %s AND song_id = %s",
            (gig_artist_id, song.song_id),
        )

    for song, want in plan.update:
        current = (
            song.order, song.is_encore, song.info, song.is_tape,
            song.with_artist_id, song.cover_artist_id,
        )
        wanted = (
            want.order, want.is_encore, want.info, want.is_tape,
            want.with_artist_id, want.cover_artist_id,
        )
        if current == wanted:
            continue
        conn.execute(
            """
            UPDATE gig_artist_song
            SET song_order = %s, is_encore = %s, info = %s, is_tape = %s,
                with_artist_id = %s, cover_artist_id = %s
            WHERE gig_artist_id = %s AND song_id = %s
            """,
            (*wanted, gig_artist_id, song.song_id),
        )

    for want in plan.add:
        conn.execute(
            """
            INSERT INTO gig_artist_song
              (gig_artist_id, song_id, song_order, is_encore, info, is_tape,
               with_artist_id, cover_artist_id)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                gig_artist_id, want.song_id, want.order, want.is_encore, want.info,
                want.is_tape, want.with_artist_id, want.cover_artist_id,
            ),
        )

    if not plan.is_noop:
        log.debug(
            "setlist %s: -%d ~%d +%d",
            gig_artist_id, len(plan.remove), len(plan.update), len(plan.add),
        )
    return plan


# ---------------------------------------------------------------------------
# Attendees
# ---------------------------------------------------------------------------

def apply_gig_attendees(
    conn: psycopg.Connection,
    gig_id: str,
    existing_person_ids: list[str],
    desired_person_ids: list[str],
    counters: RunCounters,
    remove_missing: bool = True,
) -> ReconcilePlan[str, str]:
    plan = plan_reconcile(
        existing_person_ids, desired_person_ids,
        existing_key=str, desired_key=str,
        remove_missing=remove_missing,
    )
    for person_id in plan.remove:
        conn.execute(
            "DELETE FROM gig_attendee WHERE gig_id = %s AND person_id = %s",
            (gig_id, person_id),
        )
        counters.attendees_removed += 1
    for person_id in plan.add:
        conn.execute(
            """
            INSERT INTO gig_attendee (gig_id, person_id)
            VALUES (%s, %s)
            ON CONFLICT (gig_id, person_id) DO NOTHING
            """,
            (gig_id, person_id),
        )
        counters.attendees_added += 1
    return plan


def apply_festival_attendees(
    conn: psycopg.Connection,
    festival_id: str,
    existing_person_ids: list[str],
    desired_person_ids: list[str],
    counters: RunCounters,
    remove_missing: bool = True,
) -> ReconcilePlan[str, str]:
    plan = plan_reconcile(
        existing_person_ids, desired_person_ids,
        existing_key=str, desired_key=str,
        remove_missing=remove_missing,
    )
    for person_id in plan.remove:
        conn.execute(
            "DELETE FROM festival_attendee WHERE festival_id = %s AND person_id = %s",
            (festival_id, person_id),
        )
        counters.attendees_removed += 1
    for person_id in plan.add:
        conn.execute(
            """
            INSERT INTO festival_attendee (festival_id, person_id)
            VALUES (%s, %s)
            ON CONFLICT (festival_id, person_id) DO NOTHING
            """,
            (festival_id, person_id),
        )
        counters.attendees_added += 1
    return plan
