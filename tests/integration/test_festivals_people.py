"""Integration tests for festival and person operations.

These tests run against an ephemeral PostgreSQL database with the full
schema applied via the db_conn fixture in conftest.py.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest

from gig_etl.festivals import delete_festival, load_festival, upsert_festival
from gig_etl.gig_upsert import load_gig, upsert_gig
from gig_etl.models import ActRequest, UpsertFestivalRequest, UpsertGigRequest
from gig_etl.people import create_person, delete_person, rename_person
from gig_etl.resolver import Resolver
from gig_etl.shared import ConflictError, NotFoundError, RunCounters, ValidationError
from gig_etl.stats import festival_price_by_year, gig_month_streak


def _glastonbury(**overrides) -> UpsertFestivalRequest:
    fields = dict(
        name="Glastonbury",
        year=2024,
        venue_name="Worthy Farm",
        venue_city="Pilton",
        start_date=date(2024, 6, 26),
        end_date=date(2024, 6, 30),
        price=Decimal("360"),
        attendees=["Alice", "Bob"],
    )
    fields.update(overrides)
    return UpsertFestivalRequest(**fields)


def _festival_gig(festival_id: str, headliner: str, day: int) -> UpsertGigRequest:
    return UpsertGigRequest(
        date=date(2024, 6, day),
        festival_id=festival_id,
        ticket_cost=Decimal("50"),
        acts=[ActRequest(headliner, is_headliner=True)],
    )


def _count(conn, table: str) -> int:
    return conn.execute(f"SELECT count(*) FROM {table}").fetchone()[0]


# ---------------------------------------------------------------------------
# Festivals
# ---------------------------------------------------------------------------

class TestUpsertFestival:
    def test_create(self, db_conn):
        conn, _ = db_conn
        fest = upsert_festival(conn, _glastonbury())
        assert fest.name == "Glastonbury"
        assert fest.year == 2024
        assert fest.venue_id is not None
        assert fest.price == Decimal("360.00")
        assert len(fest.attendee_ids) == 2

    def test_same_name_updates(self, db_conn):
        conn, _ = db_conn
        first = upsert_festival(conn, _glastonbury())
        second = upsert_festival(conn, _glastonbury(name="glastonbury", attendees=["Bob"]))
        assert second.id == first.id
        assert _count(conn, "festival") == 1
        bob = conn.execute("SELECT id FROM person WHERE name = 'Bob'").fetchone()[0]
        assert second.attendee_ids == [str(bob)]

    def test_blank_name(self, db_conn):
        conn, _ = db_conn
        with pytest.raises(ValidationError):
            upsert_festival(conn, _glastonbury(name="  "))

    def test_unknown_festival_id(self, db_conn):
        conn, _ = db_conn
        with pytest.raises(NotFoundError):
            upsert_festival(conn, _glastonbury(), festival_id=str(uuid.uuid4()))

    def test_gigs_use_festival_venue_and_drop_cost(self, db_conn):
        conn, _ = db_conn
        fest = upsert_festival(conn, _glastonbury())
        gig = upsert_gig(conn, _festival_gig(fest.id, "Coldplay", 29))
        assert gig.venue_id == fest.venue_id
        assert gig.festival_id == fest.id
        assert gig.ticket_cost is None

    def test_gig_orders_only_for_owned_gigs(self, db_conn):
        conn, _ = db_conn
        fest = upsert_festival(conn, _glastonbury())
        gig = upsert_gig(conn, _festival_gig(fest.id, "Coldplay", 29))
        outsider = upsert_gig(conn, UpsertGigRequest(
            date=date(2024, 6, 29), venue_name="O2", venue_city="London",
            acts=[ActRequest("Queen", is_headliner=True)],
        ))
        counters = RunCounters()

        upsert_festival(
            conn,
            _glastonbury(gig_orders=[(gig.id, 2), (outsider.id, 7)]),
            resolver=Resolver(conn, counters=counters),
        )

        assert load_gig(conn, gig.id).order == 2
        assert load_gig(conn, outsider.id).order == 0
        assert len(counters.warnings) == 1
        assert outsider.id in counters.warnings[0]

    def test_delete_unlinks_gigs(self, db_conn):
        conn, _ = db_conn
        fest = upsert_festival(conn, _glastonbury())
        gig = upsert_gig(conn, _festival_gig(fest.id, "Coldplay", 29))
        delete_festival(conn, fest.id)
        assert _count(conn, "festival") == 0
        assert _count(conn, "festival_attendee") == 0
        assert load_gig(conn, gig.id).festival_id is None

    def test_delete_unknown(self, db_conn):
        conn, _ = db_conn
        with pytest.raises(NotFoundError):
            delete_festival(conn, str(uuid.uuid4()))

    def test_load_unknown(self, db_conn):
        conn, _ = db_conn
        with pytest.raises(NotFoundError):
            load_festival(conn, str(uuid.uuid4()))


# ---------------------------------------------------------------------------
# People
# ---------------------------------------------------------------------------

class TestPeople:
    def test_create_is_idempotent(self, db_conn):
        conn, _ = db_conn
        assert create_person(conn, "Alice") == create_person(conn, "ALICE")
        assert _count(conn, "person") == 1

    def test_rename(self, db_conn):
        conn, _ = db_conn
        person_id = create_person(conn, "Alice")
        rename_person(conn, person_id, "Alice Smith")
        row = conn.execute(
            "SELECT name, normalized_name FROM person WHERE id = %s", (person_id,)
        ).fetchone()
        assert row == ("Alice Smith", "alice smith")

    def test_rename_onto_existing_name_conflicts(self, db_conn):
        conn, _ = db_conn
        alice = create_person(conn, "Alice")
        create_person(conn, "Bob")
        with pytest.raises(ConflictError) as exc_info:
            rename_person(conn, alice, "bob")
        assert exc_info.value.entity_type == "person"

    def test_rename_blank(self, db_conn):
        conn, _ = db_conn
        person_id = create_person(conn, "Alice")
        with pytest.raises(ValidationError):
            rename_person(conn, person_id, " ")

    def test_rename_unknown(self, db_conn):
        conn, _ = db_conn
        with pytest.raises(NotFoundError):
            rename_person(conn, str(uuid.uuid4()), "Zed")

    def test_delete_removes_attendance(self, db_conn):
        conn, _ = db_conn
        fest = upsert_festival(conn, _glastonbury())
        gig = upsert_gig(conn, UpsertGigRequest(
            date=date(2024, 1, 5), venue_name="O2", venue_city="London",
            acts=[ActRequest("Queen", is_headliner=True)], attendees=["Alice"],
        ))
        alice = conn.execute("SELECT id FROM person WHERE name = 'Alice'").fetchone()[0]
        delete_person(conn, str(alice))
        assert load_gig(conn, gig.id).attendees == []
        assert len(load_festival(conn, fest.id).attendee_ids) == 1

    def test_delete_unknown(self, db_conn):
        conn, _ = db_conn
        with pytest.raises(NotFoundError):
            delete_person(conn, str(uuid.uuid4()))


# ---------------------------------------------------------------------------
# Stats over stored data
# ---------------------------------------------------------------------------

class TestStoredStats:
    def test_streak_and_festival_prices(self, db_conn):
        conn, _ = db_conn
        for month in (1, 2, 3, 5):
            upsert_gig(conn, UpsertGigRequest(
                date=date(2023, month, 10), venue_name="O2", venue_city="London",
                acts=[ActRequest("Queen", is_headliner=True)],
            ))
        upsert_festival(conn, _glastonbury())
        assert gig_month_streak(conn) == 3
        assert festival_price_by_year(conn) == {2024: Decimal("72.00")}

    def test_empty_database(self, db_conn):
        conn, _ = db_conn
        assert gig_month_streak(conn) is None
        assert festival_price_by_year(conn) == {}
