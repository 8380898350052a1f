"""gig_etl.people

Explicit Person operations. Attendee lists create people lazily through
the Resolver; these cover the direct create / rename / delete calls.
"""

from __future__ import annotations

import psycopg

from gig_etl.normalize import normalize_name, normalize_space
from gig_etl.resolver import Resolver
from gig_etl.shared import NotFoundError, ValidationError, translate_db_errors


def create_person(conn: psycopg.Connection, name: str, resolver: Resolver | None = None) -> str:
    """Get-or-create a person by name; returns the person ID."""
    resolver = resolver or Resolver(conn)
    with translate_db_errors("person", key=name):
        with conn.transaction():
            return resolver.get_or_create_person(name)


def rename_person(conn: psycopg.Connection, person_id: str, name: str) -> None:
    """Change the display name. The slug is kept.

    Renaming onto another person's name raises ConflictError.
    """
    display = normalize_space(name)
    if display is None:
        raise ValidationError("person name must not be blank")
    with translate_db_errors("person", key=person_id, state={"name": display}):
        with conn.transaction():
            row = conn.execute(
                """
                UPDATE person SET name = %s, normalized_name = %s
                WHERE id = %s
                RETURNING id
                """,
                (display, normalize_name(display), person_id),
            ).fetchone()
            if row is None:
                raise NotFoundError(f"person {person_id} not found")


def delete_person(conn: psycopg.Connection, person_id: str) -> None:
    """Delete a person; gig and festival attendee rows cascade."""
    with translate_db_errors("person", key=person_id):
        with conn.transaction():
            row = conn.execute(
                "DELETE FROM person WHERE id = %s RETURNING id", (person_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"person {person_id} not found")
