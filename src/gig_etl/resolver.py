"""gig_etl.resolver

Identity resolution: turn a loose reference (UUID, name, or 'new:<name>')
into the canonical ID of an Artist, Venue, Person, Festival or Song,
creating the entity when nothing matches.

Every lookup goes identity cache -> storage (normalized key) -> insert.
The cache is scoped to one Resolver, and a Resolver to one logical
operation: a single upsert call or one whole CSV batch.

Creation is race-safe: INSERT ... ON CONFLICT DO NOTHING against the
natural-key unique index, followed by a SELECT of the winning row.
"""

from __future__ import annotations

import logging
from typing import Any

import psycopg

from gig_etl.models import ById, ByName, EntityKind, Reference, parse_reference
from gig_etl.normalize import new_slug, normalize_name, normalize_space
from gig_etl.shared import ConflictError, RunCounters, ValidationError

log = logging.getLogger(__name__)

DEFAULT_UNKNOWN_CITY = "Unknown"


# ---------------------------------------------------------------------------
# Identity cache
# ---------------------------------------------------------------------------

class IdentityCache:
    """Write-through map of (kind, normalized key) -> entity ID."""

    def __init__(self) -> None:
        self._entries: dict[tuple[EntityKind, tuple[str, ...]], str] = {}

    def get(self, kind: EntityKind, key: tuple[str, ...]) -> str | None:
        return self._entries.get((kind, key))

    def put(self, kind: EntityKind, key: tuple[str, ...], entity_id: str) -> None:
        self._entries[(kind, key)] = entity_id

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# SQL per entity kind
# ---------------------------------------------------------------------------

_SELECT = {
    EntityKind.ARTIST: "SELECT id FROM artist WHERE normalized_name = %s",
    EntityKind.VENUE: (
        "SELECT id FROM venue WHERE normalized_name = %s AND normalized_city = %s"
    ),
    EntityKind.PERSON: "SELECT id FROM person WHERE normalized_name = %s",
    EntityKind.FESTIVAL: "SELECT id FROM festival WHERE normalized_name = %s",
    EntityKind.SONG: "SELECT id FROM song WHERE artist_id = %s AND normalized_title = %s",
}

_INSERT = {
    EntityKind.ARTIST: """
        INSERT INTO artist (name, normalized_name, slug)
        VALUES (%s, %s, %s)
        ON CONFLICT DO NOTHING
        RETURNING id
    """,
    EntityKind.VENUE: """
        INSERT INTO venue (name, city, normalized_name, normalized_city, slug)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT DO NOTHING
        RETURNING id
    """,
    EntityKind.PERSON: """
        INSERT INTO person (name, normalized_name, slug)
        VALUES (%s, %s, %s)
        ON CONFLICT DO NOTHING
        RETURNING id
    """,
    EntityKind.FESTIVAL: """
        INSERT INTO festival (name, normalized_name, slug)
        VALUES (%s, %s, %s)
        ON CONFLICT DO NOTHING
        RETURNING id
    """,
    EntityKind.SONG: """
        INSERT INTO song (artist_id, title, normalized_title, slug)
        VALUES (%s, %s, %s, %s)
        ON CONFLICT DO NOTHING
        RETURNING id
    """,
}

_INSERTED_COUNTER = {
    EntityKind.ARTIST: "artists_inserted",
    EntityKind.VENUE: "venues_inserted",
    EntityKind.PERSON: "people_inserted",
    EntityKind.FESTIVAL: "festivals_inserted",
    EntityKind.SONG: "songs_inserted",
}


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class Resolver:
    """Get-or-create for each entity kind, sharing one IdentityCache.

    Created and matched counts land on `counters`; batch paths pass their
    RunCounters in so the numbers show up in the run report.
    """

    def __init__(
        self,
        conn: psycopg.Connection,
        cache: IdentityCache | None = None,
        counters: RunCounters | None = None,
        unknown_city: str = DEFAULT_UNKNOWN_CITY,
    ) -> None:
        self.conn = conn
        self.cache = cache if cache is not None else IdentityCache()
        self.counters = counters if counters is not None else RunCounters()
        self.unknown_city = unknown_city

    # -- public get_or_create per kind -------------------------------------

    def get_or_create_artist(self, name: str | None) -> str:
        display = _require_name(name, EntityKind.ARTIST)
        key = (normalize_name(display),)
        return self._get_or_create(
            EntityKind.ARTIST, key, key, (display, key[0], new_slug(display))
        )

    def get_or_create_venue(self, name: str | None, city: str | None = None) -> str:
        display = _require_name(name, EntityKind.VENUE)
        city_display = normalize_space(city) or self.unknown_city
        key = (normalize_name(display), normalize_name(city_display))
        return self._get_or_create(
            EntityKind.VENUE,
            key,
            key,
            (display, city_display, key[0], key[1], new_slug(f"{display} {city_display}")),
        )

    def get_or_create_person(self, name: str | None) -> str:
        display = _require_name(name, EntityKind.PERSON)
        key = (normalize_name(display),)
        return self._get_or_create(
            EntityKind.PERSON, key, key, (display, key[0], new_slug(display))
        )

    def get_or_create_festival(self, name: str | None) -> str:
        display = _require_name(name, EntityKind.FESTIVAL)
        key = (normalize_name(display),)
        return self._get_or_create(
            EntityKind.FESTIVAL, key, key, (display, key[0], new_slug(display))
        )

    def get_or_create_song(self, artist_id: str, title: str | None) -> str:
        display = _require_name(title, EntityKind.SONG)
        key = (artist_id, normalize_name(display))
        return self._get_or_create(
            EntityKind.SONG,
            key,
            key,
            (artist_id, display, key[1], new_slug(display)),
        )

    # -- reference dispatch --------------------------------------------------

    def resolve(
        self,
        reference: Reference | str | None,
        kind: EntityKind,
        city: str | None = None,
        artist_id: str | None = None,
    ) -> str:
        """Resolve a reference to an entity ID.

        ById is returned as-is with no existence check; a dangling ID
        fails later as a foreign-key violation (NotFoundError). Songs need
        the owning artist_id; venues take an optional city.
        """
        ref = reference
        if not isinstance(ref, (ById, ByName)):
            ref = parse_reference(ref)
        if ref is None:
            raise ValidationError(f"{kind.value} reference is required")
        if isinstance(ref, ById):
            return ref.id
        if kind is EntityKind.ARTIST:
            return self.get_or_create_artist(ref.name)
        if kind is EntityKind.VENUE:
            return self.get_or_create_venue(ref.name, city)
        if kind is EntityKind.PERSON:
            return self.get_or_create_person(ref.name)
        if kind is EntityKind.FESTIVAL:
            return self.get_or_create_festival(ref.name)
        if artist_id is None:
            raise ValidationError("song resolution requires an artist")
        return self.get_or_create_song(artist_id, ref.name)

    # -- internals -------------------------------------------------------------

    def _get_or_create(
        self,
        kind: EntityKind,
        key: tuple[str, ...],
        select_params: tuple[Any, ...],
        insert_params: tuple[Any, ...],
    ) -> str:
        cached = self.cache.get(kind, key)
        if cached is not None:
            return cached

        row = self.conn.execute(_SELECT[kind], select_params).fetchone()
        if row is not None:
            entity_id = str(row[0])
            self.counters.entities_matched_existing += 1
        else:
            inserted = self.conn.execute(_INSERT[kind], insert_params).fetchone()
            if inserted is not None:
                entity_id = str(inserted[0])
                counter = _INSERTED_COUNTER[kind]
                setattr(self.counters, counter, getattr(self.counters, counter) + 1)
                log.debug("created %s %s key=%r", kind.value, entity_id, key)
            else:
                # Lost the insert race: another writer owns the natural key.
                row = self.conn.execute(_SELECT[kind], select_params).fetchone()
                if row is None:
                    raise ConflictError(
                        f"could not create or find {kind.value}",
                        entity_type=kind.value,
                        key=key,
                    )
                entity_id = str(row[0])
                self.counters.entities_matched_existing += 1

        self.cache.put(kind, key, entity_id)
        return entity_id


def _require_name(name: str | None, kind: EntityKind) -> str:
    display = normalize_space(name)
    if display is None:
        raise ValidationError(f"{kind.value} name must not be blank")
    return display
