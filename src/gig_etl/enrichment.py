"""gig_etl.enrichment

Enrichment provider seam. A provider looks at a loaded gig and suggests
support acts, a headliner setlist and an image. Providers are opaque and
best-effort: gig_upsert.enrich_gig() treats any provider error as "no
enrichment".

Two implementations ship here:
  JsonFileEnrichmentProvider  suggestions prepared offline, keyed by gig
                              id or slug
  NullEnrichmentProvider      never suggests anything (tests, dry runs)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from gig_etl.models import Enrichment, GigRecord, SetlistEntry
from gig_etl.normalize import normalize_space

log = logging.getLogger(__name__)

# Same shape as a requested setlist entry.
EnrichedSong = SetlistEntry


class EnrichmentProvider(Protocol):
    def enrich(self, gig: GigRecord) -> Enrichment | None:
        """Return suggestions for the gig, or None when there are none."""
        ...


def enrichment_from_dict(data: dict[str, Any]) -> Enrichment:
    """Build an Enrichment from a JSON object (snake_case or camelCase)."""
    support = data.get("support_acts", data.get("supportActs")) or []
    setlist = data.get("setlist") or []
    query = data.get("image_search_query", data.get("imageSearchQuery"))
    return Enrichment(
        support_acts=[s for s in (normalize_space(str(x)) for x in support) if s],
        setlist=[
            song for song in (EnrichedSong.from_value(s) for s in setlist)
            if normalize_space(song.title)
        ],
        image_search_query=normalize_space(query) if query else None,
    )


@dataclass
class JsonFileEnrichmentProvider:
    """Serve enrichments from a JSON file: {"<gig id or slug>": {...}, ...}."""

    path: Path
    _by_key: dict[str, dict[str, Any]] | None = field(default=None, init=False, repr=False)

    def _load(self) -> dict[str, dict[str, Any]]:
        if self._by_key is None:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError(f"{self.path}: expected a JSON object keyed by gig")
            self._by_key = raw
            log.info("loaded %d enrichment entries from %s", len(raw), self.path)
        return self._by_key

    def enrich(self, gig: GigRecord) -> Enrichment | None:
        entries = self._load()
        data = entries.get(gig.id) or entries.get(gig.slug)
        if not data:
            return None
        return enrichment_from_dict(data)


@dataclass
class NullEnrichmentProvider:
    """No-op provider."""

    def enrich(self, gig: GigRecord) -> Enrichment | None:
        return None
