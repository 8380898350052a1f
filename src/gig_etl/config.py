"""gig_etl.config

YAML settings for the gig_etl CLI.

Responsibilities:
  - Load and validate config/gig_etl.yml
  - Check the file's ticket-type labels against the built-in label table
  - Supply defaults when no settings file is given

Usage:
    from pathlib import Path
    from gig_etl.config import load_settings

    settings = load_settings(Path("config/gig_etl.yml"))
    settings.unknown_city          # "Unknown"
    settings.calendar.calendar_id  # "primary"

The database DSN and API tokens never live here: they come from CLI flags
and environment variables.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from gig_etl.models import (
    TICKET_TYPE_LABELS,
    TicketType,
    parse_ticket_type,
    validate_ticket_type_labels,
)
from gig_etl.resolver import DEFAULT_UNKNOWN_CITY

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

REQUIRED_YAML_KEYS = frozenset({"version", "unknown_city", "calendar"})

VALID_CALENDAR_SOURCES = ("json", "google")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class SettingsValidationError(ValueError):
    """Raised when the YAML settings file fails schema validation."""


# ---------------------------------------------------------------------------
# Settings dataclasses
# ---------------------------------------------------------------------------

@dataclass
class CalendarSettings:
    source: str = "json"
    calendar_id: str = "primary"
    token_env: str = "GOOGLE_CALENDAR_TOKEN"
    lookback_years: int = 5
    page_size: int = 250
    new_gig_ticket_type: TicketType = TicketType.STANDING


@dataclass
class Settings:
    version: str = "1"
    unknown_city: str = DEFAULT_UNKNOWN_CITY
    calendar: CalendarSettings = field(default_factory=CalendarSettings)
    yaml_hash: str | None = None


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_settings(yaml_path: Path | None) -> Settings:
    """Load and validate settings; built-in defaults when yaml_path is None.

    Raises:
        SettingsValidationError: If a required field is missing or invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    if yaml_path is None:
        return Settings()
    raw = yaml_path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw)
    validate_settings(data)

    cal = data["calendar"] or {}
    return Settings(
        version=str(data["version"]),
        unknown_city=str(data["unknown_city"]).strip(),
        calendar=CalendarSettings(
            source=str(cal.get("source", "json")),
            calendar_id=str(cal.get("calendar_id", "primary")),
            token_env=str(cal.get("token_env", "GOOGLE_CALENDAR_TOKEN")),
            lookback_years=int(cal.get("lookback_years", 5)),
            page_size=int(cal.get("page_size", 250)),
            new_gig_ticket_type=parse_ticket_type(cal.get("new_gig_ticket_type", "Standing")),
        ),
        yaml_hash=hashlib.sha256(raw.encode("utf-8")).hexdigest(),
    )


def validate_settings(data: Any) -> None:
    """Raise SettingsValidationError if data does not match the settings schema.

    Validates:
      - Required top-level keys present
      - unknown_city is a non-blank string
      - calendar.source is json or google; numeric fields are positive
      - ticket_type_labels, when given, names every ticket type exactly
        once and agrees with the built-in label table
    """
    if not isinstance(data, dict):
        raise SettingsValidationError("settings file must contain a YAML mapping")

    missing = REQUIRED_YAML_KEYS - set(data.keys())
    if missing:
        raise SettingsValidationError(f"Missing required keys: {sorted(missing)}")

    if not isinstance(data["unknown_city"], str) or not data["unknown_city"].strip():
        raise SettingsValidationError("unknown_city must be a non-blank string")

    cal = data["calendar"] or {}
    if not isinstance(cal, dict):
        raise SettingsValidationError("calendar must be a mapping")
    source = cal.get("source", "json")
    if source not in VALID_CALENDAR_SOURCES:
        raise SettingsValidationError(
            f"calendar.source must be one of {VALID_CALENDAR_SOURCES}, got {source!r}"
        )
    for key in ("lookback_years", "page_size"):
        if key in cal:
            try:
                value = int(cal[key])
            except (TypeError, ValueError):
                raise SettingsValidationError(f"calendar.{key} must be an integer")
            if value < 1:
                raise SettingsValidationError(f"calendar.{key} must be >= 1, got {value}")
    if "new_gig_ticket_type" in cal:
        wanted = str(cal["new_gig_ticket_type"])
        if parse_ticket_type(wanted) is TicketType.OTHER and wanted.strip().lower() != "other":
            raise SettingsValidationError(
                f"calendar.new_gig_ticket_type {wanted!r} is not a ticket type"
            )

    labels = data.get("ticket_type_labels")
    if labels is not None:
        _validate_labels(labels)


def _validate_labels(labels: Any) -> None:
    if not isinstance(labels, dict):
        raise SettingsValidationError("ticket_type_labels must be a mapping")
    by_type: dict[TicketType, str] = {}
    for name, label in labels.items():
        try:
            ticket_type = TicketType(name)
        except ValueError:
            raise SettingsValidationError(f"ticket_type_labels: unknown ticket type {name!r}")
        by_type[ticket_type] = str(label)
    try:
        validate_ticket_type_labels(by_type)
    except ValueError as exc:
        raise SettingsValidationError(f"ticket_type_labels: {exc}") from exc
    drift = {
        t.value: (by_type[t], TICKET_TYPE_LABELS[t])
        for t in TicketType
        if by_type[t] != TICKET_TYPE_LABELS[t]
    }
    if drift:
        raise SettingsValidationError(
            f"ticket_type_labels disagree with the built-in table: {drift}"
        )
