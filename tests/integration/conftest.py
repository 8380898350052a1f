"""Integration test fixtures.

Applies migrations 0001–0003 against an ephemeral PostgreSQL database
provided by pytest-postgresql before each integration test runs.
"""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = [
    PROJECT_ROOT / "migrations" / "0001_extensions.sql",
    PROJECT_ROOT / "migrations" / "0002_core_entities.sql",
    PROJECT_ROOT / "migrations" / "0003_gigs.sql",
]

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


def _pg_ctl_available() -> bool:
    if shutil.which("pg_ctl"):
        return True
    pg_config = shutil.which("pg_config")
    if not pg_config:
        return False
    # libpq-dev ships pg_config without the server binaries
    try:
        bindir = subprocess.run(
            [pg_config, "--bindir"], capture_output=True, text=True, check=True
        ).stdout.strip()
    except (OSError, subprocess.CalledProcessError):
        return False
    return (Path(bindir) / "pg_ctl").exists()


def pytest_collection_modifyitems(config, items):
    if _pg_ctl_available():
        return
    skip = pytest.mark.skip(reason="PostgreSQL server binaries (pg_ctl) not installed")
    for item in items:
        if "db_conn" in getattr(item, "fixturenames", ()):
            item.add_marker(skip)


# ---------------------------------------------------------------------------
# Schema fixture: applies all migrations to a fresh database per test
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(postgresql):
    """Return (psycopg connection with schema applied, dsn).

    Each test gets a fresh schema via function scope so tests are isolated.
    """
    dsn = (
        f"host={postgresql.info.host} "
        f"port={postgresql.info.port} "
        f"dbname={postgresql.info.dbname} "
        f"user={postgresql.info.user} "
        f"password={postgresql.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        for migration in MIGRATIONS:
            sql = migration.read_text(encoding="utf-8")
            conn.execute(sql)
        conn.autocommit = False
        yield conn, dsn
    finally:
        conn.close()
