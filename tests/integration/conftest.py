"""Integration test fixtures.

Applies the asset hierarchy migrations against an ephemeral PostgreSQL
database provided by pytest-postgresql before any integration test runs.
"""

from __future__ import annotations

from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = [
    PROJECT_ROOT / "migrations" / "0001_asset_hierarchy.sql",
]

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


# ---------------------------------------------------------------------------
# Schema fixture
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(postgresql):
    """Return (psycopg connection, dsn) with the schema applied.

    Function scope gives every test a fresh database.
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
            conn.execute(migration.read_text(encoding="utf-8"))
        conn.autocommit = False
        yield conn, dsn
    finally:
        conn.close()
