from __future__ import annotations

from typing import Sequence

from psycopg import sql as psql

from .models import TRANSACTION_FIELDS

# PostgreSQL caps bind parameters per statement at 65535.
MAX_BIND_PARAMS = 65535

HEALTH = "SELECT 1"


def create_table(table: str) -> psql.Composed:
    """CREATE TABLE IF NOT EXISTS with ``id`` as the primary (conflict) key."""
    return psql.SQL(
        "CREATE TABLE IF NOT EXISTS {} ("
        "id TEXT PRIMARY KEY, "
        "date TIMESTAMPTZ NOT NULL, "
        "document TEXT NOT NULL, "
        "name TEXT NOT NULL, "
        "age INTEGER NOT NULL CHECK (age >= 0), "
        "amount DOUBLE PRECISION NOT NULL, "
        "installments INTEGER NOT NULL CHECK (installments >= 1), "
        "created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(), "
        "updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW())"
    ).format(psql.Identifier(table))


def insert_ignore_statement(
    table: str,
    nrows: int,
    cols: Sequence[str] = TRANSACTION_FIELDS,
    conflict_cols: Sequence[str] = ("id",),
) -> psql.Composed:
    """Multi-row INSERT ... ON CONFLICT ... DO NOTHING with positional parameters.

    Collisions inside the same VALUES list are ignored as well, so the
    statement's rowcount is exactly the number of fresh rows.
    """
    if nrows <= 0:
        raise ValueError("nrows must be > 0")
    row = psql.SQL("({})").format(psql.SQL(", ").join(psql.Placeholder() for _ in cols))
    return psql.SQL("INSERT INTO {} ({}) VALUES {} ON CONFLICT ({}) DO NOTHING").format(
        psql.Identifier(table),
        psql.SQL(", ").join(psql.Identifier(c) for c in cols),
        psql.SQL(", ").join(row for _ in range(nrows)),
        psql.SQL(", ").join(psql.Identifier(c) for c in conflict_cols),
    )


def count_statement(table: str) -> psql.Composed:
    return psql.SQL("SELECT count(*) FROM {}").format(psql.Identifier(table))


def rows_per_statement(ncols: int = len(TRANSACTION_FIELDS)) -> int:
    return MAX_BIND_PARAMS // ncols
