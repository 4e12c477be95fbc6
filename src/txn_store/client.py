from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence

import psycopg
from loguru import logger
from psycopg_pool import ConnectionPool

from . import sql as q
from .errors import StoreError, map_db_error
from .models import TRANSACTION_FIELDS, Transaction


@dataclass
class _Cfg:
    dsn: str
    table: str = "transactions"
    app_name: Optional[str] = "txn_store"
    connect_timeout: float = 10.0
    statement_timeout_ms: Optional[int] = None
    pool_min: int = 1
    pool_max: int = 10


class TransactionStore:
    """Idempotent transaction store backed by PostgreSQL.

    Writes are ``INSERT ... ON CONFLICT (id) DO NOTHING``: repeating a write is
    always safe and only fresh ids count as written rows. The connection pool
    is shared by every consume worker; each call checks out its own
    connection.

    Usage:
        with TransactionStore({"dsn": "postgresql://..."}) as store:
            store.ensure_schema()
            inserted = store.apply_batch(transactions)
    """

    def __init__(self, config: dict, *, pool: Optional[ConnectionPool] = None):
        c = _Cfg(**config)
        self._cfg = c
        self._pool = pool or ConnectionPool(
            conninfo=c.dsn,
            min_size=c.pool_min,
            max_size=c.pool_max,
            timeout=c.connect_timeout,
            open=True,
        )

    @property
    def table(self) -> str:
        return self._cfg.table

    def close(self) -> None:
        self._pool.close()

    def __enter__(self) -> "TransactionStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ---------- internal helpers ----------

    @contextmanager
    def _conn(self) -> Iterator[psycopg.Connection]:
        """Pooled connection in one transaction; any failure surfaces as StoreError."""
        try:
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    if self._cfg.app_name:
                        cur.execute("SET application_name = %s", (self._cfg.app_name,))
                    if self._cfg.statement_timeout_ms is not None:
                        cur.execute(
                            "SET statement_timeout = %s", (f"{self._cfg.statement_timeout_ms}ms",)
                        )
                try:
                    yield conn
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise
        except StoreError:
            raise
        except Exception as e:
            raise map_db_error(e) from e

    @staticmethod
    def _params(rows: Sequence[Transaction]) -> list:
        out: list = []
        for r in rows:
            out.extend(getattr(r, c) for c in TRANSACTION_FIELDS)
        return out

    # ---------- admin / health ----------

    def health(self) -> bool:
        with self._conn() as conn, conn.cursor() as cur:
            cur.execute(q.HEALTH)
            _ = cur.fetchone()
            return True

    def ensure_schema(self) -> None:
        with self._conn() as conn, conn.cursor() as cur:
            cur.execute(q.create_table(self._cfg.table))
        logger.info(f"Table '{self._cfg.table}' ready")

    def count(self) -> int:
        with self._conn() as conn, conn.cursor() as cur:
            cur.execute(q.count_statement(self._cfg.table))
            row = cur.fetchone()
            return int(row[0]) if row else 0

    # ---------- writes (INSERT, conflict ignored) ----------

    def apply_batch(self, rows: Sequence[Transaction]) -> int:
        """Insert a batch atomically; returns rows actually written.

        Ids already stored, or repeated within ``rows``, are skipped rather
        than failing the call.
        """
        if not rows:
            return 0
        step = q.rows_per_statement()
        inserted = 0
        with self._conn() as conn, conn.cursor() as cur:
            for start in range(0, len(rows), step):
                chunk = rows[start : start + step]
                cur.execute(
                    q.insert_ignore_statement(self._cfg.table, len(chunk)), self._params(chunk)
                )
                inserted += max(cur.rowcount, 0)
        return inserted

    def apply_one(self, row: Transaction) -> bool:
        """Insert a single transaction; False when its id was already stored."""
        with self._conn() as conn, conn.cursor() as cur:
            cur.execute(q.insert_ignore_statement(self._cfg.table, 1), self._params([row]))
            return cur.rowcount == 1
