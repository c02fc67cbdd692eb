from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Sequence, TypedDict, Union

import psycopg
from psycopg import sql as psql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from .errors import map_db_error

Query = Union[str, psql.Composable]
Params = Union[Sequence[Any], Mapping[str, Any], None]


class BackendConfig(TypedDict, total=False):
    dsn: str
    app_name: str
    statement_timeout_ms: int
    pool_min: int
    pool_max: int


DEFAULTS: BackendConfig = {
    "pool_min": 1,
    "pool_max": 10,
}


def row_select(table: str, column: str) -> psql.Composed:
    """SELECT * FROM table WHERE column = %s"""
    return psql.SQL("SELECT * FROM {} WHERE {} = %s").format(
        psql.Identifier(table), psql.Identifier(column)
    )


def batch_select(table: str) -> psql.Composed:
    """SELECT * FROM table LIMIT %s"""
    return psql.SQL("SELECT * FROM {} LIMIT %s").format(psql.Identifier(table))


class AsyncBackend:
    """Async persistence client over a psycopg connection pool.

    Every driver error leaves this class as a typed error from
    ``write_consistency.backend.errors``. The instance is created and owned by
    the application's composition root and passed to whatever needs it.

    A pool passed in must produce connections with ``row_factory=dict_row``.
    """

    def __init__(self, cfg: BackendConfig | None = None, *, pool: Any = None):
        self.cfg: BackendConfig = {**DEFAULTS, **(cfg or {})}
        if pool is None:
            if "dsn" not in self.cfg:
                raise ValueError("dsn required")
            pool = AsyncConnectionPool(
                conninfo=self.cfg["dsn"],
                min_size=self.cfg["pool_min"],
                max_size=self.cfg["pool_max"],
                kwargs={"autocommit": True, "row_factory": dict_row},
                open=False,
            )
        self.pool = pool
        self.app_name = self.cfg.get("app_name")
        self.statement_timeout_ms = self.cfg.get("statement_timeout_ms")

    async def open(self) -> None:
        await self.pool.open()

    async def aclose(self) -> None:
        await self.pool.close()

    async def __aenter__(self) -> "AsyncBackend":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    @asynccontextmanager
    async def _conn(self) -> AsyncIterator[Any]:
        try:
            async with self.pool.connection() as conn:
                if self.app_name:
                    await conn.execute(
                        psql.SQL("SET application_name = {}").format(psql.Literal(self.app_name))
                    )
                if self.statement_timeout_ms:
                    await conn.execute(
                        psql.SQL("SET statement_timeout = {}").format(
                            psql.Literal(int(self.statement_timeout_ms))
                        )
                    )
                yield conn
        except psycopg.Error as e:
            raise map_db_error(e) from e

    # ---------- statements ----------

    async def execute(self, query: Query, params: Params = None) -> int:
        """Run a statement, return the affected row count."""
        async with self._conn() as conn:
            cur = await conn.execute(query, params)
            return cur.rowcount

    async def fetch_one(self, query: Query, params: Params = None) -> dict | None:
        async with self._conn() as conn:
            cur = await conn.execute(query, params)
            return await cur.fetchone()

    async def fetch_all(self, query: Query, params: Params = None) -> list[dict]:
        async with self._conn() as conn:
            cur = await conn.execute(query, params)
            return await cur.fetchall()

    # ---------- health ----------

    async def health(self) -> bool:
        row = await self.fetch_one("SELECT 1 AS ok")
        return bool(row and row.get("ok") == 1)
