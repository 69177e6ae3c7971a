"""
PostgreSQL Data Provider

Direct psycopg2-based implementation of DataProvider for running against a
plain PostgreSQL database instead of Supabase. Renders the same
QueryDescriptor as the Supabase provider into SQL, so filter, ordering and
pagination semantics are identical. Realtime is not available here.

Active when DB_PROVIDER=postgres + POSTGRES_DSN is set.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import psycopg2
import psycopg2.extras
import psycopg2.pool

from ..config.logfire_config import get_logger, safe_span
from ..errors import BackendError, ConnectionFailedError, UnsupportedOperationError
from .models import (
    CreateOptions,
    DeleteOptions,
    Eq,
    FieldFilter,
    FindOptions,
    In,
    IsNull,
    MutationResult,
    QueryResult,
    Row,
    SingleResult,
    UpdateOptions,
    WhereInput,
    require_where,
    utc_now_iso,
)
from .query import QueryDescriptor, build_descriptor, filters_from
from .supabase_adapter import quote_ident

logger = get_logger(__name__)

R = TypeVar("R")


# ---------------------------------------------------------------------------
# SQL rendering
# ---------------------------------------------------------------------------


def _adapt_value(v: Any) -> Any:
    """Convert Python objects to psycopg2-compatible types."""
    if isinstance(v, (dict, list)):
        return psycopg2.extras.Json(v)
    return v


def build_where(filters: tuple[tuple[str, FieldFilter], ...]) -> tuple[str, list[Any]]:
    """Build WHERE clause and parameters list from filters."""
    if not filters:
        return "", []
    clauses: list[str] = []
    params: list[Any] = []
    for column, condition in filters:
        col = quote_ident(column)
        if isinstance(condition, IsNull):
            clauses.append(f"{col} IS NULL")
        elif isinstance(condition, In):
            # psycopg2 adapts a Python list to an ARRAY literal
            clauses.append(f"{col} = ANY(%s)")
            params.append(list(condition.values))
        elif isinstance(condition, Eq):
            clauses.append(f"{col} = %s")
            params.append(_adapt_value(condition.value))
    return "WHERE " + " AND ".join(clauses), params


def _returning(columns: list[str] | None) -> str:
    if not columns:
        return " RETURNING *"
    return " RETURNING " + ", ".join(quote_ident(c) for c in columns)


def render_select(table: str, descriptor: QueryDescriptor) -> tuple[str, list[Any]]:
    cols = ", ".join(quote_ident(c) for c in descriptor.columns) if descriptor.columns else "*"
    sql = f"SELECT {cols} FROM {quote_ident(table)}"
    where_clause, params = build_where(descriptor.filters)
    if where_clause:
        sql += " " + where_clause
    if descriptor.orders:
        order_parts = [
            f"{quote_ident(o.field)} {'DESC' if o.descending else 'ASC'}" for o in descriptor.orders
        ]
        sql += " ORDER BY " + ", ".join(order_parts)
    if descriptor.range is not None:
        start, end = descriptor.range
        sql += f" LIMIT {end - start + 1} OFFSET {start}"
    elif descriptor.limit is not None:
        sql += f" LIMIT {int(descriptor.limit)}"
    return sql, params


def render_count(table: str, filters: tuple[tuple[str, FieldFilter], ...]) -> tuple[str, list[Any]]:
    sql = f"SELECT count(*) AS count FROM {quote_ident(table)}"
    where_clause, params = build_where(filters)
    if where_clause:
        sql += " " + where_clause
    return sql, params


def render_insert(table: str, data: Row, returning: list[str] | None) -> tuple[str, list[Any]]:
    if not data:
        return f"INSERT INTO {quote_ident(table)} DEFAULT VALUES" + _returning(returning), []
    cols = ", ".join(quote_ident(c) for c in data)
    placeholders = ", ".join(["%s"] * len(data))
    sql = f"INSERT INTO {quote_ident(table)} ({cols}) VALUES ({placeholders})" + _returning(returning)
    return sql, [_adapt_value(v) for v in data.values()]


def render_update(
    table: str, data: Row, filters: tuple[tuple[str, FieldFilter], ...], returning: list[str] | None
) -> tuple[str, list[Any]]:
    set_parts = [f"{quote_ident(k)} = %s" for k in data]
    set_params = [_adapt_value(v) for v in data.values()]
    where_clause, where_params = build_where(filters)
    sql = f"UPDATE {quote_ident(table)} SET {', '.join(set_parts)} {where_clause}" + _returning(returning)
    return sql, set_params + where_params


def render_delete(
    table: str, filters: tuple[tuple[str, FieldFilter], ...], returning: list[str] | None
) -> tuple[str, list[Any]]:
    where_clause, params = build_where(filters)
    return f"DELETE FROM {quote_ident(table)} {where_clause}" + _returning(returning), params


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------


class PostgresProvider:
    """
    PostgreSQL-backed implementation of DataProvider.
    Uses psycopg2 with a threaded connection pool; blocking calls run in a
    worker thread so the provider can be awaited like the Supabase one.
    """

    def __init__(
        self,
        dsn: str,
        *,
        min_conn: int = 1,
        max_conn: int = 10,
        default_page_size: int = 20,
    ) -> None:
        self._dsn = dsn
        self._min_conn = min_conn
        self._max_conn = max_conn
        self._pool: psycopg2.pool.ThreadedConnectionPool | None = None
        self.default_page_size = default_page_size

    # --- Connection lifecycle ---

    async def connect(self) -> None:
        if self._pool is not None:
            return
        try:
            self._pool = await asyncio.to_thread(
                psycopg2.pool.ThreadedConnectionPool, self._min_conn, self._max_conn, dsn=self._dsn
            )
        except Exception as e:
            raise ConnectionFailedError(
                f"Failed to connect to PostgreSQL: {e}", operation="connect"
            ) from e
        logger.info("PostgresProvider connected (pool min=%d max=%d)", self._min_conn, self._max_conn)

    async def disconnect(self) -> None:
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        await asyncio.to_thread(pool.closeall)
        logger.info("PostgresProvider pool closed")

    def is_connected(self) -> bool:
        return self._pool is not None

    # --- Execution ---

    def _run(self, sql: str, params: Any) -> list[Row]:
        pool = self._pool
        if pool is None:
            raise ConnectionFailedError("PostgresProvider is not connected", operation="execute")
        conn = pool.getconn()
        try:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                logger.debug("PostgreSQL execute: %s | params=%s", sql, params)
                cur.execute(sql, params)
                conn.commit()
                rows = cur.fetchall() if cur.description else []
                return [dict(r) for r in rows]
        except Exception:
            conn.rollback()
            raise
        finally:
            pool.putconn(conn)

    async def _execute(self, sql: str, params: Any, operation: str, table: str | None) -> list[Row]:
        if self._pool is None:
            await self.connect()
        with safe_span("datalayer.postgres." + operation, table=table):
            try:
                return await asyncio.to_thread(self._run, sql, params)
            except Exception as e:
                raise BackendError(
                    f"PostgreSQL {operation} failed on {table or 'raw'}: {e}",
                    operation=operation,
                    table=table,
                ) from e

    # --- Reads ---

    async def find(self, table: str, options: FindOptions | None = None) -> QueryResult[Row]:
        sql, params = render_select(table, build_descriptor(options, self.default_page_size))
        return QueryResult(data=await self._execute(sql, params, "find", table))

    async def find_one(self, table: str, options: FindOptions | None = None) -> SingleResult[Row]:
        options = options or FindOptions()
        result = await self.find(
            table,
            FindOptions(
                select=options.select,
                where=options.where,
                order_by=list(options.order_by),
                limit=1,
                offset=options.offset,
            ),
        )
        return SingleResult(data=result.data[0] if result.data else None)

    async def count(self, table: str, options: FindOptions | None = None) -> int:
        sql, params = render_count(table, filters_from(options.where if options else None))
        rows = await self._execute(sql, params, "count", table)
        return int(rows[0]["count"]) if rows else 0

    async def exists(self, table: str, where: WhereInput) -> bool:
        return await self.count(table, FindOptions(where=where)) > 0

    # --- Mutations ---

    async def create(
        self, table: str, data: Row, options: CreateOptions | None = None
    ) -> MutationResult[Row]:
        sql, params = render_insert(table, data, options.returning if options else None)
        rows = await self._execute(sql, params, "create", table)
        if not rows:
            raise BackendError(f"Insert into {table} returned no row", operation="create", table=table)
        return MutationResult(data=rows[0], affected=len(rows))

    async def update(self, table: str, data: Row, options: UpdateOptions) -> MutationResult[list[Row]]:
        filters = tuple(require_where(options.where, "update").items())
        sql, params = render_update(table, data, filters, options.returning)
        rows = await self._execute(sql, params, "update", table)
        return MutationResult(data=rows, affected=len(rows))

    async def delete(self, table: str, options: DeleteOptions) -> MutationResult[list[Row]]:
        where = require_where(options.where, "delete")
        if options.soft:
            return await self.update(
                table,
                {"deleted_at": utc_now_iso()},
                UpdateOptions(where=where, returning=options.returning),
            )
        sql, params = render_delete(table, tuple(where.items()), options.returning)
        rows = await self._execute(sql, params, "delete", table)
        return MutationResult(data=rows, affected=len(rows))

    # --- Escape hatches ---

    async def raw(self, query: str, params: Any = None) -> QueryResult[Row]:
        rows = await self._execute(query, params, "raw", None)
        return QueryResult(data=rows, count=len(rows))

    async def truncate(self, table: str) -> None:
        await self._execute(f"TRUNCATE TABLE {quote_ident(table)}", None, "truncate", table)
        logger.warning("Truncated table %s", table)

    async def transaction(self, fn: Callable[[Any], Awaitable[R]]) -> R:
        raise UnsupportedOperationError(
            "PostgresProvider runs each statement on a pooled connection and cannot "
            "span a transaction across calls. Use a single raw() statement or a "
            "database function instead."
        )
