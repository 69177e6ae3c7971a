"""
In-memory stand-in for the supabase-py AsyncClient.

Implements the slice of the postgrest query builder, RPC and realtime channel
APIs the Supabase provider uses. Every executed query is recorded so tests can
assert on the exact builder calls, and inserts/updates/deletes are pushed to
subscribed channels the way the realtime server would.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from postgrest.exceptions import APIError


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class FakeResponse:
    def __init__(self, data: Any = None, count: int | None = None) -> None:
        self.data = data
        self.count = count


class FakeQuery:
    def __init__(self, db: FakeSupabaseClient, table: str) -> None:
        self.db = db
        self.table = table
        self.op: str | None = None
        self.columns = "*"
        self.count_method: str | None = None
        self.head = False
        self.payload: Any = None
        self.filters: list[tuple[str, str, Any]] = []
        self.orders: list[tuple[str, bool]] = []
        self.limit_value: int | None = None
        self.range_value: tuple[int, int] | None = None
        self.calls: list[tuple] = []

    # --- builder API ---

    def select(self, *columns: str, count: str | None = None, head: bool | None = None) -> FakeQuery:
        self.calls.append(("select", columns, count, head))
        self.op = "select"
        self.columns = ",".join(columns) or "*"
        self.count_method = count
        self.head = bool(head)
        return self

    def insert(self, data: Any) -> FakeQuery:
        self.calls.append(("insert", data))
        self.op, self.payload = "insert", data
        return self

    def update(self, data: Any) -> FakeQuery:
        self.calls.append(("update", data))
        self.op, self.payload = "update", data
        return self

    def delete(self) -> FakeQuery:
        self.calls.append(("delete",))
        self.op = "delete"
        return self

    def eq(self, column: str, value: Any) -> FakeQuery:
        self.calls.append(("eq", column, value))
        self.filters.append(("eq", column, value))
        return self

    def in_(self, column: str, values: list[Any]) -> FakeQuery:
        self.calls.append(("in_", column, list(values)))
        self.filters.append(("in", column, list(values)))
        return self

    def is_(self, column: str, value: str) -> FakeQuery:
        self.calls.append(("is_", column, value))
        self.filters.append(("is", column, value))
        return self

    def order(self, column: str, *, desc: bool = False) -> FakeQuery:
        self.calls.append(("order", column, desc))
        self.orders.append((column, desc))
        return self

    def limit(self, size: int) -> FakeQuery:
        self.calls.append(("limit", size))
        self.limit_value = size
        return self

    def range(self, start: int, end: int) -> FakeQuery:
        self.calls.append(("range", start, end))
        self.range_value = (start, end)
        return self

    async def execute(self) -> FakeResponse:
        self.db.executed.append(self)
        failure = self.db.failures.pop((self.op, self.table), None)
        if failure is not None:
            raise failure
        return self.db.run(self)

    # --- evaluation ---

    def matches(self, row: dict[str, Any]) -> bool:
        for kind, column, value in self.filters:
            if kind == "eq" and row.get(column) != value:
                return False
            if kind == "in" and row.get(column) not in value:
                return False
            if kind == "is" and value == "null" and row.get(column) is not None:
                return False
        return True


class FakeRpc:
    def __init__(self, db: FakeSupabaseClient, fn: str, params: dict[str, Any]) -> None:
        self.db = db
        self.fn = fn
        self.params = params

    async def execute(self) -> FakeResponse:
        self.db.rpc_calls.append((self.fn, self.params))
        failure = self.db.failures.pop(("rpc", self.fn), None)
        if failure is not None:
            raise failure
        handler = self.db.rpc_handlers.get(self.fn)
        data = handler(self.params) if handler else []
        return FakeResponse(data=data)


class FakeChannel:
    def __init__(self, db: FakeSupabaseClient, name: str) -> None:
        self.db = db
        self.name = name
        self.listeners: list[dict[str, Any]] = []
        self.subscribed = False

    def on_postgres_changes(
        self,
        event: str,
        callback: Callable[[Any], None],
        table: str = "*",
        schema: str = "public",
        filter: str | None = None,
    ) -> FakeChannel:
        self.listeners.append(
            {"event": event, "callback": callback, "table": table, "schema": schema, "filter": filter}
        )
        return self

    async def subscribe(self, callback: Callable[..., None] | None = None) -> FakeChannel:
        if self.db.subscribe_error is not None:
            raise self.db.subscribe_error
        status = self.db.subscribe_status
        if status == "SUBSCRIBED":
            self.subscribed = True
        if callback is not None and status is not None:
            callback(status, None)
        return self

    def emit(self, change_type: str, table: str, record: Any, old_record: Any) -> None:
        if not self.subscribed:
            return
        for listener in self.listeners:
            if listener["table"] not in ("*", table):
                continue
            if listener["event"] not in ("*", change_type):
                continue
            listener["callback"](
                {
                    "data": {
                        "schema": listener["schema"],
                        "table": table,
                        "type": change_type,
                        "record": record,
                        "old_record": old_record,
                        "commit_timestamp": _now(),
                        "columns": [],
                        "errors": None,
                    },
                    "ids": [],
                }
            )


class FakePostgrest:
    """Stands in for the postgrest client; only tracks its HTTP session state."""

    def __init__(self) -> None:
        self.closed = False
        self.close_error: Exception | None = None

    async def aclose(self) -> None:
        if self.close_error is not None:
            raise self.close_error
        self.closed = True


class FakeSupabaseClient:
    """Rows live in self.tables; unique constraints are declared per table."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.unique: dict[str, list[str]] = {}
        self.executed: list[FakeQuery] = []
        self.rpc_calls: list[tuple[str, dict[str, Any]]] = []
        self.rpc_handlers: dict[str, Callable[[dict[str, Any]], Any]] = {}
        self.failures: dict[tuple[str | None, str], Exception] = {}
        self.channels: list[FakeChannel] = []
        self.removed_channels: list[FakeChannel] = []
        self.subscribe_status: str | None = "SUBSCRIBED"
        self.subscribe_error: Exception | None = None
        self.postgrest = FakePostgrest()

    # --- client API ---

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, fn: str, params: dict[str, Any]) -> FakeRpc:
        return FakeRpc(self, fn, params)

    def channel(self, name: str) -> FakeChannel:
        channel = FakeChannel(self, name)
        self.channels.append(channel)
        return channel

    async def remove_channel(self, channel: FakeChannel) -> None:
        channel.subscribed = False
        if channel in self.channels:
            self.channels.remove(channel)
        self.removed_channels.append(channel)

    # --- helpers for tests ---

    def seed(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        stored = []
        for row in rows:
            full = {"id": str(uuid.uuid4()), "created_at": _now(), "updated_at": _now(), **row}
            self.tables.setdefault(table, []).append(full)
            stored.append(dict(full))
        return stored

    def last_query(self, table: str | None = None) -> FakeQuery:
        for query in reversed(self.executed):
            if table is None or query.table == table:
                return query
        raise AssertionError(f"no query executed against {table}")

    # --- evaluation ---

    def _emit(self, change_type: str, table: str, record: Any, old_record: Any) -> None:
        for channel in list(self.channels):
            channel.emit(change_type, table, record, old_record)

    def _check_unique(self, table: str, row: dict[str, Any], ignore: dict[str, Any] | None = None) -> None:
        for column in self.unique.get(table, []):
            value = row.get(column)
            if value is None:
                continue
            for existing in self.tables.get(table, []):
                if existing is not ignore and existing.get(column) == value:
                    raise APIError(
                        {
                            "message": f'duplicate key value violates unique constraint "{table}_{column}_key"',
                            "code": "23505",
                            "hint": None,
                            "details": None,
                        }
                    )

    def run(self, query: FakeQuery) -> FakeResponse:
        rows = self.tables.setdefault(query.table, [])

        if query.op == "select":
            matched = [r for r in rows if query.matches(r)]
            for column, desc in reversed(query.orders):
                matched.sort(key=lambda r: (r.get(column) is None, r.get(column)), reverse=desc)
            count = len(matched) if query.count_method else None
            if query.range_value is not None:
                start, end = query.range_value
                matched = matched[start : end + 1]
            elif query.limit_value is not None:
                matched = matched[: query.limit_value]
            if query.head:
                return FakeResponse(data=[], count=count)
            if query.columns != "*":
                keep = [c.strip() for c in query.columns.split(",")]
                return FakeResponse(data=[{c: r.get(c) for c in keep} for r in matched], count=count)
            return FakeResponse(data=[dict(r) for r in matched], count=count)

        if query.op == "insert":
            now = _now()
            row = {"id": str(uuid.uuid4()), "created_at": now, "updated_at": now, **query.payload}
            self._check_unique(query.table, row)
            rows.append(row)
            self._emit("INSERT", query.table, dict(row), None)
            return FakeResponse(data=[dict(row)])

        if query.op == "update":
            changed = []
            for row in rows:
                if query.matches(row):
                    old = dict(row)
                    candidate = {**row, **query.payload}
                    self._check_unique(query.table, candidate, ignore=row)
                    row.update(query.payload)
                    changed.append(dict(row))
                    self._emit("UPDATE", query.table, dict(row), old)
            return FakeResponse(data=changed)

        if query.op == "delete":
            removed = [r for r in rows if query.matches(r)]
            self.tables[query.table] = [r for r in rows if not query.matches(r)]
            for row in removed:
                self._emit("DELETE", query.table, None, dict(row))
            return FakeResponse(data=[dict(r) for r in removed])

        raise AssertionError(f"unsupported op {query.op}")


async def settle(rounds: int = 20) -> None:
    """Let delivery worker tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
