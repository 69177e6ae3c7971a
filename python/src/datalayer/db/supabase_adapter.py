"""
Supabase Data Provider

Implements DataProvider and RealtimeProvider on top of the supabase-py async
client. FindOptions are translated into postgrest query-builder calls via
the shared QueryDescriptor; backend responses are normalized into
QueryResult / SingleResult / MutationResult.
Active when DB_PROVIDER=supabase (default).
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from supabase import AsyncClient, acreate_client

from ..config.logfire_config import get_logger, safe_span
from ..errors import BackendError, ConfigurationError, ConnectionFailedError, UnsupportedOperationError
from .models import (
    ChangeCallback,
    CreateOptions,
    DeleteOptions,
    EventFilter,
    FindOptions,
    MutationResult,
    QueryResult,
    Row,
    SingleResult,
    Subscription,
    UpdateOptions,
    WhereInput,
    require_where,
    utc_now_iso,
)
from .query import apply_descriptor, apply_filters, build_descriptor, filters_from, project
from .realtime import ChannelRegistry

logger = get_logger(__name__)

R = TypeVar("R")

ClientFactory = Callable[[], Awaitable[Any]]


def quote_ident(name: str) -> str:
    """Double-quote an SQL identifier, allowing schema-qualified names."""
    return ".".join('"' + part.replace('"', '""') + '"' for part in name.split("."))


class SupabaseProvider:
    """
    Supabase-backed implementation of DataProvider and RealtimeProvider.

    One AsyncClient is shared by every caller. The client is created by
    connect(), or lazily by the first operation.
    """

    def __init__(
        self,
        url: str | None = None,
        service_key: str | None = None,
        *,
        client_factory: ClientFactory | None = None,
        default_page_size: int = 20,
        raw_rpc_function: str = "execute_sql",
        subscribe_timeout: float = 10.0,
    ) -> None:
        if client_factory is None:
            if not url or not service_key:
                raise ConfigurationError("SupabaseProvider requires url and service_key or a client_factory")
            client_factory = self._default_factory(url, service_key)
        self._client_factory = client_factory
        self._client: AsyncClient | None = None
        self.default_page_size = default_page_size
        self.raw_rpc_function = raw_rpc_function
        self._channels = ChannelRegistry(subscribe_timeout=subscribe_timeout)

    @staticmethod
    def _default_factory(url: str, service_key: str) -> ClientFactory:
        async def factory() -> AsyncClient:
            return await acreate_client(url, service_key)

        return factory

    # --- Connection lifecycle ---

    async def connect(self) -> None:
        if self._client is not None:
            return
        try:
            self._client = await self._client_factory()
        except Exception as e:
            raise ConnectionFailedError(f"Failed to create Supabase client: {e}", operation="connect") from e
        logger.info("SupabaseProvider connected")

    async def disconnect(self) -> None:
        """Release realtime channels, then close the postgrest HTTP session."""
        if self._client is None:
            return
        client, self._client = self._client, None
        try:
            await self._channels.close_all()
        finally:
            await self._close_session(client)
            logger.info("SupabaseProvider disconnected")

    @staticmethod
    async def _close_session(client: Any) -> None:
        postgrest = getattr(client, "postgrest", None)
        aclose = getattr(postgrest, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as e:
            raise ConnectionFailedError(
                f"Failed to close Supabase HTTP session: {e}", operation="disconnect"
            ) from e

    def is_connected(self) -> bool:
        return self._client is not None

    async def _get_client(self) -> AsyncClient:
        if self._client is None:
            await self.connect()
        return self._client  # type: ignore[return-value]

    # --- Execution ---

    async def _execute(self, builder: Any, operation: str, table: str | None) -> Any:
        with safe_span("datalayer.supabase." + operation, table=table):
            try:
                return await builder.execute()
            except Exception as e:
                raise BackendError(
                    f"Supabase {operation} failed on {table or 'rpc'}: {e}",
                    operation=operation,
                    table=table,
                ) from e

    # --- Reads ---

    async def find(self, table: str, options: FindOptions | None = None) -> QueryResult[Row]:
        descriptor = build_descriptor(options, self.default_page_size)
        client = await self._get_client()
        builder = apply_descriptor(client.table(table).select(descriptor.select_clause), descriptor)
        logger.debug("find %s: %s", table, descriptor)
        response = await self._execute(builder, "find", table)
        return QueryResult(data=list(response.data or []), count=getattr(response, "count", None))

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
        where = options.where if options else None
        client = await self._get_client()
        builder = apply_filters(
            client.table(table).select("*", count="exact", head=True), filters_from(where)
        )
        response = await self._execute(builder, "count", table)
        return int(response.count or 0)

    async def exists(self, table: str, where: WhereInput) -> bool:
        return await self.count(table, FindOptions(where=where)) > 0

    # --- Mutations ---

    async def create(
        self, table: str, data: Row, options: CreateOptions | None = None
    ) -> MutationResult[Row]:
        client = await self._get_client()
        response = await self._execute(client.table(table).insert(data), "create", table)
        rows = project(list(response.data or []), options.returning if options else None)
        if not rows:
            raise BackendError(f"Insert into {table} returned no row", operation="create", table=table)
        return MutationResult(data=rows[0], affected=len(rows))

    async def update(self, table: str, data: Row, options: UpdateOptions) -> MutationResult[list[Row]]:
        filters = tuple(require_where(options.where, "update").items())
        client = await self._get_client()
        builder = apply_filters(client.table(table).update(data), filters)
        response = await self._execute(builder, "update", table)
        rows = project(list(response.data or []), options.returning)
        return MutationResult(data=rows, affected=len(rows))

    async def delete(self, table: str, options: DeleteOptions) -> MutationResult[list[Row]]:
        where = require_where(options.where, "delete")
        if options.soft:
            # Soft delete is an ordinary update so update triggers fire the same way
            return await self.update(
                table,
                {"deleted_at": utc_now_iso()},
                UpdateOptions(where=where, returning=options.returning),
            )
        client = await self._get_client()
        builder = apply_filters(client.table(table).delete(), tuple(where.items()))
        response = await self._execute(builder, "delete", table)
        rows = project(list(response.data or []), options.returning)
        return MutationResult(data=rows, affected=len(rows))

    # --- Escape hatches ---

    async def raw(self, query: str, params: Any = None) -> QueryResult[Row]:
        """
        Forward a statement verbatim to the configured RPC function.
        The statement is not parsed or validated here; malformed SQL fails at
        the backend and surfaces as BackendError.
        """
        client = await self._get_client()
        payload = {"query": query, "params": params if params is not None else {}}
        response = await self._execute(client.rpc(self.raw_rpc_function, payload), "raw", None)
        data = response.data
        if data is None:
            rows: list[Row] = []
        elif isinstance(data, list):
            rows = data
        else:
            rows = [data]
        return QueryResult(data=rows, count=len(rows))

    async def truncate(self, table: str) -> None:
        await self.raw(f"TRUNCATE TABLE {quote_ident(table)}")
        logger.warning("Truncated table %s", table)

    async def transaction(self, fn: Callable[[Any], Awaitable[R]]) -> R:
        raise UnsupportedOperationError(
            "Supabase does not expose client-driven multi-statement transactions. "
            "Move the statements into a database function and call it through raw(), "
            "or sequence the writes yourself and compensate on failure."
        )

    # --- Realtime ---

    async def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        event: EventFilter = "*",
        filter: str | None = None,
        schema: str = "public",
    ) -> Subscription:
        client = await self._get_client()
        return await self._channels.open(
            client, table, callback, event=event, filter=filter, schema=schema
        )

    async def unsubscribe(self, subscription: Subscription) -> None:
        await self._channels.close(subscription)

    async def unsubscribe_all(self) -> None:
        await self._channels.close_all()

    @property
    def active_subscriptions(self) -> int:
        return len(self._channels)
