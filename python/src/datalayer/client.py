"""
Data Client

The single construction point of the data layer: one provider, shared by
one instance of each specialized repository. Construct it once at process
start and pass it to the code that needs it.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from .config.settings import Settings
from .db.factory import create_provider
from .db.models import ChangeCallback, EventFilter, QueryResult, Row, Subscription
from .db.protocol import DataProvider, RealtimeProvider
from .errors import UnsupportedOperationError
from .repositories import MembershipRepository, OrganizationRepository, UserRepository

R = TypeVar("R")


class DataClient:
    """
    Facade over one DataProvider.

    Usage:
        async with DataClient.from_settings(Settings.from_env()) as db:
            org = await db.organizations.find_by_slug("acme")
    """

    def __init__(self, provider: DataProvider) -> None:
        self.provider = provider
        self.users = UserRepository(provider)
        self.memberships = MembershipRepository(provider)
        self.organizations = OrganizationRepository(provider, memberships=self.memberships)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> DataClient:
        return cls(create_provider(settings))

    async def __aenter__(self) -> DataClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.disconnect()

    # --- Connection lifecycle ---

    async def connect(self) -> None:
        await self.provider.connect()

    async def disconnect(self) -> None:
        """Disconnect the provider; realtime channels are released first."""
        await self.provider.disconnect()

    def is_connected(self) -> bool:
        return self.provider.is_connected()

    # --- Queries ---

    async def raw(self, query: str, params: Any = None) -> QueryResult[Row]:
        return await self.provider.raw(query, params)

    async def transaction(self, fn: Callable[[DataClient], Awaitable[R]]) -> R:
        """
        Not available: the backend offers no client-driven multi-statement
        atomicity. Raises UnsupportedOperationError. Use run_non_atomic() and
        compensate on failure, or move the statements into a database function.
        """
        raise UnsupportedOperationError(
            "DataClient.transaction is not supported by the backend; "
            "use run_non_atomic() with compensating writes instead."
        )

    async def run_non_atomic(self, fn: Callable[[DataClient], Awaitable[R]]) -> R:
        """
        Await fn(self). Statements issued by fn run one after another as
        independent writes; nothing is rolled back if fn fails midway.
        """
        return await fn(self)

    # --- Realtime ---

    def _realtime(self) -> RealtimeProvider:
        if not isinstance(self.provider, RealtimeProvider):
            raise UnsupportedOperationError(
                f"{type(self.provider).__name__} does not support realtime subscriptions"
            )
        return self.provider

    async def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        event: EventFilter = "*",
        filter: str | None = None,
        schema: str = "public",
    ) -> Subscription:
        return await self._realtime().subscribe(
            table, callback, event=event, filter=filter, schema=schema
        )

    async def unsubscribe(self, subscription: Subscription) -> None:
        await self._realtime().unsubscribe(subscription)
