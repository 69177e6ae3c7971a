"""
Data Provider Protocol

Defines the structural interface that all data providers must implement.
Uses Python Protocols for structural subtyping (duck typing); providers
do not need to inherit from these classes.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar, runtime_checkable

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
)

R = TypeVar("R")


@runtime_checkable
class DataProvider(Protocol):
    """
    Backend-independent data access.

    Every I/O method is a coroutine. Failures raise a DataAccessError
    subclass; find_one() returns SingleResult(data=None) when nothing
    matches, because not-found is a valid outcome.
    """

    # Connection lifecycle
    async def connect(self) -> None: ...
    async def disconnect(self) -> None: ...
    def is_connected(self) -> bool: ...

    # Reads
    async def find(self, table: str, options: FindOptions | None = None) -> QueryResult[Row]: ...
    async def find_one(self, table: str, options: FindOptions | None = None) -> SingleResult[Row]: ...
    async def count(self, table: str, options: FindOptions | None = None) -> int: ...
    async def exists(self, table: str, where: WhereInput) -> bool: ...

    # Mutations
    async def create(
        self, table: str, data: Row, options: CreateOptions | None = None
    ) -> MutationResult[Row]: ...
    async def update(
        self, table: str, data: Row, options: UpdateOptions
    ) -> MutationResult[list[Row]]: ...
    async def delete(self, table: str, options: DeleteOptions) -> MutationResult[list[Row]]: ...

    # Escape hatches
    async def raw(self, query: str, params: Any = None) -> QueryResult[Row]: ...
    async def truncate(self, table: str) -> None: ...
    async def transaction(self, fn: Callable[[DataProvider], Awaitable[R]]) -> R: ...


@runtime_checkable
class RealtimeProvider(DataProvider, Protocol):
    """Optional extension: row-level change notifications."""

    async def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        event: EventFilter = "*",
        filter: str | None = None,
        schema: str = "public",
    ) -> Subscription: ...
    async def unsubscribe(self, subscription: Subscription) -> None: ...
    async def unsubscribe_all(self) -> None: ...
