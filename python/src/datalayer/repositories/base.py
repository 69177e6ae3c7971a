"""
Base Repository

Entity-typed CRUD over one table, delegating every call to the bound
DataProvider. Soft-delete handling lives here so specialized repositories
only add the queries the declarative model cannot express.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Iterable, Mapping
from typing import Any, Generic, TypeVar, cast

from ..db.models import (
    CreateOptions,
    DeleteOptions,
    FindOptions,
    Identifier,
    MutationResult,
    PaginatedResult,
    QueryResult,
    SingleResult,
    UpdateOptions,
    WhereInput,
    utc_now_iso,
)
from ..db.protocol import DataProvider
from ..errors import QueryValidationError

T = TypeVar("T", bound=Mapping[str, Any])

ACTIVE = {"deleted_at": None}


def check_page(page: int, per_page: int) -> None:
    if page < 1:
        raise QueryValidationError(f"page must be >= 1, got {page}")
    if per_page <= 0:
        raise QueryValidationError(f"per_page must be > 0, got {per_page}")


class BaseRepository(Generic[T]):
    """
    Generic repository bound to one table and one provider.

    Subclasses set:
        table: table name
        soft_delete: whether rows carry deleted_at (default True)
        timestamps: whether rows carry updated_at maintained by the data layer
        lowercase_fields: text columns stored lower-cased (case-insensitive unique values)
    """

    table: str = ""
    soft_delete: bool = True
    timestamps: bool = True
    lowercase_fields: tuple[str, ...] = ()

    def __init__(self, provider: DataProvider, table: str | None = None) -> None:
        self.provider = provider
        if table is not None:
            self.table = table
        if not self.table:
            raise ValueError(f"{type(self).__name__} requires a table name")

    # --- Reads ---

    async def find(self, options: FindOptions | None = None) -> QueryResult[T]:
        """All matching rows, soft-deleted ones included."""
        return cast(QueryResult[T], await self.provider.find(self.table, options))

    async def find_one(self, options: FindOptions | None = None) -> SingleResult[T]:
        return cast(SingleResult[T], await self.provider.find_one(self.table, options))

    async def find_by_id(self, id: Identifier) -> SingleResult[T]:
        return await self.find_one(FindOptions(where={"id": id}))

    async def find_active(self, options: FindOptions | None = None) -> QueryResult[T]:
        """Like find(), excluding soft-deleted rows."""
        return await self.find(self._active(options))

    async def find_active_by_id(self, id: Identifier) -> SingleResult[T]:
        return await self.find_one(self._active(FindOptions(where={"id": id})))

    async def count(self, options: FindOptions | None = None) -> int:
        return await self.provider.count(self.table, options)

    async def count_active(self, options: FindOptions | None = None) -> int:
        return await self.count(self._active(options))

    async def exists(self, where: WhereInput) -> bool:
        return await self.provider.exists(self.table, where)

    async def paginate(
        self, page: int = 1, per_page: int = 20, options: FindOptions | None = None
    ) -> PaginatedResult[T]:
        """
        One page of rows plus the total row count.

        Raises:
            QueryValidationError: page < 1 or per_page <= 0
        """
        check_page(page, per_page)

        options = options or FindOptions()
        page_options = FindOptions(
            select=options.select,
            where=options.where,
            order_by=list(options.order_by),
            limit=per_page,
            offset=(page - 1) * per_page,
        )
        rows, total = await asyncio.gather(
            self.find(page_options),
            self.count(FindOptions(where=options.where)),
        )
        return PaginatedResult(
            data=rows.data,
            count=total,
            page=page,
            per_page=per_page,
            total_pages=math.ceil(total / per_page),
        )

    # --- Mutations ---

    async def create(self, data: Mapping[str, Any], options: CreateOptions | None = None) -> MutationResult[T]:
        return cast(MutationResult[T], await self.provider.create(self.table, self._normalize(data), options))

    async def create_many(
        self, items: Iterable[Mapping[str, Any]], options: CreateOptions | None = None
    ) -> MutationResult[list[T]]:
        """
        One create() per item, awaited in order. Not a bulk insert; use raw()
        when a single statement is needed.
        """
        created: list[T] = []
        for item in items:
            result = await self.create(item, options)
            created.append(result.data)
        return MutationResult(data=created, affected=len(created))

    async def update(
        self, id: Identifier, data: Mapping[str, Any], options: UpdateOptions | None = None
    ) -> MutationResult[T | None]:
        """Update one row by id. data is None (affected=0) when no row has that id."""
        result = await self.update_many({"id": id}, data, options)
        return MutationResult(data=result.data[0] if result.data else None, affected=result.affected)

    async def update_many(
        self, where: WhereInput, data: Mapping[str, Any], options: UpdateOptions | None = None
    ) -> MutationResult[list[T]]:
        return cast(
            MutationResult[list[T]],
            await self.provider.update(
                self.table,
                self._stamp(self._normalize(data)),
                UpdateOptions(where=where, returning=options.returning if options else None),
            ),
        )

    async def delete(self, id: Identifier, soft: bool | None = None) -> MutationResult[T | None]:
        result = await self.delete_many({"id": id}, soft=soft)
        return MutationResult(data=result.data[0] if result.data else None, affected=result.affected)

    async def delete_many(self, where: WhereInput, soft: bool | None = None) -> MutationResult[list[T]]:
        soft = self.soft_delete if soft is None else soft
        if soft and not self.soft_delete:
            raise QueryValidationError(f"{self.table} rows cannot be soft-deleted")
        return cast(
            MutationResult[list[T]],
            await self.provider.delete(self.table, DeleteOptions(where=where, soft=soft)),
        )

    async def restore(self, id: Identifier) -> MutationResult[T | None]:
        """Clear deleted_at on a soft-deleted row."""
        if not self.soft_delete:
            raise QueryValidationError(f"{self.table} rows are not soft-deletable")
        return await self.update(id, {"deleted_at": None})

    # --- Helpers ---

    def _active(self, options: FindOptions | None) -> FindOptions:
        options = options or FindOptions()
        if not self.soft_delete:
            return options
        return options.with_where(ACTIVE)

    def _normalize(self, data: Mapping[str, Any]) -> dict[str, Any]:
        row = dict(data)
        for column in self.lowercase_fields:
            if isinstance(row.get(column), str):
                row[column] = row[column].strip().lower()
        return row

    def _stamp(self, data: Mapping[str, Any]) -> dict[str, Any]:
        row = dict(data)
        if self.timestamps:
            row["updated_at"] = utc_now_iso()
        return row
