"""
Query descriptor

FindOptions are turned into a QueryDescriptor once, and a single translation
function maps the descriptor onto a postgrest-style builder. Both providers
consume the same descriptor so the filter, ordering and pagination rules live
in one place.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..errors import QueryValidationError
from .models import Eq, FieldFilter, FindOptions, In, IsNull, OrderBy, WhereInput, normalize_where


@dataclass(frozen=True)
class QueryDescriptor:
    columns: tuple[str, ...] = ()
    filters: tuple[tuple[str, FieldFilter], ...] = ()
    orders: tuple[OrderBy, ...] = ()
    limit: int | None = None
    # Inclusive [start, end] row range, set whenever an offset is given
    range: tuple[int, int] | None = None

    @property
    def select_clause(self) -> str:
        return ",".join(self.columns) if self.columns else "*"


def build_descriptor(options: FindOptions | None, default_page_size: int) -> QueryDescriptor:
    """Validate FindOptions and compute the descriptor."""
    options = options or FindOptions()

    if options.limit is not None and options.limit < 0:
        raise QueryValidationError(f"limit must be >= 0, got {options.limit}")
    if options.offset is not None and options.offset < 0:
        raise QueryValidationError(f"offset must be >= 0, got {options.offset}")

    limit: int | None = None
    row_range: tuple[int, int] | None = None
    if options.offset is not None:
        size = options.limit if options.limit is not None else default_page_size
        if size == 0:
            limit = 0
        else:
            row_range = (options.offset, options.offset + size - 1)
    elif options.limit is not None:
        limit = options.limit

    for order in options.order_by:
        if order.direction not in ("asc", "desc"):
            raise QueryValidationError(
                f"order direction for '{order.field}' must be 'asc' or 'desc', got {order.direction!r}"
            )

    return QueryDescriptor(
        columns=tuple(options.select or ()),
        filters=filters_from(options.where),
        orders=tuple(options.order_by),
        limit=limit,
        range=row_range,
    )


def filters_from(where: WhereInput | None) -> tuple[tuple[str, FieldFilter], ...]:
    return tuple(normalize_where(where).items())


def apply_filters(builder: Any, filters: tuple[tuple[str, FieldFilter], ...]) -> Any:
    """AND each filter onto the builder in order."""
    for column, condition in filters:
        if isinstance(condition, IsNull):
            builder = builder.is_(column, "null")
        elif isinstance(condition, In):
            builder = builder.in_(column, list(condition.values))
        elif isinstance(condition, Eq):
            builder = builder.eq(column, condition.value)
        else:
            raise QueryValidationError(f"Unsupported filter for '{column}': {condition!r}")
    return builder


def apply_descriptor(builder: Any, descriptor: QueryDescriptor) -> Any:
    """Apply filters, ordering and pagination of a descriptor to a select builder."""
    builder = apply_filters(builder, descriptor.filters)
    for order in descriptor.orders:
        builder = builder.order(order.field, desc=order.descending)
    if descriptor.range is not None:
        start, end = descriptor.range
        builder = builder.range(start, end)
    elif descriptor.limit is not None:
        builder = builder.limit(descriptor.limit)
    return builder


def project(rows: list[dict[str, Any]], returning: list[str] | None) -> list[dict[str, Any]]:
    """Keep only the requested columns of each row (all of them when returning is empty)."""
    if not returning:
        return rows
    return [{key: row.get(key) for key in returning} for row in rows]
