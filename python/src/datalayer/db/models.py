"""
Entity & Query Model

Shared vocabulary for providers and repositories: entity shapes, the
declarative query description (filters, ordering, pagination) and the
result envelopes every provider returns.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, Literal, TypedDict, TypeVar, Union

from ..errors import QueryValidationError

Identifier = str
Row = dict[str, Any]

T = TypeVar("T")

SortDirection = Literal["asc", "desc"]
ChangeType = Literal["INSERT", "UPDATE", "DELETE"]
EventFilter = Literal["INSERT", "UPDATE", "DELETE", "*"]

CHANGE_TYPES: tuple[str, ...] = ("INSERT", "UPDATE", "DELETE")


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


class BaseEntity(TypedDict):
    id: Identifier
    created_at: str
    updated_at: str


class SoftDeletableEntity(BaseEntity):
    deleted_at: str | None


class User(SoftDeletableEntity, total=False):
    email: str
    name: str | None
    avatar_url: str | None
    role: str
    status: str
    last_seen_at: str | None


class Organization(SoftDeletableEntity, total=False):
    name: str
    slug: str
    domain: str | None
    logo_url: str | None
    settings: dict[str, Any]
    created_by: Identifier | None


class Membership(TypedDict, total=False):
    id: Identifier
    organization_id: Identifier
    user_id: Identifier
    role: str
    joined_at: str
    accepted_at: str | None


class MemberWithUser(TypedDict, total=False):
    membership_id: Identifier
    user_id: Identifier
    role: str
    joined_at: str
    email: str
    name: str | None
    avatar_url: str | None


class OrganizationStats(TypedDict):
    members_count: int
    projects_count: int
    items_count: int
    storage_used: int
    current_period_usage: int


def utc_now_iso() -> str:
    """Current time as an ISO-8601 UTC string, the format the backend stores."""
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Where filters
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Eq:
    """field = value"""

    value: Any


@dataclass(frozen=True)
class In:
    """field IN (values)"""

    values: tuple[Any, ...]

    def __init__(self, values: Iterable[Any]) -> None:
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class IsNull:
    """field IS NULL"""


FieldFilter = Union[Eq, In, IsNull]
WhereInput = Mapping[str, Any]
Where = dict[str, FieldFilter]


def to_filter(value: Any) -> FieldFilter:
    """
    Normalize a plain filter value:
    None -> IsNull, list/tuple/set -> In, anything else -> Eq.
    Values that are already filters pass through unchanged.
    """
    if isinstance(value, (Eq, In, IsNull)):
        return value
    if value is None:
        return IsNull()
    if isinstance(value, (list, tuple, set, frozenset)):
        return In(value)
    return Eq(value)


def normalize_where(where: WhereInput | None) -> Where:
    """Normalize a where mapping, preserving key order."""
    if not where:
        return {}
    return {field_name: to_filter(value) for field_name, value in where.items()}


def merge_where(where: WhereInput | None, extra: WhereInput) -> Where:
    """Return where with extra's entries added (extra wins on conflicts)."""
    merged = normalize_where(where)
    merged.update(normalize_where(extra))
    return merged


def require_where(where: WhereInput | None, operation: str) -> Where:
    """Reject missing/empty filters so a mutation can never hit the whole table."""
    normalized = normalize_where(where)
    if not normalized:
        raise QueryValidationError(
            f"{operation} requires a non-empty 'where' filter; refusing to touch every row"
        )
    return normalized


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderBy:
    field: str
    direction: SortDirection = "asc"

    @property
    def descending(self) -> bool:
        return self.direction == "desc"


@dataclass
class FindOptions:
    select: list[str] | None = None
    where: WhereInput | None = None
    order_by: list[OrderBy] = field(default_factory=list)
    limit: int | None = None
    offset: int | None = None

    def with_where(self, extra: WhereInput) -> FindOptions:
        """Copy of these options with extra filters merged in."""
        return FindOptions(
            select=self.select,
            where=merge_where(self.where, extra),
            order_by=list(self.order_by),
            limit=self.limit,
            offset=self.offset,
        )


@dataclass
class CreateOptions:
    returning: list[str] | None = None


@dataclass
class UpdateOptions:
    where: WhereInput | None = None
    returning: list[str] | None = None


@dataclass
class DeleteOptions:
    where: WhereInput | None = None
    soft: bool = True
    returning: list[str] | None = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class QueryResult(Generic[T]):
    data: list[T] = field(default_factory=list)
    count: int | None = None


@dataclass
class SingleResult(Generic[T]):
    data: T | None = None


@dataclass
class MutationResult(Generic[T]):
    data: T
    affected: int = 0


@dataclass
class PaginatedResult(QueryResult[T]):
    page: int = 1
    per_page: int = 0
    total_pages: int = 0


# ---------------------------------------------------------------------------
# Realtime
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChangeEvent:
    type: ChangeType
    table: str
    record: Row | None
    old_record: Row | None
    timestamp: str


ChangeCallback = Callable[[ChangeEvent], Union[None, Awaitable[None]]]


@dataclass(eq=False)
class Subscription:
    """
    Handle for one realtime channel. Owned by the caller that subscribed;
    the provider releases any still-open subscription on disconnect.
    """

    id: str
    table: str
    _release: Callable[[Subscription], Awaitable[None]] = field(repr=False)

    async def unsubscribe(self) -> None:
        await self._release(self)
