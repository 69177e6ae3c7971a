"""User (account) repository."""

from __future__ import annotations

import asyncio
import math
from typing import Any

from ..db.models import (
    FindOptions,
    Identifier,
    MutationResult,
    Organization,
    PaginatedResult,
    SingleResult,
    User,
    utc_now_iso,
)
from .base import BaseRepository, check_page

_SEARCH_WHERE = """
FROM users
WHERE deleted_at IS NULL
  AND (name ILIKE %(pattern)s OR email ILIKE %(pattern)s)
"""

_USER_ORGANIZATIONS_SQL = """
SELECT o.*, m.role AS member_role
FROM memberships m
JOIN organizations o ON o.id = m.organization_id
WHERE m.user_id = %(user_id)s
  AND m.accepted_at IS NOT NULL
  AND o.deleted_at IS NULL
ORDER BY o.name ASC
"""


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class UserRepository(BaseRepository[User]):
    table = "users"
    lowercase_fields = ("email",)

    async def find_by_email(self, email: str) -> SingleResult[User]:
        return await self.find_one(
            FindOptions(where={"email": email.strip().lower(), "deleted_at": None})
        )

    async def is_email_available(self, email: str, exclude_id: Identifier | None = None) -> bool:
        result = await self.find(FindOptions(select=["id"], where={"email": email.strip().lower()}))
        if exclude_id:
            return all(row.get("id") == exclude_id for row in result.data)
        return not result.data

    async def search(self, term: str, page: int = 1, per_page: int = 20) -> PaginatedResult[User]:
        """Active users whose name or email contains term (case-insensitive)."""
        check_page(page, per_page)
        params: dict[str, Any] = {
            "pattern": _like_pattern(term.strip()),
            "limit": per_page,
            "offset": (page - 1) * per_page,
        }
        rows, total = await asyncio.gather(
            self.provider.raw(
                "SELECT *" + _SEARCH_WHERE + "ORDER BY created_at DESC LIMIT %(limit)s OFFSET %(offset)s",
                params,
            ),
            self.provider.raw("SELECT count(*) AS total" + _SEARCH_WHERE, params),
        )
        count = int(total.data[0]["total"]) if total.data else 0
        return PaginatedResult(
            data=rows.data,  # type: ignore[arg-type]
            count=count,
            page=page,
            per_page=per_page,
            total_pages=math.ceil(count / per_page),
        )

    async def get_organizations(self, user_id: Identifier) -> list[Organization]:
        """Active organizations the user is an accepted member of, with member_role."""
        result = await self.provider.raw(_USER_ORGANIZATIONS_SQL, {"user_id": user_id})
        return result.data  # type: ignore[return-value]

    async def touch_last_seen(self, user_id: Identifier) -> MutationResult[User | None]:
        return await self.update(user_id, {"last_seen_at": utc_now_iso()})

    async def suspend(self, user_id: Identifier) -> MutationResult[User | None]:
        return await self.update(user_id, {"status": "suspended"})

    async def activate(self, user_id: Identifier) -> MutationResult[User | None]:
        return await self.update(user_id, {"status": "active"})
