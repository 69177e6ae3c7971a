"""
Organization and membership repositories.

Joined and aggregated queries go through provider.raw() as parameterized
SQL (%(name)s placeholders); everything else uses the generic repository.
"""

from __future__ import annotations

from typing import Any

from ..config.logfire_config import get_logger
from ..db.models import (
    FindOptions,
    Identifier,
    MemberWithUser,
    Membership,
    MutationResult,
    Organization,
    OrganizationStats,
    SingleResult,
    utc_now_iso,
)
from ..db.protocol import DataProvider
from ..errors import QueryValidationError
from .base import BaseRepository

logger = get_logger(__name__)

ROLES = ("owner", "admin", "member")

STORAGE_METRIC = "storage_bytes"

_MEMBERS_SQL = """
SELECT m.id AS membership_id,
       m.user_id,
       m.role,
       m.joined_at,
       u.email,
       u.name,
       u.avatar_url
FROM memberships m
JOIN users u ON u.id = m.user_id
WHERE m.organization_id = %(organization_id)s
  AND m.accepted_at IS NOT NULL
  AND u.deleted_at IS NULL
  {role_clause}
ORDER BY CASE m.role WHEN 'owner' THEN 0 WHEN 'admin' THEN 1 ELSE 2 END,
         m.joined_at ASC
"""

_STATS_SQL = """
SELECT
  (SELECT count(*) FROM memberships
    WHERE organization_id = %(organization_id)s AND accepted_at IS NOT NULL) AS members_count,
  (SELECT count(*) FROM projects
    WHERE organization_id = %(organization_id)s AND deleted_at IS NULL) AS projects_count,
  (SELECT count(*) FROM items
    WHERE organization_id = %(organization_id)s) AS items_count,
  (SELECT coalesce(sum(usage_value), 0) FROM usage_tracking
    WHERE organization_id = %(organization_id)s AND metric_name = %(storage_metric)s
      AND period_start <= now() AND period_end > now()) AS storage_used,
  (SELECT coalesce(sum(usage_value), 0) FROM usage_tracking
    WHERE organization_id = %(organization_id)s
      AND period_start <= now() AND period_end > now()) AS current_period_usage
"""


def _check_role(role: str) -> None:
    if role not in ROLES:
        raise QueryValidationError(f"role must be one of {ROLES}, got {role!r}")


class MembershipRepository(BaseRepository[Membership]):
    """Organization memberships. Rows are hard-deleted and carry no updated_at."""

    table = "memberships"
    soft_delete = False
    timestamps = False

    async def find_membership(self, organization_id: Identifier, user_id: Identifier) -> SingleResult[Membership]:
        return await self.find_one(
            FindOptions(where={"organization_id": organization_id, "user_id": user_id})
        )

    async def add_member(
        self,
        organization_id: Identifier,
        user_id: Identifier,
        role: str = "member",
        *,
        accepted: bool = True,
    ) -> MutationResult[Membership]:
        _check_role(role)
        now = utc_now_iso()
        return await self.create(
            {
                "organization_id": organization_id,
                "user_id": user_id,
                "role": role,
                "joined_at": now,
                "accepted_at": now if accepted else None,
            }
        )

    async def update_role(
        self, organization_id: Identifier, user_id: Identifier, role: str
    ) -> MutationResult[Membership | None]:
        _check_role(role)
        result = await self.update_many(
            {"organization_id": organization_id, "user_id": user_id}, {"role": role}
        )
        return MutationResult(data=result.data[0] if result.data else None, affected=result.affected)

    async def remove_member(self, organization_id: Identifier, user_id: Identifier) -> int:
        result = await self.delete_many({"organization_id": organization_id, "user_id": user_id})
        return result.affected


class OrganizationRepository(BaseRepository[Organization]):
    table = "organizations"
    lowercase_fields = ("domain",)

    def __init__(self, provider: DataProvider, memberships: MembershipRepository | None = None) -> None:
        super().__init__(provider)
        self.memberships = memberships or MembershipRepository(provider)

    async def find_by_slug(self, slug: str) -> SingleResult[Organization]:
        """Active organization with this slug."""
        return await self.find_one(FindOptions(where={"slug": slug, "deleted_at": None}))

    async def is_slug_available(self, slug: str, exclude_id: Identifier | None = None) -> bool:
        return await self._is_available("slug", slug, exclude_id)

    async def is_domain_available(self, domain: str, exclude_id: Identifier | None = None) -> bool:
        return await self._is_available("domain", domain.strip().lower(), exclude_id)

    async def _is_available(self, column: str, value: Any, exclude_id: Identifier | None) -> bool:
        # Soft-deleted rows still hold their unique values, so they are not excluded
        result = await self.find(FindOptions(select=["id"], where={column: value}))
        if exclude_id:
            return all(row.get("id") == exclude_id for row in result.data)
        return not result.data

    async def get_members_with_role(
        self, organization_id: Identifier, role: str | None = None
    ) -> list[MemberWithUser]:
        """
        Accepted members joined with their user rows, owners first, then
        admins, then members; ties ordered by join time.
        """
        params: dict[str, Any] = {"organization_id": organization_id}
        role_clause = ""
        if role is not None:
            _check_role(role)
            role_clause = "AND m.role = %(role)s"
            params["role"] = role
        result = await self.provider.raw(_MEMBERS_SQL.format(role_clause=role_clause), params)
        return [MemberWithUser(**row) for row in result.data]  # type: ignore[typeddict-item]

    async def get_member_role(self, organization_id: Identifier, user_id: Identifier) -> str | None:
        membership = await self.memberships.find_membership(organization_id, user_id)
        if membership.data is None or membership.data.get("accepted_at") is None:
            return None
        return membership.data.get("role")

    async def get_stats(self, organization_id: Identifier) -> OrganizationStats:
        """Member, project and item counts plus storage and usage for the current period, in one round trip."""
        result = await self.provider.raw(
            _STATS_SQL, {"organization_id": organization_id, "storage_metric": STORAGE_METRIC}
        )
        row = result.data[0] if result.data else {}
        return OrganizationStats(
            members_count=int(row.get("members_count") or 0),
            projects_count=int(row.get("projects_count") or 0),
            items_count=int(row.get("items_count") or 0),
            storage_used=int(row.get("storage_used") or 0),
            current_period_usage=int(row.get("current_period_usage") or 0),
        )

    async def create_with_owner(
        self, data: dict[str, Any], owner_id: Identifier
    ) -> MutationResult[Organization]:
        """
        Create an organization and its owner membership.

        NOT atomic: these are two independent writes, awaited in order. If the
        membership write fails, the new organization row is hard-deleted and
        the membership error is re-raised. Slug availability must be checked
        by the caller beforehand (is_slug_available).
        """
        org = await self.create({**data, "created_by": data.get("created_by", owner_id)})
        org_id = org.data["id"]
        try:
            await self.memberships.add_member(org_id, owner_id, "owner")
        except Exception:
            logger.warning("Owner membership for organization %s failed; removing organization", org_id)
            try:
                await self.delete(org_id, soft=False)
            except Exception:
                logger.exception("Compensating delete of organization %s failed", org_id)
            raise
        return org
