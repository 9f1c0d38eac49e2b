"""
cadet_portal/services/permission_oracle.py
Permission Oracle: answers "does this principal hold capability X"

Every mutating entry point of the task engine calls this module before it
touches the store. Roles are never compared anywhere else.

Resolution order for a capability:
1. super_admin holds every capability
2. cadet accounts hold no admin capability
3. a direct, active grant in user_permissions
4. an active role in user_roles whose role_permissions contain it
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from cadet_portal.errors import ForbiddenError
from cadet_portal.orm.cadet import ScoreCategory
from cadet_portal.orm.user import (
    UserRole, AdminPermission, AdminRole, RolePermission, UserPermission, UserRoleAssignment
)

logger = logging.getLogger(__name__)


class Capability:
    """Capability names known to the engine"""
    MANAGE_TASKS = "manage_tasks"
    MANAGE_SCORES = "manage_scores"
    MANAGE_SCORES_STUDY = "manage_scores_study"
    MANAGE_SCORES_DISCIPLINE = "manage_scores_discipline"
    MANAGE_SCORES_EVENTS = "manage_scores_events"
    AWARD_ACHIEVEMENTS = "award_achievements"


# Any one of these lets a principal move points in the category
CATEGORY_SCORE_CAPABILITIES: Dict[ScoreCategory, List[str]] = {
    ScoreCategory.STUDY: [Capability.MANAGE_SCORES_STUDY, Capability.MANAGE_SCORES],
    ScoreCategory.DISCIPLINE: [Capability.MANAGE_SCORES_DISCIPLINE, Capability.MANAGE_SCORES],
    ScoreCategory.EVENTS: [Capability.MANAGE_SCORES_EVENTS, Capability.MANAGE_SCORES],
}


@dataclass(frozen=True)
class Principal:
    """The authenticated caller."""
    user_id: int
    role: UserRole
    cadet_id: Optional[int] = None

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.super_admin


class PermissionOracle:
    """
    Capability lookups against the permission tables.

    One instance per request; answers are memoized for its lifetime so a
    handler that checks the same capability twice costs one query.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self._answers: Dict[tuple, bool] = {}

    async def has_capability(self, principal: Principal, capability: str) -> bool:
        if principal.is_super_admin:
            return True
        if principal.role == UserRole.cadet:
            return False

        key = (principal.user_id, capability)
        if key not in self._answers:
            self._answers[key] = (
                await self._has_direct_grant(principal.user_id, capability)
                or await self._has_role_grant(principal.user_id, capability)
            )
        return self._answers[key]

    async def has_any(self, principal: Principal, capabilities: Iterable[str]) -> bool:
        for capability in capabilities:
            if await self.has_capability(principal, capability):
                return True
        return False

    async def require(self, principal: Principal, capabilities: Union[str, List[str]]) -> None:
        """Raise ForbiddenError unless the principal holds one of the capabilities."""
        wanted = [capabilities] if isinstance(capabilities, str) else list(capabilities)
        if await self.has_any(principal, wanted):
            return

        logger.warning(
            f"[PERMISSION DENIED] user={principal.user_id} role={principal.role.value} "
            f"required one of {wanted}"
        )
        raise ForbiddenError(
            "You do not have permission to perform this action",
            details={"required": wanted}
        )

    async def require_score_category(self, principal: Principal, category: ScoreCategory) -> None:
        await self.require(principal, CATEGORY_SCORE_CAPABILITIES[category])

    async def require_cadet_access(self, principal: Principal, cadet_id: int) -> None:
        """Cadets act on their own behalf; task managers may act for any cadet."""
        if principal.cadet_id is not None and principal.cadet_id == cadet_id:
            return
        if await self.has_capability(principal, Capability.MANAGE_TASKS):
            return

        logger.warning(
            f"[PERMISSION DENIED] user={principal.user_id} attempted to act for cadet {cadet_id}"
        )
        raise ForbiddenError(
            "You can only act on your own tasks",
            details={"cadet_id": cadet_id}
        )

    async def _has_direct_grant(self, user_id: int, capability: str) -> bool:
        result = await self.db.execute(
            select(UserPermission.id)
            .join(AdminPermission, AdminPermission.id == UserPermission.permission_id)
            .where(
                and_(
                    UserPermission.user_id == user_id,
                    UserPermission.is_active == True,
                    AdminPermission.name == capability
                )
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def _has_role_grant(self, user_id: int, capability: str) -> bool:
        result = await self.db.execute(
            select(UserRoleAssignment.id)
            .join(AdminRole, AdminRole.id == UserRoleAssignment.role_id)
            .join(RolePermission, RolePermission.role_id == AdminRole.id)
            .join(AdminPermission, AdminPermission.id == RolePermission.permission_id)
            .where(
                and_(
                    UserRoleAssignment.user_id == user_id,
                    UserRoleAssignment.is_active == True,
                    AdminPermission.name == capability
                )
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None
