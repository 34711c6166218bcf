from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from typing import List, Optional
import logging

from coopfund.core.exceptions import ForbiddenError, NotFoundError
from coopfund.core.permissions import Capability, has_permission
from coopfund.modules.members.models import Member, MemberStatus

logger = logging.getLogger(__name__)


class MembershipService:
    """
    Permission oracle backed by the member table.
    Member CRUD lives outside this service; it only answers membership and
    capability questions for the loan engine.
    """

    @staticmethod
    async def is_active_member(db: AsyncSession, cooperative_id: int, user_id: int) -> Optional[Member]:
        """Return the active membership of a user, or None"""
        query = select(Member).where(
            and_(
                Member.cooperative_id == cooperative_id,
                Member.user_id == user_id,
                Member.status == MemberStatus.ACTIVE
            )
        )
        result = await db.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    def member_has(member: Member, capability: Capability) -> bool:
        return has_permission(member.role, member.permission_list, capability)

    @staticmethod
    async def validate_membership(db: AsyncSession, cooperative_id: int, user_id: int) -> Member:
        member = await MembershipService.is_active_member(db, cooperative_id, user_id)
        if not member:
            logger.warning(f"User {user_id} is not an active member of cooperative {cooperative_id}")
            raise ForbiddenError("You are not a member of this cooperative")
        return member

    @staticmethod
    async def validate_permission(
        db: AsyncSession,
        cooperative_id: int,
        user_id: int,
        capability: Capability
    ) -> Member:
        member = await MembershipService.validate_membership(db, cooperative_id, user_id)
        if not MembershipService.member_has(member, capability):
            logger.warning(f"User {user_id} lacks {capability.value} in cooperative {cooperative_id}")
            raise ForbiddenError(
                "You do not have permission to perform this action",
                details={"required": capability.value}
            )
        return member

    @staticmethod
    async def get_member(db: AsyncSession, cooperative_id: int, member_id: int) -> Member:
        query = select(Member).where(
            and_(Member.id == member_id, Member.cooperative_id == cooperative_id)
        )
        result = await db.execute(query)
        member = result.scalar_one_or_none()
        if not member:
            raise NotFoundError("Member", member_id)
        return member

    @staticmethod
    async def get_active_members(db: AsyncSession, cooperative_id: int, member_ids: List[int]) -> List[Member]:
        if not member_ids:
            return []
        query = select(Member).where(
            and_(
                Member.cooperative_id == cooperative_id,
                Member.id.in_(member_ids),
                Member.status == MemberStatus.ACTIVE
            )
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def get_members_with(db: AsyncSession, cooperative_id: int, capability: Capability) -> List[Member]:
        """Active members with an app account holding a capability"""
        query = select(Member).where(
            and_(
                Member.cooperative_id == cooperative_id,
                Member.status == MemberStatus.ACTIVE,
                Member.user_id.is_not(None)
            )
        )
        result = await db.execute(query)
        return [m for m in result.scalars().all() if MembershipService.member_has(m, capability)]

    @staticmethod
    async def get_approvers(db: AsyncSession, cooperative_id: int) -> List[Member]:
        return await MembershipService.get_members_with(db, cooperative_id, Capability.LOANS_APPROVE)
