from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_
from typing import List, Optional, Sequence, Tuple
from datetime import datetime
import logging

from coopfund.core.exceptions import ConflictError, ForbiddenError, ValidationError
from coopfund.modules.loans import repository
from coopfund.modules.loans.calculator import LoanPolicy, format_money
from coopfund.modules.loans.models import Loan, LoanGuarantor, LoanStatus, GuarantorStatus
from coopfund.modules.loans.state import require_status
from coopfund.modules.members.models import Member
from coopfund.modules.members.services import MembershipService
from coopfund.modules.notifications.models import NotificationType
from coopfund.modules.notifications.services import NotificationService

logger = logging.getLogger(__name__)


class GuarantorService:
    """
    Per-guarantor approve/reject tracking.

    The guarantor set is fixed when the loan is requested. Reaching the
    loan type's guarantor quorum surfaces the loan to approvers; it never
    changes the loan's status by itself.
    """

    @staticmethod
    async def resolve_guarantors(
        db: AsyncSession,
        cooperative_id: int,
        borrower: Member,
        guarantor_ids: Optional[Sequence[int]],
        policy: LoanPolicy
    ) -> List[Member]:
        """Validate the member-supplied guarantor list for a new request"""
        ids = list(guarantor_ids or [])
        if len(ids) != len(set(ids)):
            raise ValidationError("Each guarantor can only be listed once")
        if borrower.id in ids:
            raise ValidationError("You cannot guarantee your own loan")

        members = await MembershipService.get_active_members(db, cooperative_id, ids)
        found = {m.id for m in members}
        missing = [i for i in ids if i not in found]
        if missing:
            raise ValidationError(
                "Guarantors must be active members of this cooperative",
                details={"invalid_guarantor_ids": missing}
            )

        required = policy.required_guarantors
        if len(members) < required:
            raise ValidationError(
                f"This loan type requires at least {required} guarantor(s)",
                details={"required": required, "provided": len(members)}
            )
        return members

    @staticmethod
    def stage_guarantors(db: AsyncSession, loan: Loan, guarantors: Sequence[Member]) -> List[LoanGuarantor]:
        rows = [
            LoanGuarantor(
                loan_id=loan.id,
                guarantor_member_id=member.id,
                status=GuarantorStatus.PENDING,
                created_at=datetime.utcnow()
            )
            for member in guarantors
        ]
        db.add_all(rows)
        return rows

    @staticmethod
    async def approved_count(db: AsyncSession, loan_id: int) -> int:
        query = select(func.count(LoanGuarantor.id)).where(
            and_(LoanGuarantor.loan_id == loan_id, LoanGuarantor.status == GuarantorStatus.APPROVED)
        )
        return await db.scalar(query) or 0

    @staticmethod
    async def quorum_met(db: AsyncSession, loan: Loan, policy: LoanPolicy) -> bool:
        """
        Loans requested without guarantors are never gated, even if their
        loan type has since started requiring them.
        """
        required = policy.required_guarantors
        if required == 0:
            return True
        rows = await db.scalar(select(func.count(LoanGuarantor.id)).where(LoanGuarantor.loan_id == loan.id))
        if not rows:
            return True
        return await GuarantorService.approved_count(db, loan.id) >= required

    @staticmethod
    async def respond(
        db: AsyncSession,
        loan_id: int,
        requesting_user_id: int,
        approve: bool,
        reason: Optional[str] = None
    ) -> Tuple[LoanGuarantor, bool]:
        """
        Record a guarantor's single, final response.
        Returns the updated row and whether this response completed the
        guarantor quorum.
        """
        loan = await repository.get_loan(db, loan_id, for_update=True)
        member = await MembershipService.validate_membership(db, loan.cooperative_id, requesting_user_id)

        guarantor = await repository.get_guarantor(db, loan.id, member.id)
        if not guarantor:
            raise ForbiddenError("You are not a guarantor on this loan")
        if guarantor.status != GuarantorStatus.PENDING:
            raise ConflictError(
                f"You have already {GuarantorStatus(guarantor.status).value} this loan",
                kind="AlreadyResponded"
            )
        require_status(loan, "respond to guarantee for", LoanStatus.PENDING)
        if not approve and not (reason and reason.strip()):
            raise ValidationError("A reason is required when declining to guarantee a loan")

        guarantor.status = GuarantorStatus.APPROVED if approve else GuarantorStatus.REJECTED
        guarantor.responded_at = datetime.utcnow()
        guarantor.rejection_reason = None if approve else reason.strip()
        await db.flush()

        policy = await repository.get_policy(db, loan)
        ready = False
        approved = 0
        if approve and policy.requires_guarantor:
            approved = await GuarantorService.approved_count(db, loan.id)
            ready = approved == policy.required_guarantors

        await db.commit()
        logger.info(
            f"Guarantor member {member.id} {guarantor.status.value} loan {loan.id}"
            f" ({approved} approved, quorum reached: {ready})"
        )

        borrower = await MembershipService.get_member(db, loan.cooperative_id, loan.member_id)
        verb = "approved" if approve else "declined"
        body = f"{member.full_name} has {verb} to guarantee your loan of {format_money(loan.amount)}."
        if not approve:
            body += f" Reason: {guarantor.rejection_reason}"
        await NotificationService.notify(
            db, borrower.user_id, NotificationType.GUARANTOR_RESPONDED,
            "Guarantor Response", body,
            {"loan_id": loan.id, "guarantor_member_id": member.id, "status": guarantor.status.value},
            loan.cooperative_id
        )

        if ready:
            await NotificationService.notify_admins(
                db, loan.cooperative_id, NotificationType.LOAN_READY_FOR_REVIEW,
                "Loan Ready for Review",
                f"{borrower.full_name}'s loan of {format_money(loan.amount)} has the required guarantors "
                f"and is ready for review.",
                {"loan_id": loan.id},
                exclude_user_ids=[borrower.user_id] if borrower.user_id else []
            )

        return guarantor, ready

    @staticmethod
    async def pending_requests(db: AsyncSession, cooperative_id: int, requesting_user_id: int) -> List[Loan]:
        """Pending loans still waiting on the caller's guarantee"""
        member = await MembershipService.validate_membership(db, cooperative_id, requesting_user_id)
        query = (
            select(Loan)
            .join(LoanGuarantor, LoanGuarantor.loan_id == Loan.id)
            .where(
                and_(
                    LoanGuarantor.guarantor_member_id == member.id,
                    LoanGuarantor.status == GuarantorStatus.PENDING,
                    Loan.status == LoanStatus.PENDING
                )
            )
            .order_by(Loan.requested_at)
        )
        result = await db.execute(query)
        return list(result.scalars().all())
