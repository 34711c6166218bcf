from sqlalchemy.ext.asyncio import AsyncSession
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional, Tuple
import logging

from coopfund.core.exceptions import ConflictError, ValidationError
from coopfund.core.permissions import Capability
from coopfund.modules.loans import repository
from coopfund.modules.loans.calculator import LoanPolicy, format_money
from coopfund.modules.loans.guarantors import GuarantorService
from coopfund.modules.loans.models import Loan, LoanApproval, LoanStatus, ApprovalDecision
from coopfund.modules.loans.state import require_status, transition
from coopfund.modules.members.services import MembershipService
from coopfund.modules.notifications.models import NotificationType
from coopfund.modules.notifications.services import NotificationService, Mailer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApprovalOutcome:
    approvals_recorded: int
    approvals_required: int

    @property
    def quorum_reached(self) -> bool:
        return self.approvals_recorded >= self.approvals_required


def evaluate_approval(policy: LoanPolicy, prior_approver_ids: Iterable[int], approver_id: int) -> ApprovalOutcome:
    """
    Decide what one more approval does to a pending loan.
    Single-approver policy flips on the first approval; multi-approver
    policy waits for min_approvers distinct approvers.
    """
    prior = set(prior_approver_ids)
    if approver_id in prior:
        raise ConflictError("You have already approved this loan", kind="AlreadyApproved")
    return ApprovalOutcome(
        approvals_recorded=len(prior) + 1,
        approvals_required=policy.required_approvals,
    )


class ApprovalService:
    """Approver sign-off on pending loans"""

    @staticmethod
    async def approve(
        db: AsyncSession,
        loan_id: int,
        requesting_user_id: int,
        deduction_start_date: Optional[date] = None,
        notes: Optional[str] = None
    ) -> Tuple[Loan, ApprovalOutcome]:
        loan = await repository.get_loan(db, loan_id, for_update=True)
        await MembershipService.validate_permission(
            db, loan.cooperative_id, requesting_user_id, Capability.LOANS_APPROVE
        )
        require_status(loan, "approve", LoanStatus.PENDING)

        decisions = await repository.get_approvals(db, loan.id)
        if any(d.approver_id == requesting_user_id and d.decision == ApprovalDecision.REJECTED for d in decisions):
            raise ConflictError("You have already recorded a decision on this loan", kind="AlreadyDecided")

        policy = await repository.get_policy(db, loan)
        if not await GuarantorService.quorum_met(db, loan, policy):
            raise ValidationError(
                f"This loan needs {policy.required_guarantors} approved guarantor(s) before it can be approved",
                details={"required_guarantors": policy.required_guarantors}
            )

        outcome = evaluate_approval(
            policy,
            [d.approver_id for d in decisions if d.decision == ApprovalDecision.APPROVED],
            requesting_user_id
        )

        db.add(LoanApproval(
            loan_id=loan.id,
            approver_id=requesting_user_id,
            decision=ApprovalDecision.APPROVED,
            notes=notes,
            created_at=datetime.utcnow()
        ))
        if outcome.quorum_reached:
            transition(loan, LoanStatus.APPROVED, "approve")
            loan.reviewed_by = requesting_user_id
            loan.reviewed_at = datetime.utcnow()
            if deduction_start_date:
                loan.deduction_start_date = deduction_start_date
        await db.commit()
        logger.info(
            f"Loan {loan.id} approval by user {requesting_user_id}: "
            f"{outcome.approvals_recorded}/{outcome.approvals_required}"
        )

        borrower = await MembershipService.get_member(db, loan.cooperative_id, loan.member_id)
        if outcome.quorum_reached:
            body = f"Your loan request of {format_money(loan.amount)} has been approved."
            await NotificationService.notify(
                db, borrower.user_id, NotificationType.LOAN_APPROVED, "Loan Approved!", body,
                {"loan_id": loan.id}, loan.cooperative_id
            )
            await Mailer.send_email(borrower.email, "Loan Approved", body)
        else:
            await NotificationService.notify(
                db, borrower.user_id, NotificationType.APPROVAL_PROGRESS, "Loan Approval in Progress",
                f"Your loan request of {format_money(loan.amount)} has {outcome.approvals_recorded} of "
                f"{outcome.approvals_required} required approvals.",
                {
                    "loan_id": loan.id,
                    "approvals": outcome.approvals_recorded,
                    "required": outcome.approvals_required
                },
                loan.cooperative_id
            )

        return loan, outcome

    @staticmethod
    async def reject(db: AsyncSession, loan_id: int, requesting_user_id: int, reason: str) -> Loan:
        loan = await repository.get_loan(db, loan_id, for_update=True)
        await MembershipService.validate_permission(
            db, loan.cooperative_id, requesting_user_id, Capability.LOANS_REJECT
        )
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to reject a loan")
        require_status(loan, "reject", LoanStatus.PENDING)

        decisions = await repository.get_approvals(db, loan.id)
        if any(d.approver_id == requesting_user_id for d in decisions):
            raise ConflictError("You have already recorded a decision on this loan", kind="AlreadyDecided")

        reason = reason.strip()
        db.add(LoanApproval(
            loan_id=loan.id,
            approver_id=requesting_user_id,
            decision=ApprovalDecision.REJECTED,
            notes=reason,
            created_at=datetime.utcnow()
        ))
        transition(loan, LoanStatus.REJECTED, "reject")
        loan.reviewed_by = requesting_user_id
        loan.reviewed_at = datetime.utcnow()
        loan.rejection_reason = reason
        await db.commit()
        logger.info(f"Loan {loan.id} rejected by user {requesting_user_id}")

        borrower = await MembershipService.get_member(db, loan.cooperative_id, loan.member_id)
        body = f"Your loan request of {format_money(loan.amount)} was declined. Reason: {reason}"
        await NotificationService.notify(
            db, borrower.user_id, NotificationType.LOAN_REJECTED, "Loan Request Declined", body,
            {"loan_id": loan.id, "reason": reason}, loan.cooperative_id
        )
        await Mailer.send_email(borrower.email, "Loan Request Declined", body)
        return loan
