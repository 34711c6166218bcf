"""
Repayment processing.

A repayment reaches a loan one of two ways:

* self-reported by the borrower, which only queues a pending
  ``LoanRepayment`` for review and moves no money;
* recorded (or a pending one confirmed) by a member holding
  ``loans:approve``, which allocates the amount across the schedule
  oldest installment first, updates the loan totals and writes one ledger
  entry, all in a single commit.

Both paths refuse an identical amount for the same loan inside the
duplicate-submission window.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple
import logging

from coopfund.core.config import settings
from coopfund.core.exceptions import ConflictError, ForbiddenError, ValidationError
from coopfund.core.permissions import Capability
from coopfund.modules.ledger.models import LedgerEntryType
from coopfund.modules.ledger.services import LedgerService, LOAN_REFERENCE
from coopfund.modules.loans import repository
from coopfund.modules.loans.calculator import ZERO, format_money, to_decimal
from coopfund.modules.loans.models import (
    Loan, LoanRepayment, LoanRepaymentSchedule, LoanStatus, RepaymentStatus, ScheduleStatus,
    REPAYABLE_STATUSES
)
from coopfund.modules.loans.schemas import RecordRepaymentRequest
from coopfund.modules.loans.state import require_status, transition
from coopfund.modules.members.services import MembershipService
from coopfund.modules.notifications.models import NotificationType
from coopfund.modules.notifications.services import NotificationService, Mailer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Allocation:
    installment_number: int
    amount_applied: Decimal
    status: ScheduleStatus


@dataclass
class RepaymentResult:
    repayment: LoanRepayment
    loan: Loan
    allocations: List[Allocation] = field(default_factory=list)
    unallocated: Decimal = ZERO

    @property
    def is_pending(self) -> bool:
        return self.repayment.status == RepaymentStatus.PENDING


def allocate_payment(
    schedules: Sequence[LoanRepaymentSchedule],
    amount: Decimal,
    paid_at: Optional[datetime] = None
) -> Tuple[List[Allocation], Decimal]:
    """
    Spread a payment over installments in installment order, skipping paid
    rows. Mutates the rows; returns what was applied where and any amount
    left over once every installment is settled.
    """
    paid_at = paid_at or datetime.utcnow()
    remaining = to_decimal(amount)
    allocations: List[Allocation] = []

    for schedule in sorted(schedules, key=lambda s: s.installment_number):
        if remaining <= 0:
            break
        if schedule.status == ScheduleStatus.PAID:
            continue

        paid = to_decimal(schedule.paid_amount or 0)
        amount_due = to_decimal(schedule.total_amount) - paid
        if amount_due <= 0:
            schedule.status = ScheduleStatus.PAID
            continue

        applied = min(remaining, amount_due)
        schedule.paid_amount = paid + applied
        if schedule.paid_amount >= to_decimal(schedule.total_amount):
            schedule.status = ScheduleStatus.PAID
            schedule.paid_at = paid_at
        else:
            schedule.status = ScheduleStatus.PARTIAL
        remaining -= applied
        allocations.append(Allocation(schedule.installment_number, applied, ScheduleStatus(schedule.status)))

    return allocations, max(ZERO, remaining)


class RepaymentService:

    @staticmethod
    async def _guard_duplicate(db: AsyncSession, loan: Loan, amount: Decimal) -> None:
        window = settings.DUPLICATE_REPAYMENT_WINDOW_SECONDS
        duplicate = await LedgerService.find_recent_duplicate(db, loan.id, amount, window)
        if duplicate is None:
            cutoff = datetime.utcnow() - timedelta(seconds=window)
            query = select(LoanRepayment.id).where(
                and_(
                    LoanRepayment.loan_id == loan.id,
                    LoanRepayment.amount == amount,
                    LoanRepayment.status.in_([RepaymentStatus.PENDING, RepaymentStatus.CONFIRMED]),
                    LoanRepayment.created_at >= cutoff
                )
            ).limit(1)
            duplicate = await db.scalar(query)

        if duplicate is not None:
            logger.warning(f"Duplicate repayment of {amount} for loan {loan.id} refused")
            raise ConflictError(
                f"A repayment of {format_money(amount)} was already submitted for this loan in the last "
                f"{window // 60 or 1} minute(s). Please wait before submitting it again.",
                kind="DuplicateSubmission",
                details={"loan_id": loan.id, "amount": str(amount), "window_seconds": window}
            )

    @staticmethod
    def _check_amount(loan: Loan, amount: Decimal) -> None:
        if amount <= 0:
            raise ValidationError("Repayment amount must be greater than zero")
        outstanding = to_decimal(loan.outstanding_balance)
        if amount > outstanding:
            raise ValidationError(
                f"Repayment of {format_money(amount)} exceeds the outstanding balance of {format_money(outstanding)}",
                kind="Overpayment",
                details={"amount": str(amount), "outstanding_balance": str(outstanding)}
            )

    @staticmethod
    async def _apply(
        db: AsyncSession,
        loan: Loan,
        repayment: LoanRepayment,
        actor_user_id: int
    ) -> Tuple[List[Allocation], Decimal]:
        """Stage allocation, loan totals and ledger entry; the caller commits"""
        amount = to_decimal(repayment.amount)
        schedules = await repository.get_schedules(db, loan.id)
        allocations, unallocated = allocate_payment(schedules, amount)

        amount_repaid = to_decimal(loan.amount_repaid) + amount
        outstanding = to_decimal(loan.total_repayment) - amount_repaid
        loan.amount_repaid = amount_repaid
        loan.outstanding_balance = max(ZERO, outstanding)
        if outstanding <= 0:
            transition(loan, LoanStatus.COMPLETED, "record repayment for")
            loan.completed_at = datetime.utcnow()
        else:
            transition(loan, LoanStatus.REPAYING, "record repayment for")

        await LedgerService.record_entry(
            db,
            cooperative_id=loan.cooperative_id,
            entry_type=LedgerEntryType.LOAN_REPAYMENT,
            amount=amount,
            member_id=loan.member_id,
            reference_type=LOAN_REFERENCE,
            reference_id=loan.id,
            description=f"Loan repayment: {format_money(amount)}",
            created_by=actor_user_id
        )
        return allocations, unallocated

    @staticmethod
    async def _notify_applied(db: AsyncSession, loan: Loan, amount: Decimal) -> None:
        borrower = await MembershipService.get_member(db, loan.cooperative_id, loan.member_id)
        if loan.status == LoanStatus.COMPLETED:
            body = (
                f"Your repayment of {format_money(amount)} has been recorded and your loan of "
                f"{format_money(loan.amount)} is now fully repaid."
            )
            await NotificationService.notify(
                db, borrower.user_id, NotificationType.LOAN_COMPLETED, "Loan Fully Repaid", body,
                {"loan_id": loan.id, "amount": amount}, loan.cooperative_id
            )
            await Mailer.send_email(borrower.email, "Loan Fully Repaid", body)
        else:
            await NotificationService.notify(
                db, borrower.user_id, NotificationType.REPAYMENT_RECORDED, "Repayment Recorded",
                f"Your repayment of {format_money(amount)} has been recorded. "
                f"Outstanding balance: {format_money(loan.outstanding_balance)}.",
                {"loan_id": loan.id, "amount": amount, "outstanding_balance": loan.outstanding_balance},
                loan.cooperative_id
            )

    @staticmethod
    async def record_repayment(
        db: AsyncSession,
        loan_id: int,
        requesting_user_id: int,
        data: RecordRepaymentRequest
    ) -> RepaymentResult:
        """Record a repayment, directly or as a pending self-report depending on the actor"""
        loan = await repository.get_loan(db, loan_id, for_update=True)
        member = await MembershipService.validate_membership(db, loan.cooperative_id, requesting_user_id)
        can_confirm = MembershipService.member_has(member, Capability.LOANS_APPROVE)
        if not can_confirm and member.id != loan.member_id:
            raise ForbiddenError("You can only record repayments for your own loans")

        require_status(loan, "record repayment for", *REPAYABLE_STATUSES)
        amount = to_decimal(data.amount)
        RepaymentService._check_amount(loan, amount)
        await RepaymentService._guard_duplicate(db, loan, amount)

        now = datetime.utcnow()
        repayment = LoanRepayment(
            loan_id=loan.id,
            amount=amount,
            payment_method=data.payment_method,
            payment_date=data.payment_date or now.date(),
            receipt_number=data.receipt_number,
            payment_reference=data.payment_reference,
            notes=data.notes,
            status=RepaymentStatus.CONFIRMED if can_confirm else RepaymentStatus.PENDING,
            submitted_by=requesting_user_id,
            reviewed_by=requesting_user_id if can_confirm else None,
            reviewed_at=now if can_confirm else None,
            created_at=now
        )

        if not can_confirm:
            db.add(repayment)
            await db.commit()
            logger.info(f"Repayment of {amount} for loan {loan.id} submitted by user {requesting_user_id}")

            await NotificationService.notify_admins(
                db, loan.cooperative_id, NotificationType.REPAYMENT_SUBMITTED, "Repayment Awaiting Confirmation",
                f"{member.full_name} reported a repayment of {format_money(amount)}.",
                {"loan_id": loan.id, "repayment_id": repayment.id, "amount": amount},
                exclude_user_ids=[requesting_user_id]
            )
            await NotificationService.notify(
                db, requesting_user_id, NotificationType.REPAYMENT_SUBMITTED, "Repayment Submitted",
                f"Your repayment of {format_money(amount)} was submitted and is awaiting confirmation.",
                {"loan_id": loan.id, "repayment_id": repayment.id, "amount": amount},
                loan.cooperative_id
            )
            return RepaymentResult(repayment=repayment, loan=loan)

        try:
            db.add(repayment)
            allocations, unallocated = await RepaymentService._apply(db, loan, repayment, requesting_user_id)
            await db.commit()
        except Exception:
            logger.error(f"Repayment allocation for loan {loan_id} failed, rolling back")
            await db.rollback()
            raise

        logger.info(
            f"Repayment of {amount} applied to loan {loan.id} by user {requesting_user_id}; "
            f"outstanding {loan.outstanding_balance}, status {LoanStatus(loan.status).value}"
        )
        await RepaymentService._notify_applied(db, loan, amount)
        return RepaymentResult(repayment=repayment, loan=loan, allocations=allocations, unallocated=unallocated)

    @staticmethod
    async def confirm_repayment(db: AsyncSession, repayment_id: int, requesting_user_id: int) -> RepaymentResult:
        """Confirm a pending self-reported repayment and allocate its original amount"""
        repayment = await repository.get_repayment(db, repayment_id, for_update=True)
        loan = await repository.get_loan(db, repayment.loan_id, for_update=True)
        await MembershipService.validate_permission(
            db, loan.cooperative_id, requesting_user_id, Capability.LOANS_APPROVE
        )
        if repayment.status != RepaymentStatus.PENDING:
            raise ConflictError(
                f"This repayment has already been {RepaymentStatus(repayment.status).value}",
                kind="AlreadyReviewed"
            )
        require_status(loan, "record repayment for", *REPAYABLE_STATUSES)
        RepaymentService._check_amount(loan, to_decimal(repayment.amount))

        try:
            repayment.status = RepaymentStatus.CONFIRMED
            repayment.reviewed_by = requesting_user_id
            repayment.reviewed_at = datetime.utcnow()
            allocations, unallocated = await RepaymentService._apply(db, loan, repayment, requesting_user_id)
            await db.commit()
        except Exception:
            logger.error(f"Confirmation of repayment {repayment_id} failed, rolling back")
            await db.rollback()
            raise

        logger.info(f"Repayment {repayment.id} for loan {loan.id} confirmed by user {requesting_user_id}")
        await RepaymentService._notify_applied(db, loan, to_decimal(repayment.amount))
        return RepaymentResult(repayment=repayment, loan=loan, allocations=allocations, unallocated=unallocated)

    @staticmethod
    async def reject_repayment(
        db: AsyncSession,
        repayment_id: int,
        requesting_user_id: int,
        reason: str
    ) -> LoanRepayment:
        repayment = await repository.get_repayment(db, repayment_id, for_update=True)
        loan = await repository.get_loan(db, repayment.loan_id)
        await MembershipService.validate_permission(
            db, loan.cooperative_id, requesting_user_id, Capability.LOANS_APPROVE
        )
        if repayment.status != RepaymentStatus.PENDING:
            raise ConflictError(
                f"This repayment has already been {RepaymentStatus(repayment.status).value}",
                kind="AlreadyReviewed"
            )
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to reject a repayment")

        repayment.status = RepaymentStatus.REJECTED
        repayment.reviewed_by = requesting_user_id
        repayment.reviewed_at = datetime.utcnow()
        repayment.rejection_reason = reason.strip()
        await db.commit()
        logger.info(f"Repayment {repayment.id} for loan {loan.id} rejected by user {requesting_user_id}")

        await NotificationService.notify(
            db, repayment.submitted_by, NotificationType.REPAYMENT_REJECTED, "Repayment Not Confirmed",
            f"Your repayment of {format_money(repayment.amount)} was not confirmed. "
            f"Reason: {repayment.rejection_reason}",
            {"loan_id": loan.id, "repayment_id": repayment.id, "reason": repayment.rejection_reason},
            loan.cooperative_id
        )
        return repayment

    @staticmethod
    async def list_repayments(
        db: AsyncSession,
        loan_id: int,
        requesting_user_id: int,
        status: Optional[RepaymentStatus] = None
    ) -> List[LoanRepayment]:
        loan = await repository.get_loan(db, loan_id)
        member = await MembershipService.validate_membership(db, loan.cooperative_id, requesting_user_id)
        if member.id != loan.member_id and not MembershipService.member_has(member, Capability.LOANS_VIEW):
            raise ForbiddenError("You do not have permission to view these repayments")

        query = select(LoanRepayment).where(LoanRepayment.loan_id == loan.id)
        if status is not None:
            query = query.where(LoanRepayment.status == status)
        query = query.order_by(LoanRepayment.created_at.desc(), LoanRepayment.id.desc())
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def pending_for_cooperative(
        db: AsyncSession,
        cooperative_id: int,
        requesting_user_id: int
    ) -> List[LoanRepayment]:
        """Self-reported repayments awaiting a reviewer"""
        await MembershipService.validate_permission(
            db, cooperative_id, requesting_user_id, Capability.LOANS_APPROVE
        )
        query = (
            select(LoanRepayment)
            .join(Loan, Loan.id == LoanRepayment.loan_id)
            .where(
                and_(
                    Loan.cooperative_id == cooperative_id,
                    LoanRepayment.status == RepaymentStatus.PENDING
                )
            )
            .order_by(LoanRepayment.created_at)
        )
        result = await db.execute(query)
        return list(result.scalars().all())
