from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_
from typing import Any, Dict, List, Optional
from datetime import datetime
from decimal import Decimal
import logging

from coopfund.core.config import settings
from coopfund.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from coopfund.core.permissions import Capability
from coopfund.modules.ledger.models import LedgerEntryType
from coopfund.modules.ledger.services import LedgerService
from coopfund.modules.loans import repository
from coopfund.modules.loans.calculator import LoanPolicy, ZERO, format_money, price_for_policy, to_decimal
from coopfund.modules.loans.eligibility import check_loan_eligibility
from coopfund.modules.loans.guarantors import GuarantorService
from coopfund.modules.loans.models import (
    Loan, LoanType, LoanStatus, LoanApproval, LoanGuarantor, LoanRepaymentSchedule,
    MemberInitiator, AdminInitiator
)
from coopfund.modules.loans.schemas import (
    LoanTypeCreate, LoanTypeUpdate, LoanRequest, LoanInitiate,
    ReconciliationCheck, ReconciliationReport
)
from coopfund.modules.loans.state import transition
from coopfund.modules.members.models import Member, MemberStatus
from coopfund.modules.members.services import MembershipService
from coopfund.modules.notifications.models import NotificationType
from coopfund.modules.notifications.services import NotificationService, Mailer

logger = logging.getLogger(__name__)


def _validate_loan_type_rules(values: Dict[str, Any]) -> None:
    if to_decimal(values["min_amount"]) > to_decimal(values["max_amount"]):
        raise ValidationError("Minimum amount cannot be greater than maximum amount")
    if values["min_duration"] > values["max_duration"]:
        raise ValidationError("Minimum duration cannot be greater than maximum duration")
    if values.get("requires_guarantor") and (values.get("min_guarantors") or 0) < 1:
        raise ValidationError("A loan type that requires guarantors needs at least one guarantor")
    if values.get("requires_multiple_approvals") and (values.get("min_approvers") or 1) < 2:
        raise ValidationError("Multiple approvals needs at least two approvers")


class LoanTypeService:
    """Loan policy templates per cooperative"""

    @staticmethod
    async def _count_loans(db: AsyncSession, loan_type_id: int) -> int:
        return await db.scalar(select(func.count(Loan.id)).where(Loan.loan_type_id == loan_type_id)) or 0

    @staticmethod
    async def _ensure_unique_name(
        db: AsyncSession,
        cooperative_id: int,
        name: str,
        exclude_id: Optional[int] = None
    ) -> None:
        query = select(LoanType.id).where(
            and_(LoanType.cooperative_id == cooperative_id, LoanType.name == name)
        )
        if exclude_id is not None:
            query = query.where(LoanType.id != exclude_id)
        if await db.scalar(query) is not None:
            raise ConflictError(f"A loan type named '{name}' already exists", kind="DuplicateName")

    @staticmethod
    async def _get_in_cooperative(db: AsyncSession, cooperative_id: int, loan_type_id: int) -> LoanType:
        loan_type = await repository.get_loan_type(db, loan_type_id)
        if not loan_type or loan_type.cooperative_id != cooperative_id:
            raise NotFoundError("Loan type", loan_type_id)
        return loan_type

    @staticmethod
    async def create_loan_type(
        db: AsyncSession,
        cooperative_id: int,
        requesting_user_id: int,
        data: LoanTypeCreate
    ) -> LoanType:
        await MembershipService.validate_permission(
            db, cooperative_id, requesting_user_id, Capability.LOANS_CONFIGURE
        )
        values = data.model_dump()
        if values["max_active_loans"] is None:
            values["max_active_loans"] = settings.LOAN_TYPE_DEFAULT_MAX_ACTIVE_LOANS
        _validate_loan_type_rules(values)
        await LoanTypeService._ensure_unique_name(db, cooperative_id, data.name)

        loan_type = LoanType(
            cooperative_id=cooperative_id,
            is_active=True,
            created_by=requesting_user_id,
            created_at=datetime.utcnow(),
            **values
        )
        db.add(loan_type)
        await db.commit()
        await db.refresh(loan_type)
        loan_type.loan_count = 0

        logger.info(f"Loan type {loan_type.id} '{loan_type.name}' created in cooperative {cooperative_id}")
        return loan_type

    @staticmethod
    async def update_loan_type(
        db: AsyncSession,
        cooperative_id: int,
        loan_type_id: int,
        requesting_user_id: int,
        data: LoanTypeUpdate
    ) -> LoanType:
        await MembershipService.validate_permission(
            db, cooperative_id, requesting_user_id, Capability.LOANS_CONFIGURE
        )
        loan_type = await LoanTypeService._get_in_cooperative(db, cooperative_id, loan_type_id)

        update_data = data.model_dump(exclude_unset=True)
        merged = {
            column: getattr(loan_type, column)
            for column in (
                "min_amount", "max_amount", "min_duration", "max_duration",
                "requires_guarantor", "min_guarantors", "requires_multiple_approvals", "min_approvers"
            )
        }
        merged.update({k: v for k, v in update_data.items() if v is not None})
        _validate_loan_type_rules(merged)
        if update_data.get("name") and update_data["name"] != loan_type.name:
            await LoanTypeService._ensure_unique_name(db, cooperative_id, update_data["name"], loan_type.id)

        for field, value in update_data.items():
            if value is not None or field == "description":
                setattr(loan_type, field, value)
        loan_type.updated_at = datetime.utcnow()

        await db.commit()
        await db.refresh(loan_type)
        loan_type.loan_count = await LoanTypeService._count_loans(db, loan_type.id)
        logger.info(f"Loan type {loan_type.id} updated by user {requesting_user_id}")
        return loan_type

    @staticmethod
    async def list_loan_types(
        db: AsyncSession,
        cooperative_id: int,
        requesting_user_id: int,
        active_only: bool = False
    ) -> List[LoanType]:
        await MembershipService.validate_membership(db, cooperative_id, requesting_user_id)
        counts = (
            select(Loan.loan_type_id, func.count(Loan.id).label("loan_count"))
            .group_by(Loan.loan_type_id)
            .subquery()
        )
        query = (
            select(LoanType, func.coalesce(counts.c.loan_count, 0))
            .outerjoin(counts, counts.c.loan_type_id == LoanType.id)
            .where(LoanType.cooperative_id == cooperative_id)
        )
        if active_only:
            query = query.where(LoanType.is_active == True)
        query = query.order_by(LoanType.name)

        result = await db.execute(query)
        loan_types = []
        for loan_type, loan_count in result.all():
            loan_type.loan_count = loan_count
            loan_types.append(loan_type)
        return loan_types

    @staticmethod
    async def get_loan_type(
        db: AsyncSession,
        cooperative_id: int,
        loan_type_id: int,
        requesting_user_id: int
    ) -> LoanType:
        await MembershipService.validate_membership(db, cooperative_id, requesting_user_id)
        loan_type = await LoanTypeService._get_in_cooperative(db, cooperative_id, loan_type_id)
        loan_type.loan_count = await LoanTypeService._count_loans(db, loan_type.id)
        return loan_type

    @staticmethod
    async def delete_loan_type(
        db: AsyncSession,
        cooperative_id: int,
        loan_type_id: int,
        requesting_user_id: int
    ) -> None:
        await MembershipService.validate_permission(
            db, cooperative_id, requesting_user_id, Capability.LOANS_CONFIGURE
        )
        loan_type = await LoanTypeService._get_in_cooperative(db, cooperative_id, loan_type_id)
        loan_count = await LoanTypeService._count_loans(db, loan_type.id)
        if loan_count:
            raise ConflictError(
                f"Cannot delete a loan type used by {loan_count} loan(s). Deactivate it instead.",
                kind="LoanTypeInUse",
                details={"loan_count": loan_count}
            )
        await db.delete(loan_type)
        await db.commit()
        logger.info(f"Loan type {loan_type_id} deleted by user {requesting_user_id}")


class LoanService:
    """Loan requests, lifecycle queries and reconciliation"""

    @staticmethod
    def _can_view(member: Member, loan: Loan) -> bool:
        return member.id == loan.member_id or MembershipService.member_has(member, Capability.LOANS_VIEW)

    @staticmethod
    async def _resolve_loan_type(
        db: AsyncSession,
        cooperative_id: int,
        loan_type_id: Optional[int]
    ) -> Optional[LoanType]:
        if loan_type_id is None:
            return None
        loan_type = await repository.get_loan_type(db, loan_type_id)
        if not loan_type or loan_type.cooperative_id != cooperative_id:
            raise NotFoundError("Loan type", loan_type_id)
        if not loan_type.is_active:
            raise ValidationError("This loan type is not currently available")
        return loan_type

    @staticmethod
    def _price(amount: Decimal, rate: Decimal, duration: int, policy: LoanPolicy):
        try:
            return price_for_policy(amount, rate, duration, policy)
        except ValueError as e:
            raise ValidationError(str(e))

    @staticmethod
    async def request_loan(
        db: AsyncSession,
        cooperative_id: int,
        requesting_user_id: int,
        data: LoanRequest
    ) -> Loan:
        """
        Submit a loan request on the caller's own behalf.

        - Typed requests run the eligibility check and take the type's rate
        - Guarantors are validated and their rows created with the loan
        - Approvers and every guarantor are notified
        """
        member = await MembershipService.validate_membership(db, cooperative_id, requesting_user_id)
        loan_type = await LoanService._resolve_loan_type(db, cooperative_id, data.loan_type_id)
        policy = LoanPolicy.from_loan_type(loan_type)
        amount = to_decimal(data.amount)

        if loan_type:
            await check_loan_eligibility(db, member.id, loan_type, amount, data.duration)
            rate = to_decimal(loan_type.interest_rate)
        else:
            rate = to_decimal(data.interest_rate or ZERO)

        guarantors = await GuarantorService.resolve_guarantors(
            db, cooperative_id, member, data.guarantor_ids, policy
        )
        terms = LoanService._price(amount, rate, data.duration, policy)

        loan = Loan(
            cooperative_id=cooperative_id,
            member_id=member.id,
            loan_type_id=loan_type.id if loan_type else None,
            amount=amount,
            purpose=data.purpose,
            duration=data.duration,
            interest_rate=rate,
            interest_amount=terms.interest_amount,
            monthly_repayment=terms.monthly_repayment,
            total_repayment=terms.total_repayment,
            amount_repaid=ZERO,
            outstanding_balance=terms.total_repayment,
            status=LoanStatus.PENDING,
            requested_at=datetime.utcnow()
        )
        loan.initiator = MemberInitiator()
        db.add(loan)
        await db.flush()
        GuarantorService.stage_guarantors(db, loan, guarantors)
        await db.commit()

        logger.info(
            f"Loan {loan.id} requested by member {member.id}: amount {amount}, "
            f"{data.duration} months, total {terms.total_repayment}"
        )

        await NotificationService.notify_admins(
            db, cooperative_id, NotificationType.LOAN_REQUESTED, "New Loan Request",
            f"{member.full_name} requested a loan of {format_money(amount)} for {data.duration} month(s).",
            {"loan_id": loan.id, "amount": amount},
            exclude_user_ids=[requesting_user_id]
        )
        for guarantor in guarantors:
            await NotificationService.notify(
                db, guarantor.user_id, NotificationType.GUARANTOR_REQUESTED, "Guarantor Request",
                f"{member.full_name} has asked you to guarantee a loan of {format_money(amount)}.",
                {"loan_id": loan.id, "borrower_member_id": member.id},
                cooperative_id
            )
        return loan

    @staticmethod
    async def initiate_loan_for_member(
        db: AsyncSession,
        cooperative_id: int,
        requesting_user_id: int,
        data: LoanInitiate
    ) -> Loan:
        """Create an already-approved loan for a member; eligibility is not checked"""
        await MembershipService.validate_permission(
            db, cooperative_id, requesting_user_id, Capability.LOANS_APPROVE
        )
        borrower = await MembershipService.get_member(db, cooperative_id, data.member_id)
        if borrower.status != MemberStatus.ACTIVE:
            raise ValidationError("Loans can only be initiated for active members")

        loan_type = await LoanService._resolve_loan_type(db, cooperative_id, data.loan_type_id)
        policy = LoanPolicy.from_loan_type(loan_type)
        amount = to_decimal(data.amount)
        if loan_type:
            rate = to_decimal(loan_type.interest_rate)
        else:
            rate = to_decimal(data.interest_rate or ZERO)
        terms = LoanService._price(amount, rate, data.duration, policy)

        now = datetime.utcnow()
        loan = Loan(
            cooperative_id=cooperative_id,
            member_id=borrower.id,
            loan_type_id=loan_type.id if loan_type else None,
            amount=amount,
            purpose=data.purpose,
            duration=data.duration,
            interest_rate=rate,
            interest_amount=terms.interest_amount,
            monthly_repayment=terms.monthly_repayment,
            total_repayment=terms.total_repayment,
            amount_repaid=ZERO,
            outstanding_balance=terms.total_repayment,
            status=LoanStatus.APPROVED,
            reviewed_by=requesting_user_id,
            reviewed_at=now,
            deduction_start_date=data.deduction_start_date,
            requested_at=now
        )
        loan.initiator = AdminInitiator(approver_id=requesting_user_id)
        db.add(loan)
        await db.commit()
        logger.info(
            f"Loan {loan.id} initiated for member {borrower.id} by user {requesting_user_id}: amount {amount}"
        )

        body = (
            f"A loan of {format_money(amount)} has been created and approved for you. "
            f"Monthly repayment: {format_money(terms.monthly_repayment)}."
        )
        await NotificationService.notify(
            db, borrower.user_id, NotificationType.LOAN_APPROVED, "Loan Approved!", body,
            {"loan_id": loan.id}, cooperative_id
        )
        await Mailer.send_email(borrower.email, "Loan Approved", body)
        return loan

    @staticmethod
    async def mark_defaulted(
        db: AsyncSession,
        loan_id: int,
        requesting_user_id: int,
        reason: Optional[str] = None
    ) -> Loan:
        loan = await repository.get_loan(db, loan_id, for_update=True)
        await MembershipService.validate_permission(
            db, loan.cooperative_id, requesting_user_id, Capability.LOANS_APPROVE
        )
        transition(loan, LoanStatus.DEFAULTED, "mark as defaulted")
        loan.defaulted_at = datetime.utcnow()
        await db.commit()
        logger.info(
            f"Loan {loan.id} marked defaulted by user {requesting_user_id}, "
            f"outstanding {loan.outstanding_balance}"
        )

        borrower = await MembershipService.get_member(db, loan.cooperative_id, loan.member_id)
        body = (
            f"Your loan of {format_money(loan.amount)} has been marked as defaulted with "
            f"{format_money(loan.outstanding_balance)} outstanding."
        )
        if reason:
            body += f" Reason: {reason}"
        await NotificationService.notify(
            db, borrower.user_id, NotificationType.LOAN_DEFAULTED, "Loan Defaulted", body,
            {"loan_id": loan.id, "outstanding_balance": loan.outstanding_balance}, loan.cooperative_id
        )
        return loan

    # ============ Queries ============

    @staticmethod
    async def get_loan(db: AsyncSession, loan_id: int, requesting_user_id: int) -> Loan:
        loan = await repository.get_loan(db, loan_id)
        await MembershipService.validate_membership(db, loan.cooperative_id, requesting_user_id)
        return loan

    @staticmethod
    async def list_loans(
        db: AsyncSession,
        cooperative_id: int,
        requesting_user_id: int,
        status: Optional[LoanStatus] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[Loan]:
        """All cooperative loans for viewers; everyone else only sees their own"""
        member = await MembershipService.validate_membership(db, cooperative_id, requesting_user_id)
        query = select(Loan).where(Loan.cooperative_id == cooperative_id)
        if not MembershipService.member_has(member, Capability.LOANS_VIEW):
            query = query.where(Loan.member_id == member.id)
        if status is not None:
            query = query.where(Loan.status == status)
        query = query.order_by(Loan.requested_at.desc(), Loan.id.desc()).offset(skip).limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def get_pending_loans(db: AsyncSession, cooperative_id: int, requesting_user_id: int) -> List[Loan]:
        await MembershipService.validate_permission(
            db, cooperative_id, requesting_user_id, Capability.LOANS_VIEW
        )
        query = (
            select(Loan)
            .where(and_(Loan.cooperative_id == cooperative_id, Loan.status == LoanStatus.PENDING))
            .order_by(Loan.requested_at)
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def get_my_loans(db: AsyncSession, cooperative_id: int, requesting_user_id: int) -> List[Loan]:
        member = await MembershipService.validate_membership(db, cooperative_id, requesting_user_id)
        query = (
            select(Loan)
            .where(and_(Loan.cooperative_id == cooperative_id, Loan.member_id == member.id))
            .order_by(Loan.requested_at.desc())
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def get_repayment_schedule(
        db: AsyncSession,
        loan_id: int,
        requesting_user_id: int
    ) -> List[LoanRepaymentSchedule]:
        loan = await repository.get_loan(db, loan_id)
        member = await MembershipService.validate_membership(db, loan.cooperative_id, requesting_user_id)
        if not LoanService._can_view(member, loan):
            raise ForbiddenError("You do not have permission to view this loan's schedule")
        return await repository.get_schedules(db, loan.id)

    @staticmethod
    async def get_guarantors(db: AsyncSession, loan_id: int, requesting_user_id: int) -> List[LoanGuarantor]:
        loan = await repository.get_loan(db, loan_id)
        await MembershipService.validate_membership(db, loan.cooperative_id, requesting_user_id)
        return await repository.get_guarantors(db, loan.id)

    @staticmethod
    async def get_approvals(db: AsyncSession, loan_id: int, requesting_user_id: int) -> List[LoanApproval]:
        loan = await repository.get_loan(db, loan_id)
        await MembershipService.validate_membership(db, loan.cooperative_id, requesting_user_id)
        return await repository.get_approvals(db, loan.id)

    @staticmethod
    async def get_guarantor_requests(db: AsyncSession, cooperative_id: int, requesting_user_id: int) -> List[Loan]:
        return await GuarantorService.pending_requests(db, cooperative_id, requesting_user_id)

    # ============ Reconciliation ============

    @staticmethod
    async def reconcile_loan(db: AsyncSession, loan_id: int, requesting_user_id: int) -> ReconciliationReport:
        """
        Cross-check a loan's running totals against its schedule and ledger.
        Read-only; a failing check points at drift, it does not repair it.
        """
        loan = await repository.get_loan(db, loan_id)
        await MembershipService.validate_permission(
            db, loan.cooperative_id, requesting_user_id, Capability.LOANS_VIEW
        )

        amount_repaid = to_decimal(loan.amount_repaid)
        total_repayment = to_decimal(loan.total_repayment)
        checks: List[ReconciliationCheck] = []

        def check(name: str, expected: Decimal, actual: Decimal) -> None:
            checks.append(ReconciliationCheck(
                name=name, expected=float(expected), actual=float(actual), passed=expected == actual
            ))

        schedules = await repository.get_schedules(db, loan.id)
        schedule_paid = sum((to_decimal(s.paid_amount) for s in schedules), ZERO)
        ledger_repaid = await LedgerService.sum_for_loan(db, loan.id, LedgerEntryType.LOAN_REPAYMENT)

        check("amount_repaid_vs_schedule", amount_repaid, schedule_paid)
        check("amount_repaid_vs_ledger", amount_repaid, ledger_repaid)
        check("outstanding_balance", max(ZERO, total_repayment - amount_repaid), to_decimal(loan.outstanding_balance))

        if loan.disbursed_at is not None:
            schedule_total = sum((to_decimal(s.total_amount) for s in schedules), ZERO)
            check("schedule_total_vs_total_repayment", total_repayment, schedule_total)

            disbursed = await LedgerService.sum_for_loan(db, loan.id, LedgerEntryType.LOAN_DISBURSEMENT)
            check("disbursement_entry", -to_decimal(loan.net_disbursement_amount or ZERO), disbursed)

        report = ReconciliationReport(
            loan_id=loan.id,
            status=loan.status,
            checks=checks,
            is_consistent=all(c.passed for c in checks)
        )
        if not report.is_consistent:
            failed = ", ".join(c.name for c in checks if not c.passed)
            logger.warning(f"Loan {loan.id} failed reconciliation: {failed}")
        return report
