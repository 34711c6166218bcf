from sqlalchemy.ext.asyncio import AsyncSession
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Tuple
import logging

from coopfund.core.exceptions import ValidationError
from coopfund.core.permissions import Capability
from coopfund.modules.ledger.models import LedgerEntryType
from coopfund.modules.ledger.services import LedgerService, LOAN_REFERENCE
from coopfund.modules.loans import repository
from coopfund.modules.loans.calculator import LoanPolicy, ZERO, format_money, to_decimal
from coopfund.modules.loans.models import Loan, LoanRepaymentSchedule, LoanStatus, ScheduleStatus
from coopfund.modules.loans.schedule import generate_repayment_schedule
from coopfund.modules.loans.state import require_status, transition
from coopfund.modules.members.services import MembershipService
from coopfund.modules.notifications.models import NotificationType
from coopfund.modules.notifications.services import NotificationService, Mailer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DisbursementBreakdown:
    amount: Decimal
    application_fee: Decimal
    interest_deducted_upfront: Decimal

    @property
    def net_disbursement_amount(self) -> Decimal:
        return self.amount - self.application_fee - self.interest_deducted_upfront


def calculate_disbursement(amount, interest_amount, policy: LoanPolicy) -> DisbursementBreakdown:
    """Apply the loan type's fee and upfront-interest deductions"""
    breakdown = DisbursementBreakdown(
        amount=to_decimal(amount),
        application_fee=to_decimal(policy.application_fee or ZERO),
        interest_deducted_upfront=to_decimal(interest_amount) if policy.deduct_interest_upfront else ZERO,
    )
    if breakdown.net_disbursement_amount <= 0:
        raise ValidationError(
            "Deductions leave nothing to disburse",
            kind="InvalidDisbursement",
            details={
                "amount": str(breakdown.amount),
                "application_fee": str(breakdown.application_fee),
                "interest_deducted_upfront": str(breakdown.interest_deducted_upfront),
            }
        )
    return breakdown


class DisbursementService:
    """Moves an approved loan to disbursed: schedule, loan fields and ledger in one commit"""

    @staticmethod
    async def disburse(
        db: AsyncSession,
        loan_id: int,
        requesting_user_id: int,
        disbursement_date: Optional[date] = None,
        notes: Optional[str] = None
    ) -> Tuple[Loan, List[LoanRepaymentSchedule]]:
        loan = await repository.get_loan(db, loan_id, for_update=True)
        await MembershipService.validate_permission(
            db, loan.cooperative_id, requesting_user_id, Capability.LOANS_APPROVE
        )
        require_status(loan, "disburse", LoanStatus.APPROVED)

        policy = await repository.get_policy(db, loan)
        breakdown = calculate_disbursement(loan.amount, loan.interest_amount, policy)

        if disbursement_date:
            disbursed_at = datetime.combine(disbursement_date, datetime.min.time())
        else:
            disbursed_at = datetime.utcnow()
        installments = generate_repayment_schedule(
            principal=loan.amount,
            interest_amount=loan.interest_amount,
            monthly_repayment=loan.monthly_repayment,
            total_repayment=loan.total_repayment,
            duration=loan.duration,
            annual_rate=loan.interest_rate,
            interest_mode=policy.interest_mode,
            start_date=loan.deduction_start_date or disbursed_at,
            interest_withheld=policy.deduct_interest_upfront,
        )

        description = f"Loan disbursement: {format_money(breakdown.net_disbursement_amount)}"
        if notes:
            description = f"{description} ({notes})"

        try:
            schedules = [
                LoanRepaymentSchedule(
                    loan_id=loan.id,
                    installment_number=item.installment_number,
                    due_date=item.due_date,
                    principal_amount=item.principal_amount,
                    interest_amount=item.interest_amount,
                    total_amount=item.total_amount,
                    paid_amount=ZERO,
                    status=ScheduleStatus.PENDING
                )
                for item in installments
            ]
            db.add_all(schedules)

            transition(loan, LoanStatus.DISBURSED, "disburse")
            loan.application_fee = breakdown.application_fee
            loan.interest_deducted_upfront = breakdown.interest_deducted_upfront
            loan.net_disbursement_amount = breakdown.net_disbursement_amount
            loan.amount_disbursed = breakdown.amount
            loan.disbursed_at = disbursed_at

            await LedgerService.record_entry(
                db,
                cooperative_id=loan.cooperative_id,
                entry_type=LedgerEntryType.LOAN_DISBURSEMENT,
                amount=-breakdown.net_disbursement_amount,
                member_id=loan.member_id,
                reference_type=LOAN_REFERENCE,
                reference_id=loan.id,
                description=description,
                created_by=requesting_user_id
            )
            await db.commit()
        except Exception:
            logger.error(f"Disbursement of loan {loan_id} failed, rolling back")
            await db.rollback()
            raise

        logger.info(
            f"Loan {loan.id} disbursed by user {requesting_user_id}: "
            f"net {breakdown.net_disbursement_amount}, {len(schedules)} installments"
        )

        borrower = await MembershipService.get_member(db, loan.cooperative_id, loan.member_id)
        first_due = installments[0].due_date
        body = (
            f"Your loan of {format_money(loan.amount)} has been disbursed. "
            f"You received {format_money(breakdown.net_disbursement_amount)}. "
            f"First repayment is due on {first_due.isoformat()}."
        )
        await NotificationService.notify(
            db, borrower.user_id, NotificationType.LOAN_DISBURSED, "Loan Disbursed", body,
            {
                "loan_id": loan.id,
                "net_disbursement_amount": breakdown.net_disbursement_amount,
                "first_due_date": first_due.isoformat()
            },
            loan.cooperative_id
        )
        await Mailer.send_email(borrower.email, "Loan Disbursed", body)

        return loan, schedules
