from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_
from decimal import Decimal
import logging

from coopfund.core.exceptions import ValidationError
from coopfund.modules.loans.calculator import format_money, to_decimal
from coopfund.modules.loans.models import Loan, LoanType, ACTIVE_LOAN_STATUSES

logger = logging.getLogger(__name__)


def check_bounds(loan_type: LoanType, amount: Decimal, duration: int) -> None:
    """Requested amount and duration must sit inside the type's bounds"""
    amount = to_decimal(amount)
    min_amount = to_decimal(loan_type.min_amount)
    max_amount = to_decimal(loan_type.max_amount)
    if amount < min_amount or amount > max_amount:
        raise ValidationError(
            f"Amount must be between {format_money(min_amount)} and {format_money(max_amount)}",
            kind="OutOfRange",
            details={"min_amount": str(min_amount), "max_amount": str(max_amount), "amount": str(amount)}
        )
    if duration < loan_type.min_duration or duration > loan_type.max_duration:
        raise ValidationError(
            f"Duration must be between {loan_type.min_duration} and {loan_type.max_duration} months",
            kind="OutOfRange",
            details={"min_duration": loan_type.min_duration, "max_duration": loan_type.max_duration, "duration": duration}
        )


async def count_active_loans(db: AsyncSession, member_id: int, loan_type_id: int) -> int:
    query = select(func.count(Loan.id)).where(
        and_(
            Loan.member_id == member_id,
            Loan.loan_type_id == loan_type_id,
            Loan.status.in_(ACTIVE_LOAN_STATUSES)
        )
    )
    return await db.scalar(query) or 0


async def check_loan_eligibility(
    db: AsyncSession,
    member_id: int,
    loan_type: LoanType,
    amount: Decimal,
    duration: int
) -> None:
    """
    Validate a member's request against a loan type.
    Only member requests run this; admin-initiated loans skip it.
    """
    if loan_type.max_active_loans:
        active = await count_active_loans(db, member_id, loan_type.id)
        if active >= loan_type.max_active_loans:
            logger.warning(f"Member {member_id} hit the active loan cap for loan type {loan_type.id}")
            raise ValidationError(
                f"Maximum of {loan_type.max_active_loans} active loan(s) allowed for this loan type",
                kind="LimitExceeded",
                details={"max_active_loans": loan_type.max_active_loans, "active_loans": active}
            )

    check_bounds(loan_type, amount, duration)
