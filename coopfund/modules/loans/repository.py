"""Loan persistence lookups shared by the workflow modules."""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from typing import List, Optional

from coopfund.core.exceptions import NotFoundError
from coopfund.modules.loans.calculator import LoanPolicy
from coopfund.modules.loans.models import (
    Loan, LoanType, LoanGuarantor, LoanApproval, LoanRepaymentSchedule, LoanRepayment
)


async def get_loan(db: AsyncSession, loan_id: int, for_update: bool = False) -> Loan:
    query = select(Loan).where(Loan.id == loan_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    loan = result.scalar_one_or_none()
    if not loan:
        raise NotFoundError("Loan", loan_id)
    return loan


async def get_loan_type(db: AsyncSession, loan_type_id: Optional[int]) -> Optional[LoanType]:
    if loan_type_id is None:
        return None
    result = await db.execute(select(LoanType).where(LoanType.id == loan_type_id))
    return result.scalar_one_or_none()


async def get_policy(db: AsyncSession, loan: Loan) -> LoanPolicy:
    return LoanPolicy.from_loan_type(await get_loan_type(db, loan.loan_type_id))


async def get_schedules(db: AsyncSession, loan_id: int) -> List[LoanRepaymentSchedule]:
    query = (
        select(LoanRepaymentSchedule)
        .where(LoanRepaymentSchedule.loan_id == loan_id)
        .order_by(LoanRepaymentSchedule.installment_number)
    )
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_guarantors(db: AsyncSession, loan_id: int) -> List[LoanGuarantor]:
    query = select(LoanGuarantor).where(LoanGuarantor.loan_id == loan_id).order_by(LoanGuarantor.id)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_guarantor(db: AsyncSession, loan_id: int, member_id: int) -> Optional[LoanGuarantor]:
    query = select(LoanGuarantor).where(
        and_(LoanGuarantor.loan_id == loan_id, LoanGuarantor.guarantor_member_id == member_id)
    )
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_approvals(db: AsyncSession, loan_id: int) -> List[LoanApproval]:
    query = select(LoanApproval).where(LoanApproval.loan_id == loan_id).order_by(LoanApproval.id)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_repayment(db: AsyncSession, repayment_id: int, for_update: bool = False) -> LoanRepayment:
    query = select(LoanRepayment).where(LoanRepayment.id == repayment_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    repayment = result.scalar_one_or_none()
    if not repayment:
        raise NotFoundError("Repayment", repayment_id)
    return repayment
