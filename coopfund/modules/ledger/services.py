from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_
from typing import List, Optional
from datetime import datetime, timedelta
from decimal import Decimal
import logging

from coopfund.core.permissions import Capability
from coopfund.modules.ledger.models import LedgerEntry, LedgerEntryType
from coopfund.modules.members.services import MembershipService

logger = logging.getLogger(__name__)

LOAN_REFERENCE = "loan"


class LedgerService:
    """Append-only ledger of money moving in and out of a cooperative pool"""

    @staticmethod
    async def current_balance(db: AsyncSession, cooperative_id: int) -> Decimal:
        """Balance after the most recent entry (best effort)"""
        query = (
            select(LedgerEntry.balance_after)
            .where(LedgerEntry.cooperative_id == cooperative_id)
            .order_by(LedgerEntry.id.desc())
            .limit(1)
        )
        balance = await db.scalar(query)
        return Decimal(str(balance)) if balance is not None else Decimal("0")

    @staticmethod
    async def record_entry(
        db: AsyncSession,
        cooperative_id: int,
        entry_type: LedgerEntryType,
        amount: Decimal,
        member_id: int = None,
        reference_type: str = None,
        reference_id: int = None,
        description: str = None,
        created_by: int = None
    ) -> LedgerEntry:
        """
        Stage a ledger entry in the caller's unit of work.
        The caller owns the commit so the entry lands atomically with the
        state change it records.
        """
        balance = await LedgerService.current_balance(db, cooperative_id)
        entry = LedgerEntry(
            cooperative_id=cooperative_id,
            member_id=member_id,
            type=entry_type,
            amount=amount,
            balance_after=balance + amount,
            reference_type=reference_type,
            reference_id=reference_id,
            description=description,
            created_by=created_by,
            created_at=datetime.utcnow()
        )
        db.add(entry)
        return entry

    @staticmethod
    async def find_recent_duplicate(
        db: AsyncSession,
        loan_id: int,
        amount: Decimal,
        window_seconds: int
    ) -> Optional[LedgerEntry]:
        """Repayment entry for the same loan and amount inside the window"""
        cutoff = datetime.utcnow() - timedelta(seconds=window_seconds)
        query = select(LedgerEntry).where(
            and_(
                LedgerEntry.type == LedgerEntryType.LOAN_REPAYMENT,
                LedgerEntry.reference_type == LOAN_REFERENCE,
                LedgerEntry.reference_id == loan_id,
                LedgerEntry.amount == amount,
                LedgerEntry.created_at >= cutoff
            )
        ).limit(1)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def sum_for_loan(db: AsyncSession, loan_id: int, entry_type: LedgerEntryType) -> Decimal:
        query = select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(
            and_(
                LedgerEntry.type == entry_type,
                LedgerEntry.reference_type == LOAN_REFERENCE,
                LedgerEntry.reference_id == loan_id
            )
        )
        total = await db.scalar(query)
        return Decimal(str(total or 0))

    @staticmethod
    async def list_entries(
        db: AsyncSession,
        cooperative_id: int,
        requesting_user_id: int,
        member_id: Optional[int] = None,
        entry_type: Optional[LedgerEntryType] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[LedgerEntry]:
        """
        List ledger entries, newest first.
        Members without ledger access only ever see their own entries.
        """
        member = await MembershipService.validate_membership(db, cooperative_id, requesting_user_id)
        if not MembershipService.member_has(member, Capability.LEDGER_VIEW):
            member_id = member.id

        query = select(LedgerEntry).where(LedgerEntry.cooperative_id == cooperative_id)
        if member_id is not None:
            query = query.where(LedgerEntry.member_id == member_id)
        if entry_type is not None:
            query = query.where(LedgerEntry.type == entry_type)
        query = query.order_by(LedgerEntry.id.desc()).offset(skip).limit(limit)

        result = await db.execute(query)
        return list(result.scalars().all())
