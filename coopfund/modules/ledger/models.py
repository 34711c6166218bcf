from sqlalchemy import Column, Integer, String, Numeric, DateTime, Enum as SQLEnum, ForeignKey, Index
from datetime import datetime
from coopfund.core.database import Base
import enum


class LedgerEntryType(str, enum.Enum):
    """Kinds of money movement recorded against the cooperative pool"""
    LOAN_DISBURSEMENT = "loan_disbursement"
    LOAN_REPAYMENT = "loan_repayment"
    MANUAL_CREDIT = "manual_credit"
    MANUAL_DEBIT = "manual_debit"
    CONTRIBUTION = "contribution"


class LedgerEntry(Base):
    """
    Append-only financial record.
    Negative amounts leave the pool (disbursements), positive ones enter it.
    Rows are never updated or deleted.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        Index("ix_ledger_reference", "reference_type", "reference_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    cooperative_id = Column(Integer, ForeignKey("cooperatives.id"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=True, index=True)

    type = Column(SQLEnum(LedgerEntryType), nullable=False, index=True)
    amount = Column(Numeric(15, 2), nullable=False)
    balance_after = Column(Numeric(15, 2), nullable=False)  # best effort, not authoritative

    reference_type = Column(String(50), nullable=True)  # e.g. 'loan'
    reference_id = Column(Integer, nullable=True)
    description = Column(String(500), nullable=True)

    created_by = Column(Integer, nullable=True)  # acting user id
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<LedgerEntry(id={self.id}, type={self.type}, amount={self.amount})>"
