from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, Date, DateTime, Text,
    Enum as SQLEnum, ForeignKey, UniqueConstraint
)
from dataclasses import dataclass
from datetime import datetime
from typing import Union
from coopfund.core.database import Base
import enum


class InterestMode(str, enum.Enum):
    FLAT = "flat"
    REDUCING_BALANCE = "reducing_balance"


class LoanStatus(str, enum.Enum):
    """Loan lifecycle status"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DISBURSED = "disbursed"
    REPAYING = "repaying"
    COMPLETED = "completed"
    DEFAULTED = "defaulted"


class InitiatorKind(str, enum.Enum):
    MEMBER = "member"
    ADMIN = "admin"


class GuarantorStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalDecision(str, enum.Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class ScheduleStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"


class RepaymentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


# Active statuses count against a loan type's max_active_loans
ACTIVE_LOAN_STATUSES = (
    LoanStatus.PENDING, LoanStatus.APPROVED, LoanStatus.DISBURSED, LoanStatus.REPAYING
)
REPAYABLE_STATUSES = (LoanStatus.DISBURSED, LoanStatus.REPAYING)


@dataclass(frozen=True)
class MemberInitiator:
    """Loan requested by the borrowing member"""


@dataclass(frozen=True)
class AdminInitiator:
    """Loan initiated (and auto-approved) by an approver"""
    approver_id: int


Initiator = Union[MemberInitiator, AdminInitiator]


class LoanType(Base):
    """Loan policy template configured per cooperative"""
    __tablename__ = "loan_types"
    __table_args__ = (UniqueConstraint("cooperative_id", "name", name="uq_loan_type_cooperative_name"),)

    id = Column(Integer, primary_key=True, index=True)
    cooperative_id = Column(Integer, ForeignKey("cooperatives.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)

    # Bounds
    min_amount = Column(Numeric(15, 2), nullable=False)
    max_amount = Column(Numeric(15, 2), nullable=False)
    min_duration = Column(Integer, nullable=False)  # months
    max_duration = Column(Integer, nullable=False)  # months

    # Pricing
    interest_rate = Column(Numeric(5, 2), nullable=False, default=0)  # annual %
    interest_mode = Column(SQLEnum(InterestMode), nullable=False, default=InterestMode.FLAT)
    application_fee = Column(Numeric(15, 2), nullable=False, default=0)
    deduct_interest_upfront = Column(Boolean, nullable=False, default=False)

    # Eligibility and gates
    max_active_loans = Column(Integer, nullable=False, default=1)
    requires_guarantor = Column(Boolean, nullable=False, default=False)
    min_guarantors = Column(Integer, nullable=False, default=0)
    requires_multiple_approvals = Column(Boolean, nullable=False, default=False)
    min_approvers = Column(Integer, nullable=False, default=1)

    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<LoanType(id={self.id}, name={self.name})>"


class Loan(Base):
    """Loan aggregate root"""
    __tablename__ = "loans"

    id = Column(Integer, primary_key=True, index=True)
    cooperative_id = Column(Integer, ForeignKey("cooperatives.id"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    loan_type_id = Column(Integer, ForeignKey("loan_types.id"), nullable=True, index=True)

    amount = Column(Numeric(15, 2), nullable=False)
    purpose = Column(String(500), nullable=False)
    duration = Column(Integer, nullable=False)  # months
    interest_rate = Column(Numeric(5, 2), nullable=False, default=0)  # copied at request time

    # Fixed at creation
    interest_amount = Column(Numeric(15, 2), nullable=False, default=0)
    monthly_repayment = Column(Numeric(15, 2), nullable=False, default=0)
    total_repayment = Column(Numeric(15, 2), nullable=False, default=0)

    # Running totals (repayment processor only)
    amount_repaid = Column(Numeric(15, 2), nullable=False, default=0)
    outstanding_balance = Column(Numeric(15, 2), nullable=False, default=0)

    status = Column(SQLEnum(LoanStatus), nullable=False, default=LoanStatus.PENDING, index=True)
    initiated_by = Column(SQLEnum(InitiatorKind), nullable=False, default=InitiatorKind.MEMBER)
    initiated_by_user_id = Column(Integer, nullable=True)

    # Review
    reviewed_by = Column(Integer, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)

    # Disbursement
    application_fee = Column(Numeric(15, 2), nullable=False, default=0)
    interest_deducted_upfront = Column(Numeric(15, 2), nullable=False, default=0)
    net_disbursement_amount = Column(Numeric(15, 2), nullable=True)
    amount_disbursed = Column(Numeric(15, 2), nullable=True)
    deduction_start_date = Column(Date, nullable=True)

    # Timestamps
    requested_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    disbursed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    defaulted_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def initiator(self) -> Initiator:
        if self.initiated_by == InitiatorKind.ADMIN:
            return AdminInitiator(approver_id=self.initiated_by_user_id)
        return MemberInitiator()

    @initiator.setter
    def initiator(self, value: Initiator) -> None:
        if isinstance(value, AdminInitiator):
            self.initiated_by = InitiatorKind.ADMIN
            self.initiated_by_user_id = value.approver_id
        elif isinstance(value, MemberInitiator):
            self.initiated_by = InitiatorKind.MEMBER
            self.initiated_by_user_id = None
        else:
            raise TypeError(f"Unknown loan initiator: {value!r}")

    def __repr__(self):
        return f"<Loan(id={self.id}, amount={self.amount}, status={self.status})>"


class LoanGuarantor(Base):
    """One guarantor's response for a loan"""
    __tablename__ = "loan_guarantors"
    __table_args__ = (UniqueConstraint("loan_id", "guarantor_member_id", name="uq_loan_guarantor"),)

    id = Column(Integer, primary_key=True, index=True)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=False, index=True)
    guarantor_member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)

    status = Column(SQLEnum(GuarantorStatus), nullable=False, default=GuarantorStatus.PENDING)
    responded_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class LoanApproval(Base):
    """Append-only approver decision"""
    __tablename__ = "loan_approvals"
    __table_args__ = (UniqueConstraint("loan_id", "approver_id", name="uq_loan_approver"),)

    id = Column(Integer, primary_key=True, index=True)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=False, index=True)
    approver_id = Column(Integer, nullable=False)  # acting user id
    decision = Column(SQLEnum(ApprovalDecision), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class LoanRepaymentSchedule(Base):
    """One installment of a disbursed loan"""
    __tablename__ = "loan_repayment_schedules"
    __table_args__ = (UniqueConstraint("loan_id", "installment_number", name="uq_loan_installment"),)

    id = Column(Integer, primary_key=True, index=True)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=False, index=True)
    installment_number = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False)

    principal_amount = Column(Numeric(15, 2), nullable=False)
    interest_amount = Column(Numeric(15, 2), nullable=False)
    total_amount = Column(Numeric(15, 2), nullable=False)
    paid_amount = Column(Numeric(15, 2), nullable=False, default=0)

    status = Column(SQLEnum(ScheduleStatus), nullable=False, default=ScheduleStatus.PENDING)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def amount_due(self):
        return self.total_amount - self.paid_amount


class LoanRepayment(Base):
    """Repayment submission, either self-reported or recorded by a reviewer"""
    __tablename__ = "loan_repayments"

    id = Column(Integer, primary_key=True, index=True)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=False, index=True)
    amount = Column(Numeric(15, 2), nullable=False)
    payment_method = Column(String(50), nullable=True)
    payment_date = Column(Date, nullable=True)
    receipt_number = Column(String(100), nullable=True)
    payment_reference = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    status = Column(SQLEnum(RepaymentStatus), nullable=False, default=RepaymentStatus.PENDING, index=True)
    submitted_by = Column(Integer, nullable=False)  # acting user id
    reviewed_by = Column(Integer, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)
