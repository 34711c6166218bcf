from pydantic import BaseModel, Field
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List

from coopfund.modules.loans.models import (
    InterestMode, LoanStatus, InitiatorKind, GuarantorStatus, ApprovalDecision,
    ScheduleStatus, RepaymentStatus
)


# ============ Loan Type Schemas ============

class LoanTypeBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    min_amount: Decimal = Field(..., gt=0)
    max_amount: Decimal = Field(..., gt=0)
    min_duration: int = Field(..., ge=1)  # months
    max_duration: int = Field(..., ge=1)  # months
    interest_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    interest_mode: InterestMode = InterestMode.FLAT
    application_fee: Decimal = Field(default=Decimal("0"), ge=0)
    deduct_interest_upfront: bool = False
    max_active_loans: Optional[int] = Field(default=None, ge=1)
    requires_guarantor: bool = False
    min_guarantors: int = Field(default=0, ge=0)
    requires_multiple_approvals: bool = False
    min_approvers: int = Field(default=1, ge=1)


class LoanTypeCreate(LoanTypeBase):
    pass


class LoanTypeUpdate(BaseModel):
    """Partial update, every field optional"""
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    min_amount: Optional[Decimal] = Field(default=None, gt=0)
    max_amount: Optional[Decimal] = Field(default=None, gt=0)
    min_duration: Optional[int] = Field(default=None, ge=1)
    max_duration: Optional[int] = Field(default=None, ge=1)
    interest_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    interest_mode: Optional[InterestMode] = None
    application_fee: Optional[Decimal] = Field(default=None, ge=0)
    deduct_interest_upfront: Optional[bool] = None
    max_active_loans: Optional[int] = Field(default=None, ge=1)
    requires_guarantor: Optional[bool] = None
    min_guarantors: Optional[int] = Field(default=None, ge=0)
    requires_multiple_approvals: Optional[bool] = None
    min_approvers: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None


class LoanTypeResponse(BaseModel):
    id: int
    cooperative_id: int
    name: str
    description: Optional[str] = None
    min_amount: float
    max_amount: float
    min_duration: int
    max_duration: int
    interest_rate: float
    interest_mode: InterestMode
    application_fee: float
    deduct_interest_upfront: bool
    max_active_loans: int
    requires_guarantor: bool
    min_guarantors: int
    requires_multiple_approvals: bool
    min_approvers: int
    is_active: bool
    loan_count: int = 0
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ============ Loan Schemas ============

class LoanRequest(BaseModel):
    loan_type_id: Optional[int] = None
    amount: Decimal = Field(..., gt=0)
    purpose: str = Field(..., min_length=1, max_length=500)
    duration: int = Field(..., ge=1, le=360)  # months
    interest_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)  # untyped loans only
    guarantor_ids: List[int] = Field(default_factory=list)


class LoanInitiate(BaseModel):
    member_id: int
    loan_type_id: Optional[int] = None
    amount: Decimal = Field(..., gt=0)
    purpose: str = Field(..., min_length=1, max_length=500)
    duration: int = Field(..., ge=1, le=360)
    interest_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    deduction_start_date: Optional[date] = None


class LoanApprove(BaseModel):
    deduction_start_date: Optional[date] = None
    notes: Optional[str] = None


class LoanReject(BaseModel):
    reason: str = Field(..., min_length=1)


class LoanDisburse(BaseModel):
    disbursement_date: Optional[date] = None
    notes: Optional[str] = None


class LoanDefault(BaseModel):
    reason: Optional[str] = None


class GuarantorResponse(BaseModel):
    approve: bool
    reason: Optional[str] = None


class LoanResponse(BaseModel):
    id: int
    cooperative_id: int
    member_id: int
    loan_type_id: Optional[int] = None
    amount: float
    purpose: str
    duration: int
    interest_rate: float
    interest_amount: float
    monthly_repayment: float
    total_repayment: float
    amount_repaid: float
    outstanding_balance: float
    status: LoanStatus
    initiated_by: InitiatorKind
    initiated_by_user_id: Optional[int] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    application_fee: float
    interest_deducted_upfront: float
    net_disbursement_amount: Optional[float] = None
    amount_disbursed: Optional[float] = None
    deduction_start_date: Optional[date] = None
    requested_at: datetime
    disbursed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    defaulted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LoanGuarantorResponse(BaseModel):
    id: int
    loan_id: int
    guarantor_member_id: int
    status: GuarantorStatus
    responded_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class GuarantorRespondResult(BaseModel):
    guarantor: LoanGuarantorResponse
    ready_for_review: bool


class LoanApprovalResponse(BaseModel):
    id: int
    loan_id: int
    approver_id: int
    decision: ApprovalDecision
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ApprovalResult(BaseModel):
    loan: LoanResponse
    approvals_recorded: int
    approvals_required: int
    fully_approved: bool


class ScheduleResponse(BaseModel):
    id: int
    loan_id: int
    installment_number: int
    due_date: date
    principal_amount: float
    interest_amount: float
    total_amount: float
    paid_amount: float
    status: ScheduleStatus
    paid_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DisbursementResult(BaseModel):
    loan: LoanResponse
    schedule: List[ScheduleResponse]


# ============ Repayment Schemas ============

class RecordRepaymentRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    payment_method: Optional[str] = Field(default=None, max_length=50)
    payment_date: Optional[date] = None
    receipt_number: Optional[str] = Field(default=None, max_length=100)
    payment_reference: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = None


class RejectRepaymentRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class RepaymentResponse(BaseModel):
    id: int
    loan_id: int
    amount: float
    payment_method: Optional[str] = None
    payment_date: Optional[date] = None
    receipt_number: Optional[str] = None
    payment_reference: Optional[str] = None
    notes: Optional[str] = None
    status: RepaymentStatus
    submitted_by: int
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AllocationResponse(BaseModel):
    installment_number: int
    amount_applied: float
    status: ScheduleStatus

    class Config:
        from_attributes = True


class RepaymentResult(BaseModel):
    repayment: RepaymentResponse
    loan: LoanResponse
    allocations: List[AllocationResponse] = []
    pending_confirmation: bool


# ============ Reconciliation ============

class ReconciliationCheck(BaseModel):
    name: str
    expected: float
    actual: float
    passed: bool


class ReconciliationReport(BaseModel):
    loan_id: int
    status: LoanStatus
    checks: List[ReconciliationCheck]
    is_consistent: bool
