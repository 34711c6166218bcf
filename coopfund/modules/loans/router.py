from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from coopfund.core.database import get_db
from coopfund.core.dependencies import get_current_user_id
from coopfund.modules.loans import schemas
from coopfund.modules.loans.approvals import ApprovalService
from coopfund.modules.loans.disbursement import DisbursementService
from coopfund.modules.loans.guarantors import GuarantorService
from coopfund.modules.loans.models import LoanStatus, RepaymentStatus
from coopfund.modules.loans.repayments import RepaymentService, RepaymentResult
from coopfund.modules.loans.services import LoanService, LoanTypeService

router = APIRouter(prefix="/api/v1", tags=["loans"])


def _repayment_result(result: RepaymentResult) -> schemas.RepaymentResult:
    return schemas.RepaymentResult(
        repayment=schemas.RepaymentResponse.model_validate(result.repayment),
        loan=schemas.LoanResponse.model_validate(result.loan),
        allocations=[schemas.AllocationResponse.model_validate(a) for a in result.allocations],
        pending_confirmation=result.is_pending
    )


# ============ Loan Types ============

@router.get("/cooperatives/{cooperative_id}/loan-types", response_model=List[schemas.LoanTypeResponse])
async def list_loan_types(
    cooperative_id: int,
    active_only: bool = Query(False, description="Only return active loan types"),
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """List the cooperative's loan types with the number of loans using each"""
    return await LoanTypeService.list_loan_types(db, cooperative_id, user_id, active_only)


@router.post(
    "/cooperatives/{cooperative_id}/loan-types",
    response_model=schemas.LoanTypeResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_loan_type(
    cooperative_id: int,
    data: schemas.LoanTypeCreate,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Create a loan type.

    - Requires loans:configure
    - Name must be unique within the cooperative
    """
    return await LoanTypeService.create_loan_type(db, cooperative_id, user_id, data)


@router.get("/cooperatives/{cooperative_id}/loan-types/{loan_type_id}", response_model=schemas.LoanTypeResponse)
async def get_loan_type(
    cooperative_id: int,
    loan_type_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    return await LoanTypeService.get_loan_type(db, cooperative_id, loan_type_id, user_id)


@router.patch("/cooperatives/{cooperative_id}/loan-types/{loan_type_id}", response_model=schemas.LoanTypeResponse)
async def update_loan_type(
    cooperative_id: int,
    loan_type_id: int,
    data: schemas.LoanTypeUpdate,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    return await LoanTypeService.update_loan_type(db, cooperative_id, loan_type_id, user_id, data)


@router.delete("/cooperatives/{cooperative_id}/loan-types/{loan_type_id}", status_code=status.HTTP_200_OK)
async def delete_loan_type(
    cooperative_id: int,
    loan_type_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """Delete an unused loan type (types with loans must be deactivated instead)"""
    await LoanTypeService.delete_loan_type(db, cooperative_id, loan_type_id, user_id)
    return {"message": "Loan type deleted successfully"}


# ============ Loan Requests ============

@router.post(
    "/cooperatives/{cooperative_id}/loans",
    response_model=schemas.LoanResponse,
    status_code=status.HTTP_201_CREATED
)
async def request_loan(
    cooperative_id: int,
    data: schemas.LoanRequest,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Request a loan.

    - Checks the loan type's bounds and active loan limit
    - Guarantors are asked to respond before approvers can approve
    """
    return await LoanService.request_loan(db, cooperative_id, user_id, data)


@router.post(
    "/cooperatives/{cooperative_id}/loans/initiate",
    response_model=schemas.LoanResponse,
    status_code=status.HTTP_201_CREATED
)
async def initiate_loan(
    cooperative_id: int,
    data: schemas.LoanInitiate,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """Create an approved loan on a member's behalf (requires loans:approve)"""
    return await LoanService.initiate_loan_for_member(db, cooperative_id, user_id, data)


@router.get("/cooperatives/{cooperative_id}/loans", response_model=List[schemas.LoanResponse])
async def list_loans(
    cooperative_id: int,
    loan_status: Optional[LoanStatus] = Query(None, alias="status", description="Filter by status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    return await LoanService.list_loans(db, cooperative_id, user_id, loan_status, skip, limit)


@router.get("/cooperatives/{cooperative_id}/loans/pending", response_model=List[schemas.LoanResponse])
async def get_pending_loans(
    cooperative_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    return await LoanService.get_pending_loans(db, cooperative_id, user_id)


@router.get("/cooperatives/{cooperative_id}/loans/mine", response_model=List[schemas.LoanResponse])
async def get_my_loans(
    cooperative_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    return await LoanService.get_my_loans(db, cooperative_id, user_id)


@router.get("/cooperatives/{cooperative_id}/guarantor-requests", response_model=List[schemas.LoanResponse])
async def get_guarantor_requests(
    cooperative_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """Pending loans waiting on the caller's guarantee"""
    return await LoanService.get_guarantor_requests(db, cooperative_id, user_id)


@router.get("/cooperatives/{cooperative_id}/repayments/pending", response_model=List[schemas.RepaymentResponse])
async def get_pending_repayments(
    cooperative_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    return await RepaymentService.pending_for_cooperative(db, cooperative_id, user_id)


# ============ Loan Lifecycle ============

@router.get("/loans/{loan_id}", response_model=schemas.LoanResponse)
async def get_loan(
    loan_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    return await LoanService.get_loan(db, loan_id, user_id)


@router.post("/loans/{loan_id}/approve", response_model=schemas.ApprovalResult)
async def approve_loan(
    loan_id: int,
    data: schemas.LoanApprove,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Record an approval.

    - Single-approver loans are approved immediately
    - Multi-approver loans stay pending until enough distinct approvers sign off
    """
    loan, outcome = await ApprovalService.approve(db, loan_id, user_id, data.deduction_start_date, data.notes)
    return schemas.ApprovalResult(
        loan=schemas.LoanResponse.model_validate(loan),
        approvals_recorded=outcome.approvals_recorded,
        approvals_required=outcome.approvals_required,
        fully_approved=outcome.quorum_reached
    )


@router.post("/loans/{loan_id}/reject", response_model=schemas.LoanResponse)
async def reject_loan(
    loan_id: int,
    data: schemas.LoanReject,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    return await ApprovalService.reject(db, loan_id, user_id, data.reason)


@router.post("/loans/{loan_id}/disburse", response_model=schemas.DisbursementResult)
async def disburse_loan(
    loan_id: int,
    data: schemas.LoanDisburse,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """Disburse an approved loan and generate its repayment schedule"""
    loan, schedules = await DisbursementService.disburse(db, loan_id, user_id, data.disbursement_date, data.notes)
    return schemas.DisbursementResult(
        loan=schemas.LoanResponse.model_validate(loan),
        schedule=[schemas.ScheduleResponse.model_validate(s) for s in schedules]
    )


@router.post("/loans/{loan_id}/default", response_model=schemas.LoanResponse)
async def mark_loan_defaulted(
    loan_id: int,
    data: schemas.LoanDefault,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    return await LoanService.mark_defaulted(db, loan_id, user_id, data.reason)


@router.get("/loans/{loan_id}/guarantors", response_model=List[schemas.LoanGuarantorResponse])
async def get_guarantors(
    loan_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    return await LoanService.get_guarantors(db, loan_id, user_id)


@router.post("/loans/{loan_id}/guarantors/respond", response_model=schemas.GuarantorRespondResult)
async def respond_as_guarantor(
    loan_id: int,
    data: schemas.GuarantorResponse,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """Approve or decline guaranteeing a loan; a decline needs a reason"""
    guarantor, ready = await GuarantorService.respond(db, loan_id, user_id, data.approve, data.reason)
    return schemas.GuarantorRespondResult(
        guarantor=schemas.LoanGuarantorResponse.model_validate(guarantor),
        ready_for_review=ready
    )


@router.get("/loans/{loan_id}/approvals", response_model=List[schemas.LoanApprovalResponse])
async def get_approvals(
    loan_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    return await LoanService.get_approvals(db, loan_id, user_id)


@router.get("/loans/{loan_id}/schedule", response_model=List[schemas.ScheduleResponse])
async def get_repayment_schedule(
    loan_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    return await LoanService.get_repayment_schedule(db, loan_id, user_id)


@router.get("/loans/{loan_id}/reconciliation", response_model=schemas.ReconciliationReport)
async def reconcile_loan(
    loan_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """Check the loan's totals against its schedule and ledger entries"""
    return await LoanService.reconcile_loan(db, loan_id, user_id)


# ============ Repayments ============

@router.post(
    "/loans/{loan_id}/repayments",
    response_model=schemas.RepaymentResult,
    status_code=status.HTTP_201_CREATED
)
async def record_repayment(
    loan_id: int,
    data: schemas.RecordRepaymentRequest,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Record a repayment.

    - Approvers record it directly against the schedule
    - Borrowers submit it for confirmation
    - The same amount cannot be submitted twice within a short window
    """
    result = await RepaymentService.record_repayment(db, loan_id, user_id, data)
    return _repayment_result(result)


@router.get("/loans/{loan_id}/repayments", response_model=List[schemas.RepaymentResponse])
async def list_repayments(
    loan_id: int,
    repayment_status: Optional[RepaymentStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    return await RepaymentService.list_repayments(db, loan_id, user_id, repayment_status)


@router.post("/repayments/{repayment_id}/confirm", response_model=schemas.RepaymentResult)
async def confirm_repayment(
    repayment_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    result = await RepaymentService.confirm_repayment(db, repayment_id, user_id)
    return _repayment_result(result)


@router.post("/repayments/{repayment_id}/reject", response_model=schemas.RepaymentResponse)
async def reject_repayment(
    repayment_id: int,
    data: schemas.RejectRepaymentRequest,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    return await RepaymentService.reject_repayment(db, repayment_id, user_id, data.reason)
