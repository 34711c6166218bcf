"""
Repayment allocation, duplicate guard and review tests
"""
import pytest
from decimal import Decimal
from datetime import date, datetime, timedelta

from sqlalchemy import select

from coopfund.core.exceptions import ConflictError, ForbiddenError, InvalidTransitionError, ValidationError
from coopfund.modules.ledger.models import LedgerEntry, LedgerEntryType
from coopfund.modules.loans import repository
from coopfund.modules.loans.models import (
    LoanRepaymentSchedule, LoanStatus, RepaymentStatus, ScheduleStatus
)
from coopfund.modules.loans.repayments import RepaymentService, allocate_payment
from coopfund.modules.loans.schemas import LoanRequest, RecordRepaymentRequest
from coopfund.modules.loans.services import LoanService
from coopfund.modules.notifications.models import Notification, NotificationType


def _installment(number, total, paid="0", status=ScheduleStatus.PENDING):
    return LoanRepaymentSchedule(
        installment_number=number,
        due_date=date(2026, number + 1, 1),
        principal_amount=Decimal(total),
        interest_amount=Decimal("0"),
        total_amount=Decimal(total),
        paid_amount=Decimal(paid),
        status=status
    )


async def _ledger_entries(db, loan_id):
    result = await db.execute(
        select(LedgerEntry).where(LedgerEntry.reference_id == loan_id).order_by(LedgerEntry.id)
    )
    return list(result.scalars().all())


def _payment(amount, **extra):
    return RecordRepaymentRequest(amount=Decimal(amount), **extra)


class TestAllocatePayment:
    """Oldest-installment-first allocation"""

    @pytest.mark.unit
    def test_partial_spill_into_next_installment(self):
        rows = [_installment(1, "3000"), _installment(2, "4000")]

        allocations, unallocated = allocate_payment(rows, Decimal("5000"))

        assert rows[0].status == ScheduleStatus.PAID
        assert rows[0].paid_amount == Decimal("3000")
        assert rows[0].paid_at is not None
        assert rows[1].status == ScheduleStatus.PARTIAL
        assert rows[1].paid_amount == Decimal("2000")
        assert rows[1].paid_at is None
        assert [(a.installment_number, a.amount_applied) for a in allocations] == [
            (1, Decimal("3000")), (2, Decimal("2000"))
        ]
        assert unallocated == Decimal("0")

    @pytest.mark.unit
    def test_skips_paid_and_tops_up_partial(self):
        rows = [
            _installment(2, "4000", paid="2000", status=ScheduleStatus.PARTIAL),
            _installment(1, "3000", paid="3000", status=ScheduleStatus.PAID),
        ]

        allocations, _ = allocate_payment(rows, Decimal("1500"))

        assert [(a.installment_number, a.amount_applied) for a in allocations] == [(2, Decimal("1500"))]
        assert rows[0].paid_amount == Decimal("3500")
        assert rows[0].status == ScheduleStatus.PARTIAL

    @pytest.mark.unit
    def test_reports_leftover(self):
        rows = [_installment(1, "3000"), _installment(2, "4000")]

        _, unallocated = allocate_payment(rows, Decimal("8000"))

        assert all(r.status == ScheduleStatus.PAID for r in rows)
        assert unallocated == Decimal("1000")


class TestRecordRepayment:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_direct_recording(self, db_session, admin, borrower, disbursed_loan):
        result = await RepaymentService.record_repayment(
            db_session, disbursed_loan.id, admin.user_id, _payment("5000", payment_method="bank_transfer")
        )

        assert not result.is_pending
        assert result.repayment.status == RepaymentStatus.CONFIRMED
        assert result.repayment.reviewed_by == admin.user_id

        loan = result.loan
        assert loan.status == LoanStatus.REPAYING
        assert loan.amount_repaid == Decimal("5000")
        assert loan.outstanding_balance == Decimal("2000")

        schedules = await repository.get_schedules(db_session, loan.id)
        assert [(s.status, s.paid_amount) for s in schedules] == [
            (ScheduleStatus.PAID, Decimal("3000")), (ScheduleStatus.PARTIAL, Decimal("2000"))
        ]

        entries = await _ledger_entries(db_session, loan.id)
        assert len(entries) == 1
        assert entries[0].type == LedgerEntryType.LOAN_REPAYMENT
        assert entries[0].amount == Decimal("5000")
        assert entries[0].member_id == borrower.id

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_final_payment_completes_loan(self, db_session, admin, borrower, disbursed_loan):
        await RepaymentService.record_repayment(db_session, disbursed_loan.id, admin.user_id, _payment("5000"))
        result = await RepaymentService.record_repayment(
            db_session, disbursed_loan.id, admin.user_id, _payment("2000")
        )

        assert result.loan.status == LoanStatus.COMPLETED
        assert result.loan.outstanding_balance == Decimal("0")
        assert result.loan.completed_at is not None

        notifications = await db_session.execute(
            select(Notification).where(
                Notification.user_id == borrower.user_id, Notification.type == NotificationType.LOAN_COMPLETED
            )
        )
        assert len(list(notifications.scalars().all())) == 1

        with pytest.raises(InvalidTransitionError):
            await RepaymentService.record_repayment(db_session, disbursed_loan.id, admin.user_id, _payment("100"))

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_overpayment_rejected(self, db_session, admin, disbursed_loan):
        with pytest.raises(ValidationError) as exc:
            await RepaymentService.record_repayment(db_session, disbursed_loan.id, admin.user_id, _payment("8000"))

        assert exc.value.kind == "Overpayment"
        assert await _ledger_entries(db_session, disbursed_loan.id) == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_duplicate_direct_recording(self, db_session, admin, disbursed_loan):
        await RepaymentService.record_repayment(db_session, disbursed_loan.id, admin.user_id, _payment("3000"))

        with pytest.raises(ConflictError) as exc:
            await RepaymentService.record_repayment(db_session, disbursed_loan.id, admin.user_id, _payment("3000"))
        assert exc.value.kind == "DuplicateSubmission"

        # A different amount is not a duplicate
        await RepaymentService.record_repayment(db_session, disbursed_loan.id, admin.user_id, _payment("1000"))
        assert len(await _ledger_entries(db_session, disbursed_loan.id)) == 2

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_loan_not_yet_disbursed(self, db_session, cooperative, admin, borrower):
        loan = await LoanService.request_loan(
            db_session, cooperative.id, borrower.user_id,
            LoanRequest(amount=Decimal("5000"), purpose="Tools", duration=2)
        )

        with pytest.raises(InvalidTransitionError):
            await RepaymentService.record_repayment(db_session, loan.id, admin.user_id, _payment("1000"))

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_other_members_cannot_record(self, db_session, guarantor, disbursed_loan):
        with pytest.raises(ForbiddenError):
            await RepaymentService.record_repayment(db_session, disbursed_loan.id, guarantor.user_id, _payment("1000"))


class TestSelfReportedRepayment:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_submission_moves_no_money(self, db_session, admin, borrower, disbursed_loan):
        result = await RepaymentService.record_repayment(
            db_session, disbursed_loan.id, borrower.user_id, _payment("5000", receipt_number="RCPT-001")
        )

        assert result.is_pending
        assert result.repayment.submitted_by == borrower.user_id
        assert result.loan.amount_repaid == Decimal("0")
        assert result.loan.status == LoanStatus.DISBURSED
        assert await _ledger_entries(db_session, disbursed_loan.id) == []
        schedules = await repository.get_schedules(db_session, disbursed_loan.id)
        assert all(s.status == ScheduleStatus.PENDING for s in schedules)

        notifications = await db_session.execute(
            select(Notification).where(
                Notification.user_id == admin.user_id, Notification.type == NotificationType.REPAYMENT_SUBMITTED
            )
        )
        assert len(list(notifications.scalars().all())) == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_duplicate_submission_window(self, db_session, borrower, disbursed_loan):
        first = await RepaymentService.record_repayment(
            db_session, disbursed_loan.id, borrower.user_id, _payment("5000")
        )

        with pytest.raises(ConflictError) as exc:
            await RepaymentService.record_repayment(db_session, disbursed_loan.id, borrower.user_id, _payment("5000"))
        assert exc.value.kind == "DuplicateSubmission"

        # Outside the window the same amount is accepted again
        first.repayment.created_at = datetime.utcnow() - timedelta(minutes=10)
        await db_session.commit()

        second = await RepaymentService.record_repayment(
            db_session, disbursed_loan.id, borrower.user_id, _payment("5000")
        )
        assert second.is_pending
        assert second.repayment.id != first.repayment.id

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_confirm_allocates_once(self, db_session, admin, borrower, disbursed_loan):
        submitted = await RepaymentService.record_repayment(
            db_session, disbursed_loan.id, borrower.user_id, _payment("5000")
        )

        pending = await RepaymentService.pending_for_cooperative(db_session, disbursed_loan.cooperative_id, admin.user_id)
        assert [r.id for r in pending] == [submitted.repayment.id]

        confirmed = await RepaymentService.confirm_repayment(db_session, submitted.repayment.id, admin.user_id)

        assert confirmed.repayment.status == RepaymentStatus.CONFIRMED
        assert confirmed.loan.amount_repaid == Decimal("5000")
        assert confirmed.loan.outstanding_balance == Decimal("2000")
        assert [(a.installment_number, a.amount_applied) for a in confirmed.allocations] == [
            (1, Decimal("3000")), (2, Decimal("2000"))
        ]
        assert len(await _ledger_entries(db_session, disbursed_loan.id)) == 1

        with pytest.raises(ConflictError) as exc:
            await RepaymentService.confirm_repayment(db_session, submitted.repayment.id, admin.user_id)
        assert exc.value.kind == "AlreadyReviewed"
        assert len(await _ledger_entries(db_session, disbursed_loan.id)) == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_borrower_cannot_confirm(self, db_session, borrower, disbursed_loan):
        submitted = await RepaymentService.record_repayment(
            db_session, disbursed_loan.id, borrower.user_id, _payment("1000")
        )

        with pytest.raises(ForbiddenError):
            await RepaymentService.confirm_repayment(db_session, submitted.repayment.id, borrower.user_id)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_reject(self, db_session, admin, borrower, disbursed_loan):
        submitted = await RepaymentService.record_repayment(
            db_session, disbursed_loan.id, borrower.user_id, _payment("1000")
        )

        with pytest.raises(ValidationError):
            await RepaymentService.reject_repayment(db_session, submitted.repayment.id, admin.user_id, "")

        rejected = await RepaymentService.reject_repayment(
            db_session, submitted.repayment.id, admin.user_id, "No matching bank credit"
        )
        assert rejected.status == RepaymentStatus.REJECTED
        assert rejected.rejection_reason == "No matching bank credit"

        with pytest.raises(ConflictError) as exc:
            await RepaymentService.confirm_repayment(db_session, submitted.repayment.id, admin.user_id)
        assert exc.value.kind == "AlreadyReviewed"

        loan = await repository.get_loan(db_session, disbursed_loan.id)
        assert loan.amount_repaid == Decimal("0")

        # A rejected submission no longer blocks resubmitting the same amount
        again = await RepaymentService.record_repayment(
            db_session, disbursed_loan.id, borrower.user_id, _payment("1000")
        )
        assert again.is_pending

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_repayments(self, db_session, admin, borrower, guarantor, disbursed_loan):
        await RepaymentService.record_repayment(db_session, disbursed_loan.id, borrower.user_id, _payment("1000"))
        await RepaymentService.record_repayment(db_session, disbursed_loan.id, admin.user_id, _payment("2000"))

        everything = await RepaymentService.list_repayments(db_session, disbursed_loan.id, borrower.user_id)
        assert len(everything) == 2

        pending = await RepaymentService.list_repayments(
            db_session, disbursed_loan.id, admin.user_id, RepaymentStatus.PENDING
        )
        assert [r.amount for r in pending] == [Decimal("1000")]

        with pytest.raises(ForbiddenError):
            await RepaymentService.list_repayments(db_session, disbursed_loan.id, guarantor.user_id)


class TestRepaymentWithNotificationFailures:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_money_still_moves(self, db_session, admin, borrower, disbursed_loan, failing_notifications):
        direct = await RepaymentService.record_repayment(
            db_session, disbursed_loan.id, admin.user_id, _payment("3000")
        )
        assert direct.loan.status == LoanStatus.REPAYING
        assert direct.loan.outstanding_balance == Decimal("4000")

        submitted = await RepaymentService.record_repayment(
            db_session, disbursed_loan.id, borrower.user_id, _payment("4000")
        )
        assert submitted.is_pending

        confirmed = await RepaymentService.confirm_repayment(db_session, submitted.repayment.id, admin.user_id)
        assert confirmed.loan.status == LoanStatus.COMPLETED
        assert confirmed.loan.outstanding_balance == Decimal("0")

        entries = await _ledger_entries(db_session, disbursed_loan.id)
        assert [e.amount for e in entries] == [Decimal("3000"), Decimal("4000")]
        notifications = await db_session.execute(select(Notification))
        assert list(notifications.scalars().all()) == []
