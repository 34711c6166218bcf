"""
Unit tests for loan pricing and schedule generation
"""
import pytest
from decimal import Decimal
from datetime import date

from coopfund.modules.loans.calculator import (
    LoanPolicy, calculate_loan_details, ceil_amount, format_money
)
from coopfund.modules.loans.models import InterestMode
from coopfund.modules.loans.schedule import generate_repayment_schedule


def _schedule_for(principal, rate, duration, mode=InterestMode.FLAT, upfront=False, start=date(2026, 1, 15)):
    terms = calculate_loan_details(principal, rate, duration, mode, upfront)
    rows = generate_repayment_schedule(
        principal=principal,
        interest_amount=terms.interest_amount,
        monthly_repayment=terms.monthly_repayment,
        total_repayment=terms.total_repayment,
        duration=duration,
        annual_rate=rate,
        interest_mode=mode,
        start_date=start,
        interest_withheld=upfront
    )
    return terms, rows


class TestInterestCalculator:
    """Tests for flat and reducing balance pricing"""

    @pytest.mark.unit
    def test_flat_interest(self):
        terms = calculate_loan_details(Decimal("100000"), Decimal("10"), 10)

        assert terms.interest_amount == Decimal("10000")
        assert terms.total_repayment == Decimal("110000")
        assert terms.monthly_repayment == Decimal("11000")

    @pytest.mark.unit
    def test_flat_interest_rounds_up(self):
        terms = calculate_loan_details(Decimal("10000"), Decimal("7"), 3)

        assert terms.interest_amount == Decimal("700")
        assert terms.total_repayment == Decimal("10700")
        # 10700 / 3 = 3566.67
        assert terms.monthly_repayment == Decimal("3567")

    @pytest.mark.unit
    def test_reducing_balance_emi(self):
        """12,000 at 12% p.a. over 12 months is an EMI of about 1,066.19"""
        terms = calculate_loan_details(Decimal("12000"), Decimal("12"), 12, InterestMode.REDUCING_BALANCE)

        assert terms.monthly_repayment == Decimal("1067")
        assert terms.total_repayment == Decimal("12804")
        assert terms.interest_amount == Decimal("804")

    @pytest.mark.unit
    def test_reducing_balance_zero_rate(self):
        terms = calculate_loan_details(Decimal("1200"), Decimal("0"), 12, InterestMode.REDUCING_BALANCE)

        assert terms.interest_amount == Decimal("0")
        assert terms.total_repayment == Decimal("1200")
        assert terms.monthly_repayment == Decimal("100")

    @pytest.mark.unit
    def test_upfront_deduction_repays_principal_only(self):
        terms = calculate_loan_details(Decimal("50000"), Decimal("10"), 5, InterestMode.FLAT, True)

        assert terms.interest_amount == Decimal("5000")
        assert terms.total_repayment == Decimal("50000")
        assert terms.monthly_repayment == Decimal("10000")

    @pytest.mark.unit
    @pytest.mark.parametrize("principal,rate,duration", [
        (Decimal("0"), Decimal("10"), 12),
        (Decimal("1000"), Decimal("-1"), 12),
        (Decimal("1000"), Decimal("10"), 0),
    ])
    def test_rejects_invalid_input(self, principal, rate, duration):
        with pytest.raises(ValueError):
            calculate_loan_details(principal, rate, duration)

    @pytest.mark.unit
    def test_ceil_amount(self):
        assert ceil_amount(Decimal("10.01")) == Decimal("11")
        assert ceil_amount(Decimal("10")) == Decimal("10")

    @pytest.mark.unit
    def test_format_money(self):
        assert format_money(Decimal("44000")).endswith("44,000.00")


class TestLoanPolicy:

    @pytest.mark.unit
    def test_defaults_without_loan_type(self):
        policy = LoanPolicy.from_loan_type(None)

        assert policy.interest_mode == InterestMode.FLAT
        assert policy.required_approvals == 1
        assert policy.required_guarantors == 0

    @pytest.mark.unit
    def test_quorums(self):
        policy = LoanPolicy(
            requires_guarantor=True, min_guarantors=2,
            requires_multiple_approvals=True, min_approvers=3
        )

        assert policy.required_guarantors == 2
        assert policy.required_approvals == 3

    @pytest.mark.unit
    def test_single_approval_ignores_min_approvers(self):
        assert LoanPolicy(requires_multiple_approvals=False, min_approvers=4).required_approvals == 1


class TestScheduleGenerator:
    """Tests for repayment schedule generation"""

    @pytest.mark.unit
    def test_flat_schedule(self):
        terms, rows = _schedule_for(Decimal("100000"), Decimal("10"), 10)

        assert len(rows) == 10
        assert all(r.total_amount == Decimal("11000") for r in rows)
        assert sum(r.total_amount for r in rows) == terms.total_repayment

    @pytest.mark.unit
    def test_due_dates_are_monthly_from_start(self):
        _, rows = _schedule_for(Decimal("3000"), Decimal("0"), 3, start=date(2026, 1, 31))

        assert [r.installment_number for r in rows] == [1, 2, 3]
        assert rows[0].due_date == date(2026, 2, 28)
        assert rows[1].due_date == date(2026, 3, 31)
        assert rows[2].due_date == date(2026, 4, 30)

    @pytest.mark.unit
    def test_last_row_absorbs_rounding(self):
        terms, rows = _schedule_for(Decimal("10000"), Decimal("7"), 3)

        assert sum(r.total_amount for r in rows) == terms.total_repayment == Decimal("10700")
        assert rows[0].total_amount == Decimal("3568")
        assert rows[-1].total_amount == Decimal("3564")

    @pytest.mark.unit
    def test_reducing_balance_schedule_sums_to_total(self):
        terms, rows = _schedule_for(Decimal("12000"), Decimal("12"), 12, InterestMode.REDUCING_BALANCE)

        assert sum(r.total_amount for r in rows) == terms.total_repayment
        # Interest share shrinks as principal is paid down
        assert rows[0].interest_amount > rows[-2].interest_amount
        assert all(r.principal_amount >= 0 and r.interest_amount >= 0 for r in rows)

    @pytest.mark.unit
    def test_upfront_interest_rows_carry_no_interest(self):
        terms, rows = _schedule_for(Decimal("50000"), Decimal("10"), 5, upfront=True)

        assert all(r.interest_amount == Decimal("0") for r in rows)
        assert sum(r.total_amount for r in rows) == Decimal("50000") == terms.total_repayment

    @pytest.mark.unit
    def test_tiny_principal_never_goes_negative(self):
        terms, rows = _schedule_for(Decimal("2"), Decimal("0"), 4)

        assert sum(r.total_amount for r in rows) == Decimal("2")
        assert all(r.principal_amount >= 0 for r in rows)
