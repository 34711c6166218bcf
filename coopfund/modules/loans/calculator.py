"""
Loan pricing.

Pure functions: principal, annual rate, duration and the loan type's policy
in, interest / installment / total out. Every money roundup is a ceiling so
the cooperative never under-collects.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING
from typing import Optional, Union

from coopfund.core.config import settings
from coopfund.modules.loans.models import InterestMode, LoanType

Number = Union[Decimal, int, str]

ZERO = Decimal("0")


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def ceil_amount(value: Decimal) -> Decimal:
    """Round up to the whole base-currency unit"""
    return to_decimal(value).to_integral_value(rounding=ROUND_CEILING)


@dataclass(frozen=True)
class LoanPolicy:
    """Immutable snapshot of the loan-type flags the engine acts on"""
    interest_mode: InterestMode = InterestMode.FLAT
    deduct_interest_upfront: bool = False
    application_fee: Decimal = ZERO
    requires_guarantor: bool = False
    min_guarantors: int = 0
    requires_multiple_approvals: bool = False
    min_approvers: int = 1

    @classmethod
    def from_loan_type(cls, loan_type: Optional[LoanType]) -> "LoanPolicy":
        if loan_type is None:
            return cls()
        return cls(
            interest_mode=InterestMode(loan_type.interest_mode),
            deduct_interest_upfront=bool(loan_type.deduct_interest_upfront),
            application_fee=to_decimal(loan_type.application_fee or 0),
            requires_guarantor=bool(loan_type.requires_guarantor),
            min_guarantors=loan_type.min_guarantors or 0,
            requires_multiple_approvals=bool(loan_type.requires_multiple_approvals),
            min_approvers=loan_type.min_approvers or 1,
        )

    @property
    def required_approvals(self) -> int:
        if self.requires_multiple_approvals:
            return max(1, self.min_approvers)
        return 1

    @property
    def required_guarantors(self) -> int:
        if self.requires_guarantor:
            return max(1, self.min_guarantors)
        return 0


@dataclass(frozen=True)
class LoanTerms:
    interest_amount: Decimal
    monthly_repayment: Decimal
    total_repayment: Decimal


def monthly_rate(annual_rate: Number) -> Decimal:
    return to_decimal(annual_rate) / Decimal(100) / Decimal(12)


def calculate_loan_details(
    principal: Number,
    annual_rate: Number,
    duration: int,
    interest_mode: InterestMode = InterestMode.FLAT,
    deduct_interest_upfront: bool = False
) -> LoanTerms:
    """
    Price a loan.

    flat: interest = ceil(principal * rate / 100), spread evenly.
    reducing_balance: standard annuity (EMI) on the monthly rate; a zero
    rate degrades to an interest-free even split.
    With upfront deduction the member only repays principal, the interest
    having been withheld at disbursement.
    """
    principal = to_decimal(principal)
    annual_rate = to_decimal(annual_rate)
    if principal <= 0:
        raise ValueError("Principal must be greater than zero")
    if annual_rate < 0:
        raise ValueError("Interest rate cannot be negative")
    if duration < 1:
        raise ValueError("Duration must be at least one month")

    if InterestMode(interest_mode) == InterestMode.REDUCING_BALANCE:
        rate = monthly_rate(annual_rate)
        if rate == 0:
            monthly_repayment = ceil_amount(principal / duration)
            interest_amount = ZERO
            total_repayment = principal
        else:
            growth = (1 + rate) ** duration
            monthly_repayment = ceil_amount(principal * rate * growth / (growth - 1))
            total_repayment = monthly_repayment * duration
            interest_amount = total_repayment - principal
    else:
        interest_amount = ceil_amount(principal * annual_rate / 100)
        total_repayment = principal + interest_amount
        monthly_repayment = ceil_amount(total_repayment / duration)

    if deduct_interest_upfront:
        total_repayment = principal
        monthly_repayment = ceil_amount(principal / duration)

    return LoanTerms(
        interest_amount=interest_amount,
        monthly_repayment=monthly_repayment,
        total_repayment=total_repayment,
    )


def price_for_policy(principal: Number, annual_rate: Number, duration: int, policy: LoanPolicy) -> LoanTerms:
    return calculate_loan_details(
        principal, annual_rate, duration, policy.interest_mode, policy.deduct_interest_upfront
    )


def format_money(amount: Number) -> str:
    """Human-readable amount in the cooperative's base currency"""
    return f"{settings.CURRENCY_SYMBOL}{to_decimal(amount):,.2f}"
