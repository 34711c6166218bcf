"""Amortization schedule generation for disbursed loans."""
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import List, Union

from dateutil.relativedelta import relativedelta

from coopfund.modules.loans.calculator import Number, ZERO, ceil_amount, monthly_rate, to_decimal
from coopfund.modules.loans.models import InterestMode


@dataclass(frozen=True)
class ScheduledInstallment:
    installment_number: int
    due_date: date
    principal_amount: Decimal
    interest_amount: Decimal

    @property
    def total_amount(self) -> Decimal:
        return self.principal_amount + self.interest_amount


def generate_repayment_schedule(
    principal: Number,
    interest_amount: Number,
    monthly_repayment: Number,
    total_repayment: Number,
    duration: int,
    annual_rate: Number,
    interest_mode: InterestMode,
    start_date: Union[date, datetime],
    interest_withheld: bool = False
) -> List[ScheduledInstallment]:
    """
    Split a loan's fixed totals into monthly installments.

    Installment i falls due i months after start_date. The last row absorbs
    rounding drift so the schedule always sums to total_repayment exactly;
    earlier rows are capped so no row ever goes negative. When interest was
    withheld at disbursement the rows carry principal only.
    """
    if duration < 1:
        raise ValueError("Duration must be at least one month")
    if isinstance(start_date, datetime):
        start_date = start_date.date()

    principal = to_decimal(principal)
    interest_amount = to_decimal(interest_amount)
    monthly_repayment = to_decimal(monthly_repayment)
    total_repayment = to_decimal(total_repayment)
    rate = monthly_rate(annual_rate)
    amortized = (
        not interest_withheld
        and InterestMode(interest_mode) == InterestMode.REDUCING_BALANCE
        and rate > 0
    )

    even_principal = ceil_amount(principal / duration)
    even_interest = ZERO if interest_withheld else ceil_amount(interest_amount / duration)

    installments: List[ScheduledInstallment] = []
    remaining_principal = principal
    remaining_total = total_repayment

    for i in range(1, duration + 1):
        if amortized:
            interest_i = max(ZERO, ceil_amount(remaining_principal * rate))
            principal_i = monthly_repayment - interest_i
            remaining_principal -= principal_i
        else:
            principal_i = even_principal
            interest_i = even_interest

        if i == duration:
            interest_i = min(max(ZERO, interest_i), max(ZERO, remaining_total))
            principal_i = max(ZERO, remaining_total - interest_i)
        else:
            principal_i = max(ZERO, principal_i)
            interest_i = max(ZERO, interest_i)
            overflow = principal_i + interest_i - remaining_total
            if overflow > 0:
                cut = min(principal_i, overflow)
                principal_i -= cut
                interest_i -= overflow - cut

        installment = ScheduledInstallment(
            installment_number=i,
            due_date=start_date + relativedelta(months=i),
            principal_amount=principal_i,
            interest_amount=interest_i,
        )
        remaining_total -= installment.total_amount
        installments.append(installment)

    return installments
