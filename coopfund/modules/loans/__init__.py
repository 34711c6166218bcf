# Loans module
from coopfund.modules.loans.models import (
    LoanType, Loan, LoanGuarantor, LoanApproval, LoanRepaymentSchedule, LoanRepayment,
    LoanStatus, InterestMode
)
from coopfund.modules.loans.router import router

__all__ = [
    "LoanType", "Loan", "LoanGuarantor", "LoanApproval", "LoanRepaymentSchedule", "LoanRepayment",
    "LoanStatus", "InterestMode", "router"
]
