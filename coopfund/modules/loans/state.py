"""Loan status transitions."""
from typing import Dict, FrozenSet
import logging

from coopfund.core.exceptions import InvalidTransitionError
from coopfund.modules.loans.models import Loan, LoanStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[LoanStatus, FrozenSet[LoanStatus]] = {
    LoanStatus.PENDING: frozenset({LoanStatus.APPROVED, LoanStatus.REJECTED}),
    LoanStatus.APPROVED: frozenset({LoanStatus.DISBURSED}),
    LoanStatus.DISBURSED: frozenset({LoanStatus.REPAYING, LoanStatus.COMPLETED, LoanStatus.DEFAULTED}),
    LoanStatus.REPAYING: frozenset({LoanStatus.REPAYING, LoanStatus.COMPLETED, LoanStatus.DEFAULTED}),
    LoanStatus.REJECTED: frozenset(),
    LoanStatus.COMPLETED: frozenset(),
    LoanStatus.DEFAULTED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)


def can_transition(current: LoanStatus, target: LoanStatus) -> bool:
    return LoanStatus(target) in ALLOWED_TRANSITIONS[LoanStatus(current)]


def require_status(loan: Loan, action: str, *allowed: LoanStatus) -> None:
    """Raise unless the loan currently sits in one of the allowed statuses"""
    if LoanStatus(loan.status) not in allowed:
        raise InvalidTransitionError(action, LoanStatus(loan.status).value, loan.id)


def transition(loan: Loan, target: LoanStatus, action: str) -> None:
    current = LoanStatus(loan.status)
    if not can_transition(current, target):
        raise InvalidTransitionError(action, current.value, loan.id)
    loan.status = target
    if current != target:
        logger.info(f"Loan {loan.id}: {current.value} -> {target.value}")
