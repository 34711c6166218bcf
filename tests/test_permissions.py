"""
Unit tests for capability checks and the loan status machine
"""
import pytest

from coopfund.core.exceptions import InvalidTransitionError
from coopfund.core.permissions import Capability, MemberRole, has_permission, parse_permissions
from coopfund.modules.loans.models import Loan, LoanStatus
from coopfund.modules.loans.state import TERMINAL_STATUSES, can_transition, require_status, transition


class TestHasPermission:

    @pytest.mark.unit
    @pytest.mark.parametrize("role", [MemberRole.OWNER, MemberRole.ADMIN])
    def test_superuser_roles_hold_everything(self, role):
        assert all(has_permission(role, [], capability) for capability in Capability)

    @pytest.mark.unit
    def test_moderator_defaults(self):
        assert has_permission(MemberRole.MODERATOR, None, Capability.LOANS_VIEW)
        assert has_permission(MemberRole.MODERATOR, None, Capability.LEDGER_VIEW)
        assert not has_permission(MemberRole.MODERATOR, None, Capability.LOANS_APPROVE)

    @pytest.mark.unit
    def test_plain_member_has_nothing(self):
        assert not any(has_permission(MemberRole.MEMBER, None, capability) for capability in Capability)

    @pytest.mark.unit
    def test_explicit_permissions_replace_role_defaults(self):
        permissions = ["loans:approve"]

        assert has_permission(MemberRole.MEMBER, permissions, Capability.LOANS_APPROVE)
        assert not has_permission(MemberRole.MODERATOR, permissions, Capability.LOANS_VIEW)

    @pytest.mark.unit
    def test_accepts_role_as_string(self):
        assert has_permission("admin", None, Capability.LOANS_CONFIGURE)

    @pytest.mark.unit
    @pytest.mark.parametrize("raw,expected", [
        (None, []),
        ("", []),
        ("not json", []),
        ('{"loans:view": true}', []),
        ('["loans:view", "ledger:view"]', ["loans:view", "ledger:view"]),
    ])
    def test_parse_permissions(self, raw, expected):
        assert parse_permissions(raw) == expected


class TestLoanStateMachine:

    @pytest.mark.unit
    @pytest.mark.parametrize("current,target", [
        (LoanStatus.PENDING, LoanStatus.APPROVED),
        (LoanStatus.PENDING, LoanStatus.REJECTED),
        (LoanStatus.APPROVED, LoanStatus.DISBURSED),
        (LoanStatus.DISBURSED, LoanStatus.REPAYING),
        (LoanStatus.DISBURSED, LoanStatus.COMPLETED),
        (LoanStatus.REPAYING, LoanStatus.REPAYING),
        (LoanStatus.REPAYING, LoanStatus.COMPLETED),
        (LoanStatus.REPAYING, LoanStatus.DEFAULTED),
    ])
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.unit
    @pytest.mark.parametrize("current,target", [
        (LoanStatus.PENDING, LoanStatus.DISBURSED),
        (LoanStatus.APPROVED, LoanStatus.REJECTED),
        (LoanStatus.REJECTED, LoanStatus.APPROVED),
        (LoanStatus.COMPLETED, LoanStatus.REPAYING),
        (LoanStatus.PENDING, LoanStatus.DEFAULTED),
    ])
    def test_forbidden(self, current, target):
        assert not can_transition(current, target)

    @pytest.mark.unit
    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {LoanStatus.REJECTED, LoanStatus.COMPLETED, LoanStatus.DEFAULTED}

    @pytest.mark.unit
    def test_transition_error_names_current_status(self):
        loan = Loan(id=7, status=LoanStatus.COMPLETED)

        with pytest.raises(InvalidTransitionError) as exc:
            transition(loan, LoanStatus.REPAYING, "record repayment for")

        assert "completed" in exc.value.message
        assert exc.value.status_code == 409
        assert loan.status == LoanStatus.COMPLETED

    @pytest.mark.unit
    def test_require_status(self):
        loan = Loan(id=1, status=LoanStatus.APPROVED)

        require_status(loan, "disburse", LoanStatus.APPROVED)
        with pytest.raises(InvalidTransitionError):
            require_status(loan, "approve", LoanStatus.PENDING)
