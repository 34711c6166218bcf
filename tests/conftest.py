"""
Test configuration and fixtures for CoopFund backend tests.
"""
import pytest
import json
from typing import AsyncGenerator
from decimal import Decimal
from datetime import date, datetime

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient, ASGITransport

from coopfund.core.database import Base, get_db
from coopfund.core.permissions import MemberRole
from coopfund.core.security import create_access_token
from coopfund.modules.loans import repository
from coopfund.modules.members.models import Cooperative, Member, MemberStatus
from coopfund.modules.loans.models import (
    LoanType, Loan, LoanRepaymentSchedule, InterestMode, LoanStatus, ScheduleStatus
)
from coopfund.modules.notifications import services as notification_services
from main import app


# ============================================================
# Database Fixtures
# ============================================================

# Use SQLite for testing (in-memory)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def test_engine():
    """Create a fresh in-memory database per test"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for each test"""
    async_session = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def client(db_session) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database override"""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================
# Cooperative & Member Fixtures
# ============================================================

OWNER_USER_ID = 1
ADMIN_USER_ID = 2
SECOND_ADMIN_USER_ID = 3
MODERATOR_USER_ID = 4
BORROWER_USER_ID = 10
GUARANTOR_USER_ID = 11
SECOND_GUARANTOR_USER_ID = 12
OUTSIDER_USER_ID = 99


@pytest.fixture
async def cooperative(db_session):
    coop = Cooperative(name="Unity Thrift Society", currency="NGN")
    db_session.add(coop)
    await db_session.commit()
    await db_session.refresh(coop)
    return coop


@pytest.fixture
def make_member(db_session, cooperative):
    """Factory for members of the test cooperative"""

    async def _make_member(
        user_id,
        first_name="Test",
        last_name="Member",
        role=MemberRole.MEMBER,
        permissions=None,
        status=MemberStatus.ACTIVE
    ):
        member = Member(
            cooperative_id=cooperative.id,
            user_id=user_id,
            first_name=first_name,
            last_name=last_name,
            email=f"user{user_id}@example.com" if user_id else None,
            role=role,
            permissions=json.dumps(permissions) if permissions is not None else None,
            status=status
        )
        db_session.add(member)
        await db_session.commit()
        await db_session.refresh(member)
        return member

    return _make_member


@pytest.fixture
async def owner(make_member):
    return await make_member(OWNER_USER_ID, "Ada", "Okafor", role=MemberRole.OWNER)


@pytest.fixture
async def admin(make_member):
    return await make_member(ADMIN_USER_ID, "Bola", "Adeyemi", role=MemberRole.ADMIN)


@pytest.fixture
async def second_admin(make_member):
    return await make_member(SECOND_ADMIN_USER_ID, "Chidi", "Eze", role=MemberRole.ADMIN)


@pytest.fixture
async def moderator(make_member):
    return await make_member(MODERATOR_USER_ID, "Dayo", "Ibe", role=MemberRole.MODERATOR)


@pytest.fixture
async def borrower(make_member):
    return await make_member(BORROWER_USER_ID, "Emeka", "Nwosu")


@pytest.fixture
async def guarantor(make_member):
    return await make_member(GUARANTOR_USER_ID, "Funmi", "Bello")


@pytest.fixture
async def second_guarantor(make_member):
    return await make_member(SECOND_GUARANTOR_USER_ID, "Gbenga", "Ojo")


def _auth_headers(user_id: int) -> dict:
    token = create_access_token(data={"sub": str(user_id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers_for():
    """Generate auth headers for any user id"""
    return _auth_headers


@pytest.fixture
def admin_headers(admin):
    return _auth_headers(admin.user_id)


@pytest.fixture
def borrower_headers(borrower):
    return _auth_headers(borrower.user_id)


# ============================================================
# Loan Type Fixtures
# ============================================================

@pytest.fixture
def make_loan_type(db_session, cooperative):
    async def _make_loan_type(**overrides):
        values = dict(
            cooperative_id=cooperative.id,
            name="Regular Loan",
            min_amount=Decimal("1000.00"),
            max_amount=Decimal("500000.00"),
            min_duration=1,
            max_duration=24,
            interest_rate=Decimal("10.00"),
            interest_mode=InterestMode.FLAT,
            application_fee=Decimal("0.00"),
            deduct_interest_upfront=False,
            max_active_loans=1,
            requires_guarantor=False,
            min_guarantors=0,
            requires_multiple_approvals=False,
            min_approvers=1,
            is_active=True
        )
        values.update(overrides)
        loan_type = LoanType(**values)
        db_session.add(loan_type)
        await db_session.commit()
        await db_session.refresh(loan_type)
        return loan_type

    return _make_loan_type


@pytest.fixture
async def regular_loan_type(make_loan_type):
    """10% flat, single approver, no guarantors"""
    return await make_loan_type()


@pytest.fixture
async def guaranteed_loan_type(make_loan_type):
    return await make_loan_type(name="Guaranteed Loan", requires_guarantor=True, min_guarantors=2)


@pytest.fixture
async def committee_loan_type(make_loan_type):
    return await make_loan_type(name="Committee Loan", requires_multiple_approvals=True, min_approvers=2)


@pytest.fixture
async def upfront_loan_type(make_loan_type):
    """1,000 fee and 10% flat interest withheld at disbursement"""
    return await make_loan_type(
        name="Upfront Loan",
        application_fee=Decimal("1000.00"),
        deduct_interest_upfront=True
    )


# ============================================================
# Loan Fixtures
# ============================================================

@pytest.fixture
async def disbursed_loan(db_session, cooperative, borrower):
    """
    Disbursed 7,000 interest-free loan with installments of 3,000 and 4,000.
    Built directly so repayment tests control the schedule exactly.
    """
    loan = Loan(
        cooperative_id=cooperative.id,
        member_id=borrower.id,
        amount=Decimal("7000.00"),
        purpose="Shop stock",
        duration=2,
        interest_rate=Decimal("0"),
        interest_amount=Decimal("0"),
        monthly_repayment=Decimal("3500.00"),
        total_repayment=Decimal("7000.00"),
        amount_repaid=Decimal("0"),
        outstanding_balance=Decimal("7000.00"),
        status=LoanStatus.DISBURSED,
        net_disbursement_amount=Decimal("7000.00"),
        amount_disbursed=Decimal("7000.00"),
        disbursed_at=datetime(2026, 1, 1)
    )
    db_session.add(loan)
    await db_session.flush()
    db_session.add_all([
        LoanRepaymentSchedule(
            loan_id=loan.id, installment_number=1, due_date=date(2026, 2, 1),
            principal_amount=Decimal("3000.00"), interest_amount=Decimal("0"),
            total_amount=Decimal("3000.00"), paid_amount=Decimal("0"), status=ScheduleStatus.PENDING
        ),
        LoanRepaymentSchedule(
            loan_id=loan.id, installment_number=2, due_date=date(2026, 3, 1),
            principal_amount=Decimal("4000.00"), interest_amount=Decimal("0"),
            total_amount=Decimal("4000.00"), paid_amount=Decimal("0"), status=ScheduleStatus.PENDING
        ),
    ])
    await db_session.commit()
    await db_session.refresh(loan)
    return loan


# ============================================================
# Failure Injection
# ============================================================

@pytest.fixture(params=["payload_error", "insert_error"])
def failing_notifications(request, monkeypatch):
    """
    Break every in-app notification write, either while building the
    payload or when the row is flushed (an unserializable JSON value).
    """
    def _broken_payload(data):
        if request.param == "payload_error":
            raise RuntimeError("notification store unavailable")
        return {"payload": object()}

    monkeypatch.setattr(notification_services, "_json_safe", _broken_payload)
    return request.param


@pytest.fixture
def loan_lock_calls(monkeypatch):
    """Record the for_update flag of every loan lookup"""
    calls = []
    original = repository.get_loan

    async def _get_loan(db, loan_id, for_update=False):
        calls.append(for_update)
        return await original(db, loan_id, for_update=for_update)

    monkeypatch.setattr(repository, "get_loan", _get_loan)
    return calls
