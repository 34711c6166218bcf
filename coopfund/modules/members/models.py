from sqlalchemy import Column, Integer, String, DateTime, Text, Enum as SQLEnum, ForeignKey, UniqueConstraint
from datetime import datetime
from coopfund.core.database import Base
from coopfund.core.permissions import MemberRole, parse_permissions
import enum


class MemberStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REMOVED = "removed"


class Cooperative(Base):
    """A thrift / credit-union group whose pool funds member loans"""
    __tablename__ = "cooperatives"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    currency = Column(String(3), default="NGN", nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Cooperative(id={self.id}, name={self.name})>"


class Member(Base):
    """
    Membership of a user in a cooperative.
    Offline members (no app account) have no user_id.
    """
    __tablename__ = "members"
    __table_args__ = (UniqueConstraint("cooperative_id", "user_id", name="uq_member_cooperative_user"),)

    id = Column(Integer, primary_key=True, index=True)
    cooperative_id = Column(Integer, ForeignKey("cooperatives.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=True, index=True)

    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True)

    role = Column(SQLEnum(MemberRole), default=MemberRole.MEMBER, nullable=False)
    permissions = Column(Text, nullable=True)  # JSON list of capability strings
    status = Column(SQLEnum(MemberStatus), default=MemberStatus.ACTIVE, nullable=False, index=True)

    joined_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def permission_list(self):
        return parse_permissions(self.permissions)

    def __repr__(self):
        return f"<Member(id={self.id}, cooperative_id={self.cooperative_id}, role={self.role})>"
