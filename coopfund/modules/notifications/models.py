from sqlalchemy import Column, Integer, String, DateTime, Text, Enum as SQLEnum, ForeignKey, JSON
from datetime import datetime
from coopfund.core.database import Base
import enum


class NotificationType(str, enum.Enum):
    """Loan lifecycle events members and reviewers hear about"""
    LOAN_REQUESTED = "loan_requested"
    GUARANTOR_REQUESTED = "loan_guarantor_requested"
    GUARANTOR_RESPONDED = "loan_guarantor_responded"
    LOAN_READY_FOR_REVIEW = "loan_ready_for_review"
    APPROVAL_PROGRESS = "loan_approval_progress"
    LOAN_APPROVED = "loan_approved"
    LOAN_REJECTED = "loan_rejected"
    LOAN_DISBURSED = "loan_disbursed"
    LOAN_DEFAULTED = "loan_defaulted"
    REPAYMENT_SUBMITTED = "loan_repayment_submitted"
    REPAYMENT_RECORDED = "loan_repayment_recorded"
    REPAYMENT_REJECTED = "loan_repayment_rejected"
    LOAN_COMPLETED = "loan_completed"


class NotificationStatus(str, enum.Enum):
    """Status of notification delivery"""
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"
    READ = "read"


class Notification(Base):
    """In-app notification addressed to one user"""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    cooperative_id = Column(Integer, ForeignKey("cooperatives.id"), nullable=True, index=True)

    type = Column(SQLEnum(NotificationType), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)  # e.g. {"loan_id": 1, "amount": "5000.00"}

    status = Column(SQLEnum(NotificationStatus), default=NotificationStatus.PENDING, nullable=False)
    error_message = Column(Text, nullable=True)

    delivered_at = Column(DateTime(timezone=True), nullable=True)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Notification(id={self.id}, user_id={self.user_id}, type={self.type}, status={self.status})>"
