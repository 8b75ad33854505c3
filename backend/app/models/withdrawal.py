"""Withdrawal request model."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, Float, DateTime, Text, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.database import Base

WITHDRAWAL_PENDING = "PENDING"
WITHDRAWAL_APPROVED = "APPROVED"
WITHDRAWAL_REJECTED = "REJECTED"
WITHDRAWAL_PROCESSED = "PROCESSED"


class WithdrawalRequest(Base):
    """An educator's payout request, moved through its states by admins."""

    __tablename__ = "withdrawal_requests"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.uuid"), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=WITHDRAWAL_PENDING)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    requested_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    user: Mapped["User"] = relationship("User", foreign_keys=[user_id])

    __table_args__ = (
        Index("idx_withdrawal_request_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<WithdrawalRequest(uuid={self.uuid}, user_id={self.user_id}, amount={self.amount}, status={self.status})>"
