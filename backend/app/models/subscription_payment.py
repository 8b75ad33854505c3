"""Subscription payment model: the realized-revenue event log."""
from datetime import datetime
from uuid import uuid4

from sqlalchemy import String, Float, Integer, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

PAYMENT_COMPLETED = "COMPLETED"
PAYMENT_FAILED = "FAILED"


class SubscriptionPayment(Base):
    """Immutable record of a completed or failed subscription payment.

    ``monthly_amount`` is the payment spread over the months it buys and is what
    the revenue calculator prorates. ``expiration_before`` / ``expiration_after``
    snapshot the plan expiry around the payment; together with ``payment_date``
    they define the window the payment pays for.
    """
    __tablename__ = "subscription_payments"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.uuid"), nullable=False)
    subscription_id: Mapped[str] = mapped_column(String(36), ForeignKey("subscription_plans.uuid"), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    monthly_amount: Mapped[float] = mapped_column(Float, nullable=False)
    months: Mapped[int] = mapped_column(Integer, default=1)
    plan_type: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(20), default=PAYMENT_COMPLETED)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    is_renewal: Mapped[bool] = mapped_column(Boolean, default=False)
    expiration_before: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    expiration_after: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    payment_date: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    subscription = relationship("SubscriptionPlan", foreign_keys=[subscription_id])

    __table_args__ = (
        Index("idx_subscription_payment_user_id", "user_id"),
        Index("idx_subscription_payment_date", "payment_date"),
    )

    def __repr__(self) -> str:
        return f"<SubscriptionPayment(uuid={self.uuid}, user_id={self.user_id}, amount={self.amount})>"
