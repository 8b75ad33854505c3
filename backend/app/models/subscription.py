"""Subscription plan and subscription audit history models."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, Float, Integer, Boolean, DateTime, Text, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.database import Base

# Plan types
PLAN_MONTHLY = "MONTHLY"
PLAN_YEARLY = "YEARLY"
PLAN_LIFETIME = "LIFETIME"

# Statuses
STATUS_TRIAL = "TRIAL"
STATUS_ACTIVE = "ACTIVE"
STATUS_GRACE_PERIOD = "GRACE_PERIOD"
STATUS_EXPIRED = "EXPIRED"
STATUS_CANCELLED = "CANCELLED"

# History actions
ACTION_CREATED = "CREATED"
ACTION_RENEWED = "RENEWED"
ACTION_CANCELLED = "CANCELLED"
ACTION_GRACE_PERIOD_STARTED = "GRACE_PERIOD_STARTED"
ACTION_EXPIRED = "EXPIRED"


class SubscriptionPlan(Base):
    """The current plan of a subscriber. One row per user; history lives in SubscriptionHistory."""

    __tablename__ = "subscription_plans"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.uuid"), nullable=False, unique=True)

    # Plan info
    name: Mapped[str] = mapped_column(String(100), default="Premium")
    plan_type: Mapped[str] = mapped_column(String(20), default=PLAN_MONTHLY)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    months: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[str] = mapped_column(String(20), default=STATUS_ACTIVE)
    auto_renew: Mapped[bool] = mapped_column(Boolean, default=True)

    # Lifecycle timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    trial_ends_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    grace_period_ends: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_renewal_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user: Mapped["User"] = relationship("User", foreign_keys=[user_id])

    __table_args__ = (
        Index("idx_subscription_plan_status", "status"),
        Index("idx_subscription_plan_window", "created_at", "expires_at"),
    )

    @property
    def monthly_price(self) -> float:
        """Face-value price of one month of this plan.

        ``price`` buys ``months`` periods of the plan type. Lifetime plans are
        paid once and only count through their payment record.
        """
        periods = self.months or 1
        if self.plan_type == PLAN_LIFETIME:
            return 0.0
        if self.plan_type == PLAN_YEARLY:
            return self.price / (12 * periods)
        return self.price / periods

    def __repr__(self) -> str:
        return f"<SubscriptionPlan(uuid={self.uuid}, user_id={self.user_id}, status={self.status})>"


class SubscriptionHistory(Base):
    """Append-only audit row for every subscription status or expiry change."""

    __tablename__ = "subscription_history"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.uuid"), nullable=False)
    subscription_id: Mapped[str] = mapped_column(String(36), ForeignKey("subscription_plans.uuid"), nullable=False)
    action: Mapped[str] = mapped_column(String(40), nullable=False)
    old_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    old_expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    new_expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_subscription_history_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<SubscriptionHistory(user_id={self.user_id}, action={self.action}, {self.old_status}->{self.new_status})>"
