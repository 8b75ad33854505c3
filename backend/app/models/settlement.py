"""Monthly settlement snapshot and per-educator earnings."""
from datetime import datetime
from uuid import uuid4

from sqlalchemy import String, Float, Integer, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

SETTLEMENT_DRAFT = "DRAFT"
SETTLEMENT_FINALIZED = "FINALIZED"


class MonthlySettlement(Base):
    """One row per calendar month.

    DRAFT rows are recomputed in place; FINALIZED rows are immutable and their
    earnings become withdrawable.
    """
    __tablename__ = "monthly_settlements"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    month: Mapped[datetime] = mapped_column(DateTime, nullable=False, unique=True)

    # Revenue
    total_revenue: Mapped[float] = mapped_column(Float, default=0.0)
    distributable_revenue: Mapped[float] = mapped_column(Float, default=0.0)
    revenue_source: Mapped[str] = mapped_column(String(20), default="none")
    total_subscribers: Mapped[int] = mapped_column(Integer, default=0)

    # Points
    total_points: Mapped[float] = mapped_column(Float, default=0.0)
    media_play_points: Mapped[float] = mapped_column(Float, default=0.0)
    offline_download_points: Mapped[float] = mapped_column(Float, default=0.0)
    live_class_points: Mapped[float] = mapped_column(Float, default=0.0)
    point_value: Mapped[float] = mapped_column(Float, default=0.0)
    educator_count: Mapped[int] = mapped_column(Integer, default=0)

    status: Mapped[str] = mapped_column(String(20), default=SETTLEMENT_DRAFT)
    calculated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    educator_earnings: Mapped[list["EducatorEarning"]] = relationship(
        "EducatorEarning",
        back_populates="settlement",
        cascade="all, delete-orphan",
        order_by="EducatorEarning.earnings.desc()",
    )

    __table_args__ = (
        Index("idx_monthly_settlement_status", "status"),
    )

    @property
    def is_finalized(self) -> bool:
        return self.status == SETTLEMENT_FINALIZED

    def __repr__(self) -> str:
        return f"<MonthlySettlement(month={self.month:%Y-%m}, status={self.status}, point_value={self.point_value})>"


class EducatorEarning(Base):
    """An educator's share of one monthly settlement.

    ``available_balance`` is what is left of ``earnings`` after withdrawals;
    ``earnings == available_balance + withdrawn`` always holds.
    """
    __tablename__ = "educator_earnings"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    settlement_id: Mapped[str] = mapped_column(String(36), ForeignKey("monthly_settlements.uuid"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.uuid"), nullable=False)

    points: Mapped[float] = mapped_column(Float, nullable=False)
    percentage_of_total: Mapped[float] = mapped_column(Float, default=0.0)
    earnings: Mapped[float] = mapped_column(Float, nullable=False)
    available_balance: Mapped[float] = mapped_column(Float, nullable=False)
    withdrawn: Mapped[float] = mapped_column(Float, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    settlement: Mapped["MonthlySettlement"] = relationship("MonthlySettlement", back_populates="educator_earnings")
    user = relationship("User", foreign_keys=[user_id])

    __table_args__ = (
        UniqueConstraint("settlement_id", "user_id", name="uq_educator_earning_settlement_user"),
        Index("idx_educator_earning_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<EducatorEarning(user_id={self.user_id}, points={self.points}, earnings={self.earnings})>"
