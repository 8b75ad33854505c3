"""Live class and attendance models."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.database import Base


class LiveClass(Base):
    """A live session hosted by an educator."""

    __tablename__ = "live_classes"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.uuid"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    attendees: Mapped[list["LiveClassAttendee"]] = relationship("LiveClassAttendee", back_populates="live_class")

    __table_args__ = (
        Index("idx_live_class_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<LiveClass(uuid={self.uuid}, user_id={self.user_id}, title={self.title})>"


class LiveClassAttendee(Base):
    """One learner joining a live class. Worth a flat number of points to the host."""

    __tablename__ = "live_class_attendees"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    live_class_id: Mapped[str] = mapped_column(String(36), ForeignKey("live_classes.uuid"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.uuid"), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    live_class: Mapped["LiveClass"] = relationship("LiveClass", back_populates="attendees")

    __table_args__ = (
        UniqueConstraint("live_class_id", "user_id", name="uq_live_class_attendee"),
        Index("idx_live_class_attendee_joined", "joined_at"),
    )

    def __repr__(self) -> str:
        return f"<LiveClassAttendee(live_class_id={self.live_class_id}, user_id={self.user_id})>"
