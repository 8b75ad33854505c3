"""Play model: one accepted media-play event."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, Float, DateTime, Text, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class Play(Base):
    """Immutable record of a media play that passed the anti-gaming checks."""

    __tablename__ = "plays"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))

    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.uuid"), nullable=False)
    educator_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.uuid"), nullable=False)
    media_id: Mapped[str] = mapped_column(String(36), nullable=False)

    # Watch metrics
    duration_watched: Mapped[float] = mapped_column(Float, nullable=False)
    media_duration: Mapped[float] = mapped_column(Float, nullable=False)
    watch_ratio: Mapped[float] = mapped_column(Float, nullable=False)

    # Client fingerprint
    session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_play_user_media_created", "user_id", "media_id", "created_at"),
        Index("idx_play_ip_created", "ip_address", "created_at"),
        Index("idx_play_educator_created", "educator_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Play(uuid={self.uuid}, user_id={self.user_id}, media_id={self.media_id}, ratio={self.watch_ratio})>"
