"""Offline download event model."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class OfflineDownload(Base):
    """A learner saving an educator's media for offline use."""

    __tablename__ = "offline_downloads"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.uuid"), nullable=False)
    educator_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.uuid"), nullable=False)
    media_id: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_offline_download_educator_created", "educator_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<OfflineDownload(uuid={self.uuid}, user_id={self.user_id}, media_id={self.media_id})>"
