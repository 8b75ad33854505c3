"""User model for EduSettle."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base

ROLE_USER = "user"
ROLE_EDUCATOR = "educator"
ROLE_ADMIN = "admin"


class User(Base):
    """Platform account: learners, educators who earn revenue share, and admins."""

    __tablename__ = "users"

    # Primary key
    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))

    # User info
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    school: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Account info
    status: Mapped[str] = mapped_column(String(50), default="active")
    user_role: Mapped[str] = mapped_column(String(50), default=ROLE_USER)

    # Payout details (educators)
    bank_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    account_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_user_email", "email"),
        Index("idx_user_role", "user_role"),
    )

    @property
    def is_educator(self) -> bool:
        return self.user_role == ROLE_EDUCATOR

    def __repr__(self) -> str:
        return f"<User(uuid={self.uuid}, email={self.email}, role={self.user_role})>"
