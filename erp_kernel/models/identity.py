"""
Module: erp_kernel.models.identity
Responsibility: ORM persistence for directory users and issued session tokens.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Logins are unique.
    - Raw tokens are never stored; only their SHA-256 digest.
    - A token is valid iff it is not revoked and not past ``expires_at``.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from erp_kernel.db.base import TrackedBase, UTCDateTime, UUIDString


class UserModel(TrackedBase):
    """Directory user with a role and a salted password hash."""

    __tablename__ = "users"

    login: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    tokens: Mapped[list["SessionTokenModel"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<User {self.login} ({self.role})>"


class SessionTokenModel(TrackedBase):
    """An issued bearer token, stored as a digest."""

    __tablename__ = "session_tokens"

    user_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False, index=True,
    )
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    issued_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    user: Mapped[UserModel] = relationship(back_populates="tokens")

    def is_valid(self, now: datetime) -> bool:
        return self.revoked_at is None and now < self.expires_at
