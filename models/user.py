"""SQLAlchemy model for platform users."""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, DateTime, String, Text, Uuid
from sqlalchemy.sql import func

from database import Base


class User(Base):
    """A platform account. Email is the only natural key."""

    __tablename__ = "users"
    __table_args__ = {"extend_existing": True}

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(320), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    # Null for accounts that have only ever signed in through SSO.
    password_hash = Column(Text, nullable=True)
    is_system_admin = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<User email={self.email!r}>"


__all__ = ["User"]
