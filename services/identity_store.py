"""SQLAlchemy-backed user and membership stores used by the auth services."""

from __future__ import annotations

import uuid
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from core.logging import get_logger
from models.org import OrgMembership
from models.user import User
from services.auth.common import MembershipRecord, UserRecord, normalize_email

logger = get_logger(__name__)


def _to_user_record(row: User) -> UserRecord:
    return UserRecord(
        id=row.id,
        email=row.email,
        name=row.name,
        password_hash=row.password_hash,
        is_system_admin=bool(row.is_system_admin),
    )


def _to_membership_record(row: OrgMembership) -> MembershipRecord:
    return MembershipRecord(
        id=row.id,
        user_id=row.user_id,
        org_id=row.org_id,
        roles=tuple(row.roles or ()),
        is_disabled=bool(row.is_disabled),
    )


class SqlUserStore:
    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: uuid.UUID) -> Optional[UserRecord]:
        row = self.session.get(User, user_id)
        return _to_user_record(row) if row is not None else None

    def find_by_email(self, email: str) -> Optional[UserRecord]:
        normalized = normalize_email(email)
        if not normalized:
            return None
        row = self.session.execute(
            select(User).where(func.lower(User.email) == normalized)
        ).scalar_one_or_none()
        return _to_user_record(row) if row is not None else None

    def create(self, *, email: str, name: Optional[str], password_hash: Optional[str] = None) -> UserRecord:
        row = User(email=normalize_email(email), name=name, password_hash=password_hash)
        self.session.add(row)
        self.session.flush()
        return _to_user_record(row)

    def set_password_hash(self, user_id: uuid.UUID, password_hash: str) -> None:
        row = self.session.get(User, user_id)
        if row is None:
            raise ValueError(f"User {user_id} not found")
        row.password_hash = password_hash
        self.session.flush()


class SqlMembershipStore:
    def __init__(self, session: Session):
        self.session = session

    def find(self, user_id: uuid.UUID, org_id: uuid.UUID) -> Optional[MembershipRecord]:
        row = self.session.execute(
            select(OrgMembership).where(OrgMembership.user_id == user_id, OrgMembership.org_id == org_id)
        ).scalar_one_or_none()
        return _to_membership_record(row) if row is not None else None

    def create(self, *, user_id: uuid.UUID, org_id: uuid.UUID, roles: Sequence[str]) -> MembershipRecord:
        row = OrgMembership(user_id=user_id, org_id=org_id, roles=list(roles), is_disabled=False)
        self.session.add(row)
        self.session.flush()
        return _to_membership_record(row)

    def update_roles(self, membership_id: uuid.UUID, roles: Sequence[str]) -> MembershipRecord:
        row = self.session.get(OrgMembership, membership_id)
        if row is None:
            raise ValueError(f"Membership {membership_id} not found")
        row.roles = list(roles)
        row.is_disabled = False
        self.session.flush()
        return _to_membership_record(row)

    def has_enabled_role(self, user_id: uuid.UUID, role: str) -> bool:
        # Roles are a JSON list; filtering in Python keeps this portable across JSON and JSONB.
        rows = self.session.execute(
            select(OrgMembership.roles).where(
                OrgMembership.user_id == user_id,
                OrgMembership.is_disabled.is_(False),
            )
        ).scalars()
        return any(role in (roles or ()) for roles in rows)

    def count_active(self, org_id: uuid.UUID) -> int:
        return int(
            self.session.execute(
                select(func.count(OrgMembership.id)).where(
                    OrgMembership.org_id == org_id,
                    OrgMembership.is_disabled.is_(False),
                )
            ).scalar_one()
        )


__all__ = ["SqlMembershipStore", "SqlUserStore"]
