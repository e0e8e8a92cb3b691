"""Seat-capacity checks for organisations (members counted against ``Org.seat_limit``)."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from core.logging import get_logger
from database import IS_POSTGRES
from models.org import Org, OrgMembership
from services.auth.common import SeatLimitExceededError

logger = get_logger(__name__)


@dataclass(frozen=True)
class SeatCheck:
    allowed: bool
    current: int
    limit: Optional[int] = None

    @property
    def remaining(self) -> Optional[int]:
        if self.limit is None:
            return None
        return max(self.limit - self.current, 0)


def count_active_seats(session: Session, org_id: uuid.UUID) -> int:
    """Members that are not disabled occupy a seat."""
    return int(
        session.execute(
            select(func.count(OrgMembership.id)).where(
                OrgMembership.org_id == org_id,
                OrgMembership.is_disabled.is_(False),
            )
        ).scalar_one()
    )


def _load_seat_limit(session: Session, org_id: uuid.UUID, *, lock: bool = False) -> Optional[int]:
    stmt = select(Org.seat_limit).where(Org.id == org_id)
    if lock and IS_POSTGRES:
        # Serialises concurrent JIT joins for the same org until the transaction ends.
        stmt = stmt.with_for_update()
    return session.execute(stmt).scalar_one_or_none()


def check_seat_limit(session: Session, org_id: uuid.UUID, *, lock: bool = False) -> SeatCheck:
    """Read-only capacity check. A NULL limit means unlimited seats."""
    limit = _load_seat_limit(session, org_id, lock=lock)
    current = count_active_seats(session, org_id)
    if limit is None:
        return SeatCheck(allowed=True, current=current, limit=None)
    return SeatCheck(allowed=current < int(limit), current=current, limit=int(limit))


class SqlSeatLimitEnforcer:
    """Raises ``SeatLimitExceededError`` when adding one more member would exceed the org limit."""

    def __init__(self, session: Session):
        self.session = session

    def enforce(self, org_id: uuid.UUID, reason: str) -> None:
        decision = check_seat_limit(self.session, org_id, lock=True)
        if decision.allowed:
            return
        logger.info(
            "Seat limit reached for org %s (%s/%s, reason=%s).",
            org_id,
            decision.current,
            decision.limit,
            reason,
        )
        raise SeatLimitExceededError(
            extra={
                "org_id": str(org_id),
                "reason": reason,
                "limit": decision.limit,
                "current": decision.current,
            }
        )


__all__ = ["SeatCheck", "SqlSeatLimitEnforcer", "check_seat_limit", "count_active_seats"]
