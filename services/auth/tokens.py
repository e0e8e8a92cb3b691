"""Session token issuance and verification."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping

import jwt

from core.auth.constants import SUPERADMIN_ROLE
from core.auth.settings import AuthSettings
from services.auth.common import (
    InvalidSessionTokenError,
    MembershipStore,
    UserRecord,
    UserStore,
)


@dataclass(frozen=True)
class SessionToken:
    token: str
    expires_in: int
    claims: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_super_admin(self) -> bool:
        return bool(self.claims.get("isSuperAdmin"))


class TokenIssuer:
    """Signs session JWTs. ``isSuperAdmin`` is always derived, never copied from input."""

    def __init__(self, settings: AuthSettings, users: UserStore, memberships: MembershipStore):
        self.settings = settings
        self.users = users
        self.memberships = memberships

    def resolve_super_admin(self, user: UserRecord) -> bool:
        if user.is_system_admin:
            return True
        return self.memberships.has_enabled_role(user.id, SUPERADMIN_ROLE)

    def issue(self, user: UserRecord) -> SessionToken:
        return self._sign(user, self.resolve_super_admin(user))

    def refresh(self, claims: Mapping[str, Any]) -> SessionToken:
        """Re-issue for the same subject, recomputing privileges from current state."""
        subject = claims.get("sub")
        try:
            user_id = uuid.UUID(str(subject))
        except (TypeError, ValueError):
            raise InvalidSessionTokenError("Token subject is not a user id.") from None
        user = self.users.get(user_id)
        if user is None:
            raise InvalidSessionTokenError("Token subject no longer exists.")
        return self._sign(user, self.resolve_super_admin(user))

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(
                token,
                self.settings.jwt_secret,
                algorithms=[self.settings.jwt_algorithm],
                audience=self.settings.jwt_audience,
                issuer=self.settings.jwt_issuer,
            )
        except jwt.ExpiredSignatureError as exc:
            raise InvalidSessionTokenError("Session token has expired.") from exc
        except jwt.InvalidTokenError as exc:
            raise InvalidSessionTokenError() from exc

    def _sign(self, user: UserRecord, is_super_admin: bool) -> SessionToken:
        now = datetime.now(timezone.utc)
        ttl = self.settings.access_token_ttl_seconds
        payload: Dict[str, Any] = {
            "sub": str(user.id),
            "email": user.email,
            "isSuperAdmin": is_super_admin,
            "iss": self.settings.jwt_issuer,
            "aud": self.settings.jwt_audience,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl)).timestamp()),
            "jti": str(uuid.uuid4()),
        }
        token = jwt.encode(payload, self.settings.jwt_secret, algorithm=self.settings.jwt_algorithm)
        return SessionToken(token=token, expires_in=ttl, claims=payload)


__all__ = ["SessionToken", "TokenIssuer"]
