"""Email/password credential validation."""

from __future__ import annotations

import re
import time
from typing import Dict, NoReturn, Optional, Tuple

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from core.auth.settings import AuthSettings
from core.logging import get_logger
from services.auth.common import (
    AccountLockedError,
    AuthServiceError,
    InvalidCredentialsError,
    RequestContext,
    SecurityEventSink,
    UserRecord,
    UserStore,
    WeakPasswordError,
    email_local_part,
    mask_email,
    normalize_email,
)
from services.auth.lockout import LockoutTracker
from services.auth_metrics import record_password_login

logger = get_logger(__name__)

_PASSWORD_MIN_LENGTH = 8
_UPPER_REGEX = re.compile(r"[A-Z]")
_LOWER_REGEX = re.compile(r"[a-z]")
_DIGIT_REGEX = re.compile(r"\d")
# Compared against when the user does not exist so both paths cost one argon2 verify.
_DUMMY_PASSWORD = "never-matches-any-real-password"
# One reference hash per process and hasher parameter set.
_REFERENCE_HASHES: Dict[Tuple[object, ...], str] = {}


def build_password_hasher(settings: AuthSettings) -> PasswordHasher:
    return PasswordHasher(
        time_cost=settings.argon2_time_cost,
        memory_cost=settings.argon2_memory_cost,
        parallelism=settings.argon2_parallelism,
    )


def reference_hash(hasher: PasswordHasher) -> str:
    """Hash of a throwaway password with the same parameters as ``hasher``."""
    key = (hasher.type, hasher.time_cost, hasher.memory_cost, hasher.parallelism, hasher.hash_len, hasher.salt_len)
    cached = _REFERENCE_HASHES.get(key)
    if cached is None:
        cached = _REFERENCE_HASHES[key] = hasher.hash(_DUMMY_PASSWORD)
    return cached


def validate_password_strength(password: str) -> None:
    value = password or ""
    if (
        len(value) < _PASSWORD_MIN_LENGTH
        or not _UPPER_REGEX.search(value)
        or not _LOWER_REGEX.search(value)
        or not _DIGIT_REGEX.search(value)
    ):
        raise WeakPasswordError()


class CredentialValidator:
    """Checks an email/password pair and keeps the lockout counters in step."""

    def __init__(
        self,
        users: UserStore,
        lockout: LockoutTracker,
        hasher: PasswordHasher,
        events: SecurityEventSink,
        *,
        demo_mode: bool = False,
    ):
        self.users = users
        self.lockout = lockout
        self.hasher = hasher
        self.events = events
        self.demo_mode = demo_mode
        # Resolved up front so an unknown email never pays for an extra hash.
        self._dummy_hash = reference_hash(hasher)

    def validate(self, email: str, password: str, context: Optional[RequestContext] = None) -> UserRecord:
        started = time.perf_counter()
        identity = normalize_email(email)
        context = context or RequestContext()
        if self.lockout.is_locked(identity):
            self._log_failure(identity, "account_locked", started, context)
            record_password_login("locked")
            raise AccountLockedError()
        try:
            return self._validate(identity, password or "", started, context)
        except AuthServiceError:
            raise
        except Exception:
            logger.error("Unexpected error validating credentials for %s.", mask_email(identity), exc_info=True)
            record_password_login("error")
            raise InvalidCredentialsError() from None

    def _validate(self, identity: str, password: str, started: float, context: RequestContext) -> UserRecord:
        user = self.users.find_by_email(identity) if identity else None

        if user is None:
            if self.demo_mode and identity:
                return self._provision_demo_user(identity, password, started, context)
            self._burn_verification(password)
            self._fail(identity, "user_not_found", started, context)

        if not user.password_hash:
            # Accounts created through SSO adopt the first password presented.
            password_hash = self.hasher.hash(password)
            self.users.set_password_hash(user.id, password_hash)
            logger.info("Stored first password for SSO-provisioned user %s.", mask_email(identity))
            return self._succeed(user, identity, started, context)

        if not self._verify(user.password_hash, password):
            self._fail(identity, "invalid_password", started, context)

        self._maybe_rehash(user, password)
        return self._succeed(user, identity, started, context)

    def _verify(self, password_hash: str, password: str) -> bool:
        try:
            return self.hasher.verify(password_hash, password)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False

    def _burn_verification(self, password: str) -> None:
        self._verify(self._dummy_hash, password)

    def _maybe_rehash(self, user: UserRecord, password: str) -> None:
        try:
            if self.hasher.check_needs_rehash(user.password_hash or ""):
                self.users.set_password_hash(user.id, self.hasher.hash(password))
        except Exception:
            logger.warning("Password rehash failed for %s.", mask_email(user.email), exc_info=True)

    def _provision_demo_user(self, identity: str, password: str, started: float, context: RequestContext) -> UserRecord:
        validate_password_strength(password)
        user = self.users.create(
            email=identity,
            name=email_local_part(identity),
            password_hash=self.hasher.hash(password),
        )
        self.events.log("user_created", email=mask_email(identity), source="demo_mode", ip=context.ip)
        return self._succeed(user, identity, started, context)

    def _fail(self, identity: str, reason: str, started: float, context: RequestContext) -> NoReturn:
        if identity:
            self.lockout.record_failure(identity)
        self._log_failure(identity, reason, started, context)
        record_password_login("failure")
        raise InvalidCredentialsError()

    def _succeed(self, user: UserRecord, identity: str, started: float, context: RequestContext) -> UserRecord:
        self.lockout.reset(identity)
        self.events.log(
            "login_success",
            email=mask_email(identity),
            user_id=str(user.id),
            duration_ms=_elapsed_ms(started),
            ip=context.ip,
            correlation_id=context.correlation_id,
        )
        record_password_login("success")
        return user.sanitized()

    def _log_failure(self, identity: str, reason: str, started: float, context: RequestContext) -> None:
        self.events.log(
            "login_failed",
            email=mask_email(identity),
            reason=reason,
            duration_ms=_elapsed_ms(started),
            ip=context.ip,
            correlation_id=context.correlation_id,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


__all__ = [
    "CredentialValidator",
    "build_password_hasher",
    "reference_hash",
    "validate_password_strength",
]
