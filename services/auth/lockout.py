"""Redis-backed brute-force lockout for password logins."""

from __future__ import annotations

from typing import Optional, Protocol

import redis

from core.auth.constants import ACCOUNT_LOCKOUT_PREFIX, LOGIN_ATTEMPTS_PREFIX
from core.auth.settings import AuthSettings
from core.logging import get_logger
from services.auth.common import SecurityEventSink, mask_email
from services.auth_metrics import record_account_lockout

logger = get_logger(__name__)


class CounterStoreError(RuntimeError):
    """Raised when the backing cache cannot be reached."""


class CounterStore(Protocol):
    def incr(self, key: str) -> int: ...

    def expire(self, key: str, seconds: int) -> None: ...

    def get(self, key: str) -> Optional[str]: ...

    def set_with_ttl(self, key: str, value: str, seconds: int) -> None: ...

    def delete(self, *keys: str) -> None: ...


class RedisCounterStore:
    """Atomic counters on Redis. Every call maps redis errors to ``CounterStoreError``."""

    def __init__(self, client: "redis.Redis"):
        self._client = client

    @classmethod
    def from_url(cls, url: str, *, timeout_seconds: float = 2.0) -> "RedisCounterStore":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(client)

    def incr(self, key: str) -> int:
        try:
            return int(self._client.incr(key))
        except redis.RedisError as exc:
            raise CounterStoreError(str(exc)) from exc

    def expire(self, key: str, seconds: int) -> None:
        try:
            self._client.expire(key, seconds)
        except redis.RedisError as exc:
            raise CounterStoreError(str(exc)) from exc

    def get(self, key: str) -> Optional[str]:
        try:
            value = self._client.get(key)
        except redis.RedisError as exc:
            raise CounterStoreError(str(exc)) from exc
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set_with_ttl(self, key: str, value: str, seconds: int) -> None:
        try:
            self._client.setex(key, seconds, value)
        except redis.RedisError as exc:
            raise CounterStoreError(str(exc)) from exc

    def delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            self._client.delete(*keys)
        except redis.RedisError as exc:
            raise CounterStoreError(str(exc)) from exc


def build_counter_store(settings: AuthSettings) -> Optional[RedisCounterStore]:
    if not settings.redis_url:
        logger.warning("No Redis URL configured; account lockout is disabled.")
        return None
    try:
        return RedisCounterStore.from_url(settings.redis_url, timeout_seconds=settings.redis_timeout_seconds)
    except (redis.RedisError, ValueError) as exc:
        logger.warning("Lockout Redis init failed: %s", exc)
        return None


class LockoutTracker:
    """Counts failed logins per identity and raises a lock flag once the threshold is hit.

    The tracker fails open: when the store is missing or erroring, nobody is
    reported as locked and failures are not counted.
    """

    def __init__(
        self,
        store: Optional[CounterStore],
        *,
        max_attempts: int = 5,
        window_seconds: int = 15 * 60,
        events: Optional[SecurityEventSink] = None,
    ):
        self.store = store
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.events = events

    @classmethod
    def from_settings(
        cls,
        settings: AuthSettings,
        *,
        store: Optional[CounterStore] = None,
        events: Optional[SecurityEventSink] = None,
    ) -> "LockoutTracker":
        return cls(
            store if store is not None else build_counter_store(settings),
            max_attempts=settings.lockout_max_attempts,
            window_seconds=settings.lockout_window_seconds,
            events=events,
        )

    @staticmethod
    def attempts_key(identity: str) -> str:
        return f"{LOGIN_ATTEMPTS_PREFIX}:{identity}"

    @staticmethod
    def lock_key(identity: str) -> str:
        return f"{ACCOUNT_LOCKOUT_PREFIX}:{identity}"

    def is_locked(self, identity: str) -> bool:
        if self.store is None:
            return False
        try:
            return self.store.get(self.lock_key(identity)) is not None
        except CounterStoreError as exc:
            logger.warning("Lockout check failed for %s: %s", mask_email(identity), exc)
            return False

    def record_failure(self, identity: str) -> None:
        if self.store is None:
            return
        attempts_key = self.attempts_key(identity)
        try:
            attempts = self.store.incr(attempts_key)
            if attempts == 1:
                self.store.expire(attempts_key, self.window_seconds)
            if attempts >= self.max_attempts:
                self.store.set_with_ttl(self.lock_key(identity), "1", self.window_seconds)
                self._on_locked(identity, attempts)
        except CounterStoreError as exc:
            logger.warning("Failed to record login failure for %s: %s", mask_email(identity), exc)

    def reset(self, identity: str) -> None:
        if self.store is None:
            return
        try:
            self.store.delete(self.attempts_key(identity), self.lock_key(identity))
        except CounterStoreError as exc:
            logger.warning("Failed to reset lockout state for %s: %s", mask_email(identity), exc)

    def attempts(self, identity: str) -> Optional[int]:
        if self.store is None:
            return None
        try:
            raw = self.store.get(self.attempts_key(identity))
        except CounterStoreError as exc:
            logger.warning("Failed to read login attempts for %s: %s", mask_email(identity), exc)
            return None
        return int(raw) if raw is not None else 0

    def _on_locked(self, identity: str, attempts: int) -> None:
        record_account_lockout()
        if self.events is not None:
            self.events.log(
                "account_locked",
                email=mask_email(identity),
                attempts=attempts,
                lockout_seconds=self.window_seconds,
            )


__all__ = [
    "CounterStore",
    "CounterStoreError",
    "LockoutTracker",
    "RedisCounterStore",
    "build_counter_store",
]
