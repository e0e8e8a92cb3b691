"""Simple in-memory cache for per-organisation SSO configs."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Dict, Optional, Union

from core.logging import get_logger
from schemas.sso_config import OidcConfig, SamlConfig

logger = get_logger(__name__)

SsoConfigValue = Optional[Union[SamlConfig, OidcConfig]]


@dataclass
class _CacheEntry:
    value: SsoConfigValue
    expires_at: float


_CONFIG_CACHE: Dict[uuid.UUID, _CacheEntry] = {}


class CachedSsoConfigStore:
    """Wraps a config store; ``get_for_org`` results are reused until the TTL expires.

    Entries are process-wide so per-request stores share them. Misses are cached
    too, so a freshly created config shows up only after invalidation or expiry.
    """

    def __init__(self, inner, *, ttl_seconds: int = 60):
        self.inner = inner
        self.ttl_seconds = max(int(ttl_seconds), 0)

    def get_for_org(self, org_id: uuid.UUID) -> SsoConfigValue:
        now = time.monotonic()
        entry = _CONFIG_CACHE.get(org_id)
        if entry and entry.expires_at > now:
            return entry.value

        config = self.inner.get_for_org(org_id)
        if self.ttl_seconds:
            _CONFIG_CACHE[org_id] = _CacheEntry(value=config, expires_at=now + self.ttl_seconds)
        return config

    def resolve_org_id(self, slug: str) -> Optional[uuid.UUID]:
        return self.inner.resolve_org_id(slug)


def invalidate_sso_config_cache(org_id: Optional[uuid.UUID] = None) -> None:
    """Drop the cached entry for ``org_id`` (or everything if unspecified)."""
    if org_id is None:
        _CONFIG_CACHE.clear()
        return
    if _CONFIG_CACHE.pop(org_id, None) is not None:
        logger.debug("Invalidated cached SSO config for org %s.", org_id)


__all__ = ["CachedSsoConfigStore", "invalidate_sso_config_cache"]
