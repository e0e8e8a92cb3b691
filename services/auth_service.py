"""Wires the auth engine to its SQL, Redis and HTTP collaborators."""

from __future__ import annotations

from typing import Optional

import httpx
from sqlalchemy.orm import Session

from core.auth.settings import AuthSettings
from database import transactional
from services.audit_log import SecurityEventLogger
from services.auth import (
    AuthOrchestrator,
    CredentialValidator,
    IdentityReconciler,
    LockoutTracker,
    SsoCallbackHandler,
    SsoLoginUrlBuilder,
    TokenIssuer,
)
from services.auth.common import SecretResolver, SecurityEventSink
from services.auth.lockout import CounterStore
from services.auth.oidc_client import OidcClient
from services.auth.password import build_password_hasher
from services.identity_store import SqlMembershipStore, SqlUserStore
from services.seat_service import SqlSeatLimitEnforcer
from services.sso_config_cache import CachedSsoConfigStore
from services.sso_config_service import SqlSsoConfigStore
from services.sso_secrets import StoredSecretResolver


def build_auth_orchestrator(
    session: Session,
    settings: Optional[AuthSettings] = None,
    *,
    counter_store: Optional[CounterStore] = None,
    http_client: Optional[httpx.Client] = None,
    events: Optional[SecurityEventSink] = None,
    secrets: Optional[SecretResolver] = None,
) -> AuthOrchestrator:
    """Build a request-scoped orchestrator bound to ``session``.

    Every flow that writes (password upgrade, JIT provisioning) commits or rolls
    back as one unit on this session.
    """
    settings = settings or AuthSettings.from_env()
    events = events if events is not None else SecurityEventLogger()

    users = SqlUserStore(session)
    memberships = SqlMembershipStore(session)
    configs = CachedSsoConfigStore(
        SqlSsoConfigStore(session),
        ttl_seconds=settings.sso_config_cache_ttl_seconds,
    )
    tokens = TokenIssuer(settings, users, memberships)
    lockout = LockoutTracker.from_settings(settings, store=counter_store, events=events)
    validator = CredentialValidator(
        users,
        lockout,
        build_password_hasher(settings),
        events,
        demo_mode=settings.demo_mode,
    )
    reconciler = IdentityReconciler(users, memberships, SqlSeatLimitEnforcer(session), events)

    def transaction():
        return transactional(session)

    sso = SsoCallbackHandler(
        settings,
        configs,
        reconciler,
        tokens,
        oidc_client=OidcClient(timeout_seconds=settings.sso_http_timeout_seconds, http_client=http_client),
        secrets=secrets if secrets is not None else StoredSecretResolver(session, settings.sso_secret_encryption_key),
        events=events,
        transaction=transaction,
    )
    return AuthOrchestrator(
        validator,
        tokens,
        SsoLoginUrlBuilder(settings, http_client=http_client),
        sso,
        configs,
        transaction=transaction,
    )


__all__ = ["build_auth_orchestrator"]
