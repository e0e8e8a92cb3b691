"""Shared types for the identity engine: errors, records, flow states and collaborator contracts."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple, Union

from schemas.sso_config import OidcConfig, SamlConfig

_GENERIC_CREDENTIALS_MESSAGE = "Invalid email or password"


class SsoFlowState(str, enum.Enum):
    """Lifecycle of one SSO login. ``FAILED`` is reachable from every state."""

    IDLE = "idle"
    LOGIN_URL_ISSUED = "login_url_issued"
    CALLBACK_RECEIVED = "callback_received"
    ATTRIBUTES_EXTRACTED = "attributes_extracted"
    RECONCILED = "reconciled"
    TOKEN_ISSUED = "token_issued"
    FAILED = "failed"


class AuthServiceError(RuntimeError):
    """Base error for all auth flows, carrying a stable code and an HTTP-ish status."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int,
        *,
        extra: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.extra = dict(extra or {})
        self.headers = dict(headers or {}) if headers else None
        self.flow_state: Optional[SsoFlowState] = None


class _AuthError(AuthServiceError):
    error_code = "auth.error"
    default_message = "Authentication failed"
    default_status = 400

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        extra: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(
            self.error_code,
            message or self.default_message,
            self.default_status,
            extra=extra,
            headers=headers,
        )


class InvalidCredentialsError(_AuthError):
    error_code = "auth.invalid_credentials"
    default_message = _GENERIC_CREDENTIALS_MESSAGE
    default_status = 401

    def __init__(self, *, extra: Optional[Dict[str, Any]] = None):
        # The message never varies so callers cannot leak which check failed.
        super().__init__(_GENERIC_CREDENTIALS_MESSAGE, extra=extra)


class AccountLockedError(_AuthError):
    error_code = "auth.account_locked"
    default_message = "Account is temporarily locked. Try again later."
    default_status = 423


class WeakPasswordError(_AuthError):
    error_code = "auth.weak_password"
    default_message = "Password must be at least 8 characters and contain upper case, lower case and a digit."
    default_status = 400


class UserNotProvisionedError(_AuthError):
    error_code = "sso.user_not_provisioned"
    default_message = "User is not provisioned for this organization."
    default_status = 403


class DomainNotAllowedError(_AuthError):
    error_code = "sso.domain_not_allowed"
    default_message = "Email domain is not allowed for this organization."
    default_status = 403


class SeatLimitExceededError(_AuthError):
    error_code = "org.seat_limit_exceeded"
    default_message = "Organization has no seats left."
    default_status = 403


class SsoInactiveError(_AuthError):
    error_code = "sso.inactive"
    default_message = "SSO is not active for this organization."
    default_status = 404


class SsoNotConfiguredError(_AuthError):
    error_code = "sso.not_configured"
    default_message = "SSO is not configured for this organization."
    default_status = 404


class UnsupportedProtocolError(_AuthError):
    error_code = "sso.unsupported_protocol"
    default_message = "Unsupported SSO protocol."
    default_status = 400


class ConfigIncompleteError(_AuthError):
    error_code = "sso.config_incomplete"
    default_message = "SSO configuration is incomplete."
    default_status = 400


class MissingEmailAttributeError(_AuthError):
    error_code = "sso.missing_email"
    default_message = "Identity assertion does not contain an email address."
    default_status = 400


class InvalidIdTokenError(_AuthError):
    error_code = "sso.invalid_id_token"
    default_message = "ID token is malformed."
    default_status = 400


class OidcExchangeFailedError(_AuthError):
    error_code = "sso.oidc_exchange_failed"
    default_message = "OIDC token exchange failed."
    default_status = 502


class InvalidSamlResponseError(_AuthError):
    error_code = "sso.saml_invalid_response"
    default_message = "SAML response could not be decoded."
    default_status = 400


class SamlValidationError(_AuthError):
    error_code = "sso.saml_validation_failed"
    default_message = "SAML response failed validation."
    default_status = 403


class InvalidSsoStateError(_AuthError):
    error_code = "sso.invalid_state"
    default_message = "SSO state parameter is invalid."
    default_status = 400


class InvalidSessionTokenError(_AuthError):
    error_code = "auth.token_invalid"
    default_message = "Session token is invalid."
    default_status = 401


@dataclass(frozen=True)
class RequestContext:
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    correlation_id: Optional[str] = None


@dataclass(frozen=True)
class UserRecord:
    id: uuid.UUID
    email: str
    name: Optional[str] = None
    password_hash: Optional[str] = field(default=None, repr=False)
    is_system_admin: bool = False

    def sanitized(self) -> "UserRecord":
        return replace(self, password_hash=None)


@dataclass(frozen=True)
class MembershipRecord:
    id: uuid.UUID
    user_id: uuid.UUID
    org_id: uuid.UUID
    roles: Tuple[str, ...]
    is_disabled: bool = False


@dataclass(frozen=True)
class AssertionAttributes:
    """Identity facts extracted from a SAML assertion or OIDC ID token."""

    subject: str
    email: str
    name: Optional[str] = None
    # None means the IdP sent no groups attribute at all.
    groups: Optional[Tuple[str, ...]] = None


class UserStore(Protocol):
    def get(self, user_id: uuid.UUID) -> Optional[UserRecord]: ...

    def find_by_email(self, email: str) -> Optional[UserRecord]: ...

    def create(self, *, email: str, name: Optional[str], password_hash: Optional[str] = None) -> UserRecord: ...

    def set_password_hash(self, user_id: uuid.UUID, password_hash: str) -> None: ...


class MembershipStore(Protocol):
    def find(self, user_id: uuid.UUID, org_id: uuid.UUID) -> Optional[MembershipRecord]: ...

    def create(self, *, user_id: uuid.UUID, org_id: uuid.UUID, roles: Sequence[str]) -> MembershipRecord: ...

    def update_roles(self, membership_id: uuid.UUID, roles: Sequence[str]) -> MembershipRecord: ...

    def has_enabled_role(self, user_id: uuid.UUID, role: str) -> bool: ...


class SeatLimitEnforcer(Protocol):
    def enforce(self, org_id: uuid.UUID, reason: str) -> None: ...


class SecurityEventSink(Protocol):
    def log(self, event: str, **metadata: Any) -> None: ...


class SecretResolver(Protocol):
    """Looks up the OIDC client secret for an organisation."""

    def resolve(self, org_id: uuid.UUID) -> Optional[str]: ...


class SsoConfigStore(Protocol):
    def get_for_org(self, org_id: uuid.UUID) -> Optional[Union[SamlConfig, OidcConfig]]: ...

    def resolve_org_id(self, slug: str) -> Optional[uuid.UUID]: ...


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def email_domain(email: str) -> str:
    _, _, domain = email.rpartition("@")
    return domain.strip().lower()


def email_local_part(email: str) -> str:
    local, _, _ = email.partition("@")
    return local


def mask_email(email: Optional[str]) -> str:
    """``alice@example.com`` -> ``al***@example.com`` for log output."""
    local, _, domain = (email or "").partition("@")
    if not domain:
        return "***@***"
    masked = "***" if len(local) <= 2 else f"{local[:2]}***"
    return f"{masked}@{domain}"


__all__ = [
    "AccountLockedError",
    "AssertionAttributes",
    "AuthServiceError",
    "ConfigIncompleteError",
    "DomainNotAllowedError",
    "InvalidCredentialsError",
    "InvalidIdTokenError",
    "InvalidSamlResponseError",
    "InvalidSessionTokenError",
    "InvalidSsoStateError",
    "MembershipRecord",
    "MembershipStore",
    "MissingEmailAttributeError",
    "OidcExchangeFailedError",
    "RequestContext",
    "SamlValidationError",
    "SecretResolver",
    "SeatLimitEnforcer",
    "SeatLimitExceededError",
    "SecurityEventSink",
    "SsoConfigStore",
    "SsoFlowState",
    "SsoInactiveError",
    "SsoNotConfiguredError",
    "UnsupportedProtocolError",
    "UserNotProvisionedError",
    "UserRecord",
    "UserStore",
    "WeakPasswordError",
    "email_domain",
    "email_local_part",
    "mask_email",
    "normalize_email",
]
