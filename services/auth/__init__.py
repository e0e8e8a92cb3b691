"""Auth service submodule exports."""

from __future__ import annotations

from .common import (
    AccountLockedError,
    AssertionAttributes,
    AuthServiceError,
    ConfigIncompleteError,
    DomainNotAllowedError,
    InvalidCredentialsError,
    InvalidIdTokenError,
    InvalidSamlResponseError,
    InvalidSessionTokenError,
    InvalidSsoStateError,
    MembershipRecord,
    MissingEmailAttributeError,
    OidcExchangeFailedError,
    RequestContext,
    SamlValidationError,
    SeatLimitExceededError,
    SsoFlowState,
    SsoInactiveError,
    SsoNotConfiguredError,
    UnsupportedProtocolError,
    UserNotProvisionedError,
    UserRecord,
    WeakPasswordError,
    mask_email,
)
from .assertions import parse_oidc_id_token, parse_saml
from .lockout import LockoutTracker, RedisCounterStore
from .login_url import LoginRedirect, SsoLoginUrlBuilder, generate_sp_metadata
from .orchestrator import AuthOrchestrator
from .password import CredentialValidator, validate_password_strength
from .provisioning import IdentityReconciler, ProvisioningResult
from .sso import SsoCallbackHandler, SsoLoginResult
from .tokens import SessionToken, TokenIssuer

__all__ = [
    "AccountLockedError",
    "AssertionAttributes",
    "AuthOrchestrator",
    "AuthServiceError",
    "ConfigIncompleteError",
    "CredentialValidator",
    "DomainNotAllowedError",
    "IdentityReconciler",
    "InvalidCredentialsError",
    "InvalidIdTokenError",
    "InvalidSamlResponseError",
    "InvalidSessionTokenError",
    "InvalidSsoStateError",
    "LockoutTracker",
    "LoginRedirect",
    "MembershipRecord",
    "MissingEmailAttributeError",
    "OidcExchangeFailedError",
    "ProvisioningResult",
    "RedisCounterStore",
    "RequestContext",
    "SamlValidationError",
    "SeatLimitExceededError",
    "SessionToken",
    "SsoCallbackHandler",
    "SsoFlowState",
    "SsoInactiveError",
    "SsoLoginResult",
    "SsoLoginUrlBuilder",
    "SsoNotConfiguredError",
    "TokenIssuer",
    "UnsupportedProtocolError",
    "UserNotProvisionedError",
    "UserRecord",
    "WeakPasswordError",
    "generate_sp_metadata",
    "mask_email",
    "parse_oidc_id_token",
    "parse_saml",
    "validate_password_strength",
]
