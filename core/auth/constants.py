"""Centralized constants for authentication flows."""

from __future__ import annotations

from typing import FrozenSet, Literal

SsoProtocol = Literal["SAML", "OIDC"]
SsoStatus = Literal["ACTIVE", "INACTIVE"]
SecurityEventType = Literal[
    "login_success",
    "login_failed",
    "user_created",
    "account_locked",
    "sso_login_success",
    "sso_login_failed",
    "sso_user_provisioned",
]

SSO_PROTOCOLS: FrozenSet[SsoProtocol] = frozenset(["SAML", "OIDC"])
SSO_STATUS_ACTIVE: SsoStatus = "ACTIVE"
SSO_STATUS_INACTIVE: SsoStatus = "INACTIVE"

DEFAULT_MEMBER_ROLE = "org_member"
SUPERADMIN_ROLE = "superadmin"

LOGIN_ATTEMPTS_PREFIX = "login_attempts"
ACCOUNT_LOCKOUT_PREFIX = "account_lockout"

DEFAULT_EMAIL_ATTRIBUTE = "email"
DEFAULT_NAME_ATTRIBUTE = "name"
DEFAULT_GROUPS_ATTRIBUTE = "groups"

CLAIMS_EMAIL_URI = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/emailaddress"
CLAIMS_NAME_URI = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/name"

SAML_PROTOCOL_NS = "urn:oasis:names:tc:SAML:2.0:protocol"
SAML_ASSERTION_NS = "urn:oasis:names:tc:SAML:2.0:assertion"
SAML_METADATA_NS = "urn:oasis:names:tc:SAML:2.0:metadata"
SAML_BINDING_POST = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST"
SAML_BINDING_REDIRECT = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect"
SAML_NAMEID_EMAIL = "urn:oasis:names:tc:SAML:1.1:nameid-format:emailAddress"

OIDC_SCOPES = ("openid", "email", "profile")

SEAT_REASON_SSO_JIT = "sso_jit"

__all__ = [
    "ACCOUNT_LOCKOUT_PREFIX",
    "CLAIMS_EMAIL_URI",
    "CLAIMS_NAME_URI",
    "DEFAULT_EMAIL_ATTRIBUTE",
    "DEFAULT_GROUPS_ATTRIBUTE",
    "DEFAULT_MEMBER_ROLE",
    "DEFAULT_NAME_ATTRIBUTE",
    "LOGIN_ATTEMPTS_PREFIX",
    "OIDC_SCOPES",
    "SAML_ASSERTION_NS",
    "SAML_BINDING_POST",
    "SAML_BINDING_REDIRECT",
    "SAML_METADATA_NS",
    "SAML_NAMEID_EMAIL",
    "SAML_PROTOCOL_NS",
    "SEAT_REASON_SSO_JIT",
    "SSO_PROTOCOLS",
    "SSO_STATUS_ACTIVE",
    "SSO_STATUS_INACTIVE",
    "SUPERADMIN_ROLE",
    "SecurityEventType",
    "SsoProtocol",
    "SsoStatus",
]
