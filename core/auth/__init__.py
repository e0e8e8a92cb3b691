"""Auth-related shared utilities."""

from .constants import (
    DEFAULT_MEMBER_ROLE,
    SSO_PROTOCOLS,
    SSO_STATUS_ACTIVE,
    SSO_STATUS_INACTIVE,
    SUPERADMIN_ROLE,
    SecurityEventType,
    SsoProtocol,
    SsoStatus,
)
from .settings import AuthSettings

__all__ = [
    "AuthSettings",
    "DEFAULT_MEMBER_ROLE",
    "SSO_PROTOCOLS",
    "SSO_STATUS_ACTIVE",
    "SSO_STATUS_INACTIVE",
    "SUPERADMIN_ROLE",
    "SecurityEventType",
    "SsoProtocol",
    "SsoStatus",
]
