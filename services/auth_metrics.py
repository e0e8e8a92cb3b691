"""Prometheus counters for password and SSO logins."""

from __future__ import annotations

from services.prometheus_helpers import build_counter

_PASSWORD_LOGIN_COUNTER = build_counter(
    "auth_password_login_total",
    "Password login attempts grouped by outcome.",
    ("result",),
)
_LOCKOUT_COUNTER = build_counter(
    "auth_account_lockouts_total",
    "Accounts locked after repeated failed logins.",
)
_SSO_LOGIN_COUNTER = build_counter(
    "sso_login_total",
    "SSO login attempts grouped by protocol and outcome.",
    ("protocol", "result"),
)


def record_password_login(result: str) -> None:
    if _PASSWORD_LOGIN_COUNTER is None:
        return
    _PASSWORD_LOGIN_COUNTER.labels(result=result).inc()


def record_account_lockout() -> None:
    if _LOCKOUT_COUNTER is None:
        return
    _LOCKOUT_COUNTER.inc()


def record_sso_login(protocol: str, success: bool) -> None:
    if _SSO_LOGIN_COUNTER is None:
        return
    result = "success" if success else "failure"
    _SSO_LOGIN_COUNTER.labels(protocol=protocol.lower(), result=result).inc()


__all__ = ["record_account_lockout", "record_password_login", "record_sso_login"]
