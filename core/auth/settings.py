"""Runtime settings for the identity engine, resolved from the environment."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from core.env import env_bool, env_first, env_float, env_int, env_str


@dataclass(frozen=True)
class AuthSettings:
    """Every tunable the auth components need, passed explicitly instead of read globally."""

    jwt_secret: str
    jwt_algorithm: str = "HS256"
    jwt_issuer: str = "chat-identity"
    jwt_audience: str = "chat-platform"
    access_token_ttl_seconds: int = 3600

    lockout_max_attempts: int = 5
    lockout_window_seconds: int = 15 * 60
    redis_url: Optional[str] = None
    redis_timeout_seconds: float = 2.0

    argon2_time_cost: int = 3
    argon2_memory_cost: int = 65536
    argon2_parallelism: int = 4

    demo_mode: bool = False

    sso_http_timeout_seconds: float = 10.0
    saml_clock_skew_seconds: int = 120
    sso_state_secret: Optional[str] = None
    sso_secret_encryption_key: Optional[str] = None
    sso_config_cache_ttl_seconds: int = 60
    default_return_url: str = "/"

    @classmethod
    def from_env(cls) -> "AuthSettings":
        secret = env_first("AUTH_JWT_SECRET", "AUTH_SECRET")
        if not secret:
            raise RuntimeError("AUTH_JWT_SECRET or AUTH_SECRET must be set.")
        return cls(
            jwt_secret=secret,
            jwt_algorithm=env_str("AUTH_JWT_ALG", "HS256"),
            jwt_issuer=env_str("AUTH_JWT_ISSUER", "chat-identity"),
            jwt_audience=env_str("AUTH_JWT_AUDIENCE", "chat-platform"),
            access_token_ttl_seconds=env_int("AUTH_ACCESS_TOKEN_TTL_SECONDS", 3600, minimum=60, maximum=86400),
            lockout_max_attempts=env_int("ACCOUNT_LOCKOUT_MAX_ATTEMPTS", 5, minimum=1, maximum=100),
            # Configured in minutes.
            lockout_window_seconds=env_int("ACCOUNT_LOCKOUT_DURATION", 15, minimum=1) * 60,
            redis_url=env_first("AUTH_LOCKOUT_REDIS_URL", "REDIS_URL"),
            redis_timeout_seconds=env_float("AUTH_REDIS_TIMEOUT_SECONDS", 2.0, minimum=0.1),
            argon2_time_cost=env_int("AUTH_ARGON2_TIME_COST", 3, minimum=1),
            argon2_memory_cost=env_int("AUTH_ARGON2_MEMORY_COST", 65536, minimum=8),
            argon2_parallelism=env_int("AUTH_ARGON2_PARALLELISM", 4, minimum=1),
            demo_mode=env_bool("DEMO_MODE", False),
            sso_http_timeout_seconds=env_float("SSO_HTTP_TIMEOUT_SECONDS", 10.0, minimum=1.0),
            saml_clock_skew_seconds=env_int("SSO_SAML_CLOCK_SKEW_SECONDS", 120, minimum=0),
            sso_state_secret=env_str("SSO_STATE_SECRET"),
            sso_secret_encryption_key=env_str("SSO_SECRET_ENCRYPTION_KEY"),
            sso_config_cache_ttl_seconds=env_int("SSO_CONFIG_CACHE_TTL_SECONDS", 60, minimum=0),
            default_return_url=env_str("SSO_DEFAULT_RETURN_URL", "/"),
        )


__all__ = ["AuthSettings"]
