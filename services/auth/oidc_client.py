"""HTTP side of the OIDC authorization-code flow."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Optional

import httpx
import jwt

from core.logging import get_logger
from schemas.sso_config import OidcConfig
from services.auth.common import InvalidIdTokenError, OidcExchangeFailedError

logger = get_logger(__name__)

_JWKS_SUFFIX = "/.well-known/jwks.json"
_ALLOWED_ID_TOKEN_ALGS = ["RS256", "RS384", "RS512", "ES256", "ES384", "PS256"]


@dataclass(frozen=True)
class OidcTokens:
    id_token: str
    access_token: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


def userinfo_url(config: OidcConfig) -> Optional[str]:
    """Explicit endpoint, else derived from a ``/.well-known/jwks.json`` JWKS URI."""
    if config.userinfo_endpoint:
        return config.userinfo_endpoint
    if config.jwks_uri and config.jwks_uri.endswith(_JWKS_SUFFIX):
        return config.jwks_uri[: -len(_JWKS_SUFFIX)] + "/userinfo"
    return None


class OidcClient:
    """Token exchange, userinfo lookup and ID-token signature checks over httpx."""

    def __init__(self, *, timeout_seconds: float = 10.0, http_client: Optional[httpx.Client] = None):
        self.timeout = httpx.Timeout(timeout_seconds, connect=5.0)
        self._http_client = http_client

    @contextmanager
    def _client(self) -> Iterator[httpx.Client]:
        if self._http_client is not None:
            yield self._http_client
            return
        with httpx.Client(timeout=self.timeout) as client:
            yield client

    def exchange_code(self, config: OidcConfig, code: str, client_secret: str) -> OidcTokens:
        token_request = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": config.acs_url,
            "client_id": config.client_id,
            "client_secret": client_secret,
        }
        try:
            with self._client() as client:
                response = client.post(
                    config.token_endpoint,
                    data=token_request,
                    headers={"Accept": "application/json"},
                )
                response.raise_for_status()
                token_data = response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "OIDC token exchange for org %s failed with status %s.",
                config.org_id,
                exc.response.status_code,
            )
            raise OidcExchangeFailedError(
                f"Token endpoint returned {exc.response.status_code}.",
                extra={"status": exc.response.status_code},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("OIDC token exchange for org %s failed: %s", config.org_id, exc)
            raise OidcExchangeFailedError("Could not reach the token endpoint.") from exc
        except ValueError as exc:
            raise OidcExchangeFailedError("Token endpoint returned invalid JSON.") from exc
        if not isinstance(token_data, dict):
            raise OidcExchangeFailedError("Token endpoint returned invalid JSON.")
        id_token = token_data.get("id_token")
        if not id_token:
            raise OidcExchangeFailedError("Token response did not include an id_token.")
        return OidcTokens(id_token=str(id_token), access_token=token_data.get("access_token"), raw=token_data)

    def fetch_userinfo(self, url: str, access_token: Optional[str]) -> Optional[Mapping[str, Any]]:
        """Best-effort; any failure yields ``None``."""
        if not url or not access_token:
            return None
        try:
            with self._client() as client:
                response = client.get(url, headers={"Authorization": f"Bearer {access_token}"})
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("OIDC userinfo lookup at %s failed: %s", url, exc)
            return None
        return payload if isinstance(payload, dict) else None

    def verify_id_token(self, id_token: str, config: OidcConfig) -> Dict[str, Any]:
        """Check the ID token signature against the IdP JWKS, plus audience and issuer."""
        if not config.jwks_uri:
            raise InvalidIdTokenError("No JWKS URI configured for signature verification.")
        try:
            header = jwt.get_unverified_header(id_token)
        except jwt.InvalidTokenError as exc:
            raise InvalidIdTokenError("ID token header is malformed.") from exc
        try:
            with self._client() as client:
                response = client.get(config.jwks_uri)
                response.raise_for_status()
                jwks = jwt.PyJWKSet.from_dict(response.json())
        except (httpx.HTTPError, ValueError, jwt.PyJWKError, jwt.PyJWKSetError) as exc:
            logger.warning("Fetching JWKS for org %s failed: %s", config.org_id, exc)
            raise InvalidIdTokenError("Could not load the IdP signing keys.") from exc

        kid = header.get("kid")
        keys = [key for key in jwks.keys if kid is None or key.key_id == kid]
        if not keys:
            raise InvalidIdTokenError("No IdP signing key matches the ID token.")
        options = {"verify_aud": bool(config.client_id)}
        try:
            return jwt.decode(
                id_token,
                keys[0].key,
                algorithms=_ALLOWED_ID_TOKEN_ALGS,
                audience=config.client_id,
                issuer=config.issuer,
                options=options,
            )
        except jwt.InvalidTokenError as exc:
            raise InvalidIdTokenError(f"ID token verification failed: {exc}") from exc


__all__ = ["OidcClient", "OidcTokens", "userinfo_url"]
