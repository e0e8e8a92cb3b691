"""SAML/OIDC callback handling: from IdP response to session token."""

from __future__ import annotations

import base64
import binascii
import uuid
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, ContextManager, Dict, Iterator, Mapping, Optional, Union

from core.auth.settings import AuthSettings
from core.logging import get_logger
from schemas.sso_config import OidcConfig, SamlConfig
from services.auth.assertions import attributes_from_claims, decode_id_token_claims, parse_saml
from services.auth.common import (
    AssertionAttributes,
    AuthServiceError,
    ConfigIncompleteError,
    InvalidIdTokenError,
    InvalidSamlResponseError,
    InvalidSsoStateError,
    MembershipRecord,
    OidcExchangeFailedError,
    SecretResolver,
    SecurityEventSink,
    SsoConfigStore,
    SsoFlowState,
    SsoInactiveError,
    SsoNotConfiguredError,
    UnsupportedProtocolError,
    UserRecord,
    mask_email,
)
from services.auth.login_url import decode_relay_state, decode_state
from services.auth.oidc_client import OidcClient, userinfo_url
from services.auth.provisioning import IdentityReconciler
from services.auth.saml_security import verify_saml_response
from services.auth.tokens import SessionToken, TokenIssuer
from services.auth_metrics import record_sso_login

logger = get_logger(__name__)

SsoConfig = Union[SamlConfig, OidcConfig]
TransactionFactory = Callable[[], ContextManager[Any]]


@dataclass(frozen=True)
class SsoLoginResult:
    token: SessionToken
    user: UserRecord
    membership: MembershipRecord
    org_id: uuid.UUID
    protocol: str
    redirect_url: str
    user_created: bool = False
    flow_state: SsoFlowState = SsoFlowState.TOKEN_ISSUED


class _FlowTrace:
    def __init__(self, protocol: str):
        self.protocol = protocol
        self.state = SsoFlowState.IDLE
        self.org_id: Optional[uuid.UUID] = None

    def advance(self, state: SsoFlowState) -> None:
        logger.debug("SSO %s flow %s -> %s (org=%s).", self.protocol, self.state.value, state.value, self.org_id)
        self.state = state


def safe_return_url(value: Optional[str], default: str) -> str:
    """Only same-site relative paths are honoured as post-login redirects."""
    candidate = (value or "").strip()
    if not candidate.startswith("/") or candidate.startswith("//") or "\\" in candidate:
        return default
    return candidate


class SsoCallbackHandler:
    def __init__(
        self,
        settings: AuthSettings,
        configs: SsoConfigStore,
        reconciler: IdentityReconciler,
        tokens: TokenIssuer,
        *,
        oidc_client: Optional[OidcClient] = None,
        secrets: Optional[SecretResolver] = None,
        events: Optional[SecurityEventSink] = None,
        transaction: Optional[TransactionFactory] = None,
    ):
        self.settings = settings
        self.configs = configs
        self.reconciler = reconciler
        self.tokens = tokens
        self.oidc_client = oidc_client or OidcClient(timeout_seconds=settings.sso_http_timeout_seconds)
        self.secrets = secrets
        self.events = events
        self.transaction = transaction or nullcontext

    @contextmanager
    def _flow(self, protocol: str) -> Iterator[_FlowTrace]:
        trace = _FlowTrace(protocol)
        try:
            yield trace
        except AuthServiceError as exc:
            exc.flow_state = trace.state
            trace.advance(SsoFlowState.FAILED)
            record_sso_login(protocol, False)
            self._log(
                "sso_login_failed",
                protocol=protocol,
                org_id=str(trace.org_id) if trace.org_id else None,
                reason=exc.code,
                flow_state=exc.flow_state.value,
            )
            raise

    def _log(self, event: str, **metadata: Any) -> None:
        if self.events is not None:
            self.events.log(event, **metadata)

    def _load_config(self, org_id: uuid.UUID) -> SsoConfig:
        config = self.configs.get_for_org(org_id)
        if config is None:
            raise SsoNotConfiguredError()
        return config

    def _resolve_org(self, org_id: Optional[uuid.UUID], state: Mapping[str, Any]) -> uuid.UUID:
        if org_id is not None:
            return org_id
        raw_org_id = state.get("orgId")
        if raw_org_id:
            try:
                return uuid.UUID(str(raw_org_id))
            except ValueError:
                raise InvalidSsoStateError("SSO state carries an invalid organization id.") from None
        slug = state.get("orgSlug")
        if slug:
            resolved = self.configs.resolve_org_id(str(slug))
            if resolved is not None:
                return resolved
        raise SsoNotConfiguredError("Could not determine the organization for this SSO callback.")

    def handle_sso_callback(
        self,
        org_id: uuid.UUID,
        attributes: AssertionAttributes,
        *,
        return_url: Optional[str] = None,
    ) -> SsoLoginResult:
        """Complete a login from attributes an upstream layer already extracted."""
        config = self.configs.get_for_org(org_id)
        protocol = config.protocol if config is not None else "unknown"
        with self._flow(protocol) as trace:
            trace.org_id = org_id
            trace.advance(SsoFlowState.ATTRIBUTES_EXTRACTED)
            if config is None:
                raise SsoNotConfiguredError()
            return self._complete(trace, org_id, attributes, config, return_url)

    def handle_saml_callback(
        self,
        saml_response: Optional[str],
        relay_state: Optional[str] = None,
        *,
        org_id: Optional[uuid.UUID] = None,
    ) -> SsoLoginResult:
        with self._flow("SAML") as trace:
            trace.advance(SsoFlowState.CALLBACK_RECEIVED)
            if not saml_response:
                raise InvalidSamlResponseError("SAMLResponse is missing.")
            try:
                xml_payload = base64.b64decode("".join(saml_response.split()), validate=True)
            except (binascii.Error, ValueError) as exc:
                raise InvalidSamlResponseError("SAMLResponse is not valid base64.") from exc

            relay = decode_relay_state(relay_state, self.settings.sso_state_secret)
            trace.org_id = self._resolve_org(org_id, relay)
            config = self._load_config(trace.org_id)
            if not isinstance(config, SamlConfig):
                raise UnsupportedProtocolError("Organization is not configured for SAML.")
            if not config.is_active:
                raise SsoInactiveError()

            verified = verify_saml_response(
                xml_payload,
                config,
                clock_skew_seconds=self.settings.saml_clock_skew_seconds,
            )
            attributes = parse_saml(verified, config)
            trace.advance(SsoFlowState.ATTRIBUTES_EXTRACTED)
            return self._complete(trace, trace.org_id, attributes, config, relay.get("returnUrl"))

    def handle_oidc_callback(
        self,
        code: Optional[str],
        state: Optional[str],
        *,
        error: Optional[str] = None,
        error_description: Optional[str] = None,
        org_id: Optional[uuid.UUID] = None,
    ) -> SsoLoginResult:
        with self._flow("OIDC") as trace:
            trace.advance(SsoFlowState.CALLBACK_RECEIVED)
            if error:
                raise OidcExchangeFailedError(
                    f"Identity provider returned an error: {error}",
                    extra={"error": error, "error_description": error_description},
                )
            if not code:
                raise OidcExchangeFailedError("Authorization code is missing.")
            if not state and org_id is None:
                raise InvalidSsoStateError("SSO state is missing.")

            payload: Dict[str, Any] = decode_state(state, self.settings.sso_state_secret) if state else {}
            trace.org_id = self._resolve_org(org_id, payload)
            config = self._load_config(trace.org_id)
            if not isinstance(config, OidcConfig):
                raise UnsupportedProtocolError("Organization is not configured for OIDC.")
            if not config.is_active:
                raise SsoInactiveError()
            if not (config.token_endpoint and config.client_id and config.acs_url):
                raise ConfigIncompleteError("OIDC configuration needs a token endpoint, client id and redirect URL.")
            client_secret = self.secrets.resolve(trace.org_id) if self.secrets is not None else None
            if not client_secret:
                raise ConfigIncompleteError("No OIDC client secret is available for this organization.")

            tokens = self.oidc_client.exchange_code(config, code, client_secret)
            if config.jwks_uri:
                claims = self.oidc_client.verify_id_token(tokens.id_token, config)
            else:
                claims = decode_id_token_claims(tokens.id_token)
            expected_nonce = payload.get("nonce")
            if expected_nonce and claims.get("nonce") != expected_nonce:
                raise InvalidIdTokenError("ID token nonce does not match the login request.")

            info_url = userinfo_url(config)
            fetcher = None
            if info_url and tokens.access_token:
                fetcher = partial(self.oidc_client.fetch_userinfo, info_url, tokens.access_token)
            attributes = attributes_from_claims(claims, config, fetcher)
            trace.advance(SsoFlowState.ATTRIBUTES_EXTRACTED)
            return self._complete(trace, trace.org_id, attributes, config, payload.get("returnUrl"))

    def _complete(
        self,
        trace: _FlowTrace,
        org_id: uuid.UUID,
        attributes: AssertionAttributes,
        config: SsoConfig,
        return_url: Optional[str],
    ) -> SsoLoginResult:
        with self.transaction():
            provisioned = self.reconciler.reconcile(org_id, attributes, config)
        trace.advance(SsoFlowState.RECONCILED)
        token = self.tokens.issue(provisioned.user)
        trace.advance(SsoFlowState.TOKEN_ISSUED)
        record_sso_login(config.protocol, True)
        self._log(
            "sso_login_success",
            protocol=config.protocol,
            org_id=str(org_id),
            email=mask_email(provisioned.user.email),
            user_created=provisioned.user_created,
        )
        return SsoLoginResult(
            token=token,
            user=provisioned.user,
            membership=provisioned.membership,
            org_id=org_id,
            protocol=config.protocol,
            redirect_url=safe_return_url(return_url, self.settings.default_return_url),
            user_created=provisioned.user_created,
            flow_state=trace.state,
        )


__all__ = ["SsoCallbackHandler", "SsoLoginResult", "safe_return_url"]
