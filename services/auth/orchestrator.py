"""Single entry point used by the HTTP layer for every login path."""

from __future__ import annotations

import uuid
from contextlib import nullcontext
from typing import Any, Dict, Optional

from schemas.sso_config import SamlConfig
from services.auth.common import (
    AssertionAttributes,
    RequestContext,
    SsoConfigStore,
    SsoInactiveError,
    SsoNotConfiguredError,
    UnsupportedProtocolError,
)
from services.auth.login_url import LoginRedirect, SsoLoginUrlBuilder, generate_sp_metadata
from services.auth.password import CredentialValidator
from services.auth.sso import SsoCallbackHandler, SsoLoginResult, TransactionFactory
from services.auth.tokens import SessionToken, TokenIssuer


class AuthOrchestrator:
    def __init__(
        self,
        validator: CredentialValidator,
        tokens: TokenIssuer,
        login_urls: SsoLoginUrlBuilder,
        sso: SsoCallbackHandler,
        configs: SsoConfigStore,
        *,
        transaction: Optional[TransactionFactory] = None,
    ):
        self.validator = validator
        self.tokens = tokens
        self.login_urls = login_urls
        self.sso = sso
        self.configs = configs
        self.transaction = transaction or nullcontext

    def validate_credentials(
        self,
        email: str,
        password: str,
        context: Optional[RequestContext] = None,
    ) -> SessionToken:
        with self.transaction():
            user = self.validator.validate(email, password, context)
        return self.tokens.issue(user)

    def handle_sso_callback(
        self,
        org_id: uuid.UUID,
        attributes: AssertionAttributes,
        *,
        return_url: Optional[str] = None,
    ) -> SsoLoginResult:
        return self.sso.handle_sso_callback(org_id, attributes, return_url=return_url)

    def handle_saml_callback(
        self,
        saml_response: Optional[str],
        relay_state: Optional[str] = None,
        *,
        org_id: Optional[uuid.UUID] = None,
    ) -> SsoLoginResult:
        return self.sso.handle_saml_callback(saml_response, relay_state, org_id=org_id)

    def handle_oidc_callback(
        self,
        code: Optional[str],
        state: Optional[str],
        *,
        error: Optional[str] = None,
        error_description: Optional[str] = None,
        org_id: Optional[uuid.UUID] = None,
    ) -> SsoLoginResult:
        return self.sso.handle_oidc_callback(
            code,
            state,
            error=error,
            error_description=error_description,
            org_id=org_id,
        )

    def _org_id_for(self, org_id: Optional[uuid.UUID], org_slug: Optional[str]) -> uuid.UUID:
        if org_id is not None:
            return org_id
        resolved = self.configs.resolve_org_id(org_slug) if org_slug else None
        if resolved is None:
            raise SsoNotConfiguredError("Organization not found.")
        return resolved

    def build_sso_login_url(
        self,
        *,
        org_id: Optional[uuid.UUID] = None,
        org_slug: Optional[str] = None,
        return_url: Optional[str] = None,
    ) -> LoginRedirect:
        target = self._org_id_for(org_id, org_slug)
        config = self.configs.get_for_org(target)
        if config is None:
            raise SsoNotConfiguredError()
        if not config.is_active:
            raise SsoInactiveError()
        return self.login_urls.build_login_url(config, return_url, org_slug)

    def sp_metadata(self, *, org_id: Optional[uuid.UUID] = None, org_slug: Optional[str] = None) -> str:
        config = self.configs.get_for_org(self._org_id_for(org_id, org_slug))
        if config is None:
            raise SsoNotConfiguredError()
        if not isinstance(config, SamlConfig):
            raise UnsupportedProtocolError("Organization is not configured for SAML.")
        return generate_sp_metadata(config)

    def refresh(self, token: str) -> SessionToken:
        claims: Dict[str, Any] = self.tokens.decode(token)
        return self.tokens.refresh(claims)


__all__ = ["AuthOrchestrator"]
