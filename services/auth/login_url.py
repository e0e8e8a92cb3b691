"""Build IdP redirect URLs for SP-initiated SSO logins."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Union
from urllib.parse import urlencode
from xml.sax.saxutils import quoteattr

import httpx
from lxml import etree
from xmltodict import parse as parse_xml

from core.auth.constants import (
    OIDC_SCOPES,
    SAML_ASSERTION_NS,
    SAML_BINDING_POST,
    SAML_BINDING_REDIRECT,
    SAML_METADATA_NS,
    SAML_NAMEID_EMAIL,
    SAML_PROTOCOL_NS,
)
from core.auth.settings import AuthSettings
from core.logging import get_logger
from schemas.sso_config import OidcConfig, SamlConfig
from services.auth.common import ConfigIncompleteError, InvalidSsoStateError, UnsupportedProtocolError

logger = get_logger(__name__)


@dataclass(frozen=True)
class LoginRedirect:
    url: str
    protocol: str
    state: str
    request_id: Optional[str] = None
    nonce: Optional[str] = None


def encode_state(payload: Mapping[str, Any], secret: Optional[str] = None) -> str:
    """base64url JSON; wrapped with an HMAC when a signing secret is configured."""
    body: Any = dict(payload)
    if secret:
        serialized = json.dumps(body, separators=(",", ":"), sort_keys=True)
        signature = hmac.new(secret.encode("utf-8"), serialized.encode("utf-8"), hashlib.sha256).hexdigest()
        body = {"p": body, "s": signature}
    blob = json.dumps(body, separators=(",", ":"), sort_keys=True)
    return base64.urlsafe_b64encode(blob.encode("utf-8")).decode("utf-8").rstrip("=")


def _decode_blob(token: str) -> Optional[Dict[str, Any]]:
    padding = "=" * (-len(token or "") % 4)
    try:
        raw = base64.urlsafe_b64decode((token or "") + padding).decode("utf-8")
        parsed = json.loads(raw)
    except (ValueError, binascii.Error):
        return None
    return parsed if isinstance(parsed, dict) else None


def decode_state(token: str, secret: Optional[str] = None) -> Dict[str, Any]:
    parsed = _decode_blob(token)
    if parsed is None:
        raise InvalidSsoStateError("SSO state is corrupted.")
    signed = set(parsed) == {"p", "s"} and isinstance(parsed["p"], dict)
    if not secret:
        return dict(parsed["p"]) if signed else parsed
    if not signed:
        raise InvalidSsoStateError("SSO state is not signed.")
    payload = parsed["p"]
    serialized = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    expected = hmac.new(secret.encode("utf-8"), serialized.encode("utf-8"), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(str(parsed["s"]), expected):
        raise InvalidSsoStateError("SSO state signature is invalid.")
    return dict(payload)


def decode_relay_state(relay_state: Optional[str], secret: Optional[str] = None) -> Dict[str, Any]:
    """RelayState is either an encoded state blob or a bare organisation slug."""
    value = (relay_state or "").strip()
    if not value:
        return {}
    if _decode_blob(value) is None:
        return {"orgSlug": value}
    return decode_state(value, secret)


def _collect_sso_services(node: Any, found: List[Mapping[str, Any]]) -> None:
    if isinstance(node, list):
        for item in node:
            _collect_sso_services(item, found)
        return
    if not isinstance(node, Mapping):
        return
    for key, value in node.items():
        if key.split(":")[-1] == "SingleSignOnService":
            found.extend(item for item in (value if isinstance(value, list) else [value]) if isinstance(item, Mapping))
        else:
            _collect_sso_services(value, found)


def sso_url_from_metadata(metadata_xml: Union[str, bytes]) -> Optional[str]:
    """Pick the IdP SingleSignOnService location, preferring the Redirect binding."""
    try:
        document = parse_xml(metadata_xml, process_namespaces=True, namespaces={SAML_METADATA_NS: None})
    except Exception as exc:
        raise ConfigIncompleteError("IdP metadata is not valid XML.") from exc
    services: List[Mapping[str, Any]] = []
    _collect_sso_services(document, services)
    for binding in (SAML_BINDING_REDIRECT, SAML_BINDING_POST):
        for service in services:
            if service.get("@Binding") == binding and service.get("@Location"):
                return str(service["@Location"])
    for service in services:
        if service.get("@Location"):
            return str(service["@Location"])
    return None


def build_authn_request(
    *,
    request_id: str,
    destination: str,
    acs_url: str,
    sp_entity_id: str,
    issue_instant: Optional[datetime] = None,
) -> bytes:
    instant = (issue_instant or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H:%M:%SZ")
    nsmap = {"samlp": SAML_PROTOCOL_NS, "saml": SAML_ASSERTION_NS}
    request = etree.Element(
        f"{{{SAML_PROTOCOL_NS}}}AuthnRequest",
        nsmap=nsmap,
        ID=request_id,
        Version="2.0",
        IssueInstant=instant,
        Destination=destination,
        AssertionConsumerServiceURL=acs_url,
        ProtocolBinding=SAML_BINDING_POST,
    )
    issuer = etree.SubElement(request, f"{{{SAML_ASSERTION_NS}}}Issuer")
    issuer.text = sp_entity_id
    etree.SubElement(request, f"{{{SAML_PROTOCOL_NS}}}NameIDPolicy", Format=SAML_NAMEID_EMAIL, AllowCreate="true")
    return etree.tostring(request, xml_declaration=False, encoding="utf-8")


def _append_query(url: str, params: Mapping[str, Any]) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"


class SsoLoginUrlBuilder:
    """Produces the IdP redirect for an organisation's SAML or OIDC config."""

    def __init__(self, settings: AuthSettings, *, http_client: Optional[httpx.Client] = None):
        self.settings = settings
        self._http_client = http_client

    def build_login_url(
        self,
        config: Union[SamlConfig, OidcConfig],
        return_url: Optional[str] = None,
        org_slug: Optional[str] = None,
    ) -> LoginRedirect:
        state_payload: Dict[str, Any] = {
            "orgId": str(config.org_id),
            "returnUrl": return_url or self.settings.default_return_url,
        }
        if org_slug:
            state_payload["orgSlug"] = org_slug
        if isinstance(config, SamlConfig):
            return self._build_saml(config, state_payload)
        if isinstance(config, OidcConfig):
            return self._build_oidc(config, state_payload)
        raise UnsupportedProtocolError(f"Unsupported SSO protocol: {getattr(config, 'protocol', None)!r}")

    def resolve_idp_sso_url(self, config: SamlConfig) -> Optional[str]:
        if config.idp_sso_url:
            return config.idp_sso_url
        if config.metadata_xml:
            return sso_url_from_metadata(config.metadata_xml)
        if config.metadata_url:
            return sso_url_from_metadata(self._fetch_metadata(config.metadata_url))
        return None

    def _fetch_metadata(self, url: str) -> bytes:
        try:
            if self._http_client is not None:
                response = self._http_client.get(url)
                response.raise_for_status()
                return response.content
            timeout = httpx.Timeout(self.settings.sso_http_timeout_seconds, connect=5.0)
            with httpx.Client(timeout=timeout) as client:
                response = client.get(url)
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as exc:
            logger.warning("Failed to fetch IdP metadata from %s: %s", url, exc)
            raise ConfigIncompleteError("IdP metadata could not be fetched.") from exc

    def _build_saml(self, config: SamlConfig, state_payload: Dict[str, Any]) -> LoginRedirect:
        if not config.sp_entity_id or not config.acs_url:
            raise ConfigIncompleteError("SAML configuration needs an SP entity id and an ACS URL.")
        if not (config.idp_sso_url or config.metadata_xml or config.metadata_url):
            raise ConfigIncompleteError("SAML configuration needs an IdP SSO URL or metadata.")
        idp_sso_url = self.resolve_idp_sso_url(config)
        if not idp_sso_url:
            raise ConfigIncompleteError("IdP metadata has no SingleSignOnService location.")
        request_id = f"_{secrets.token_hex(16)}"
        authn_request = build_authn_request(
            request_id=request_id,
            destination=idp_sso_url,
            acs_url=config.acs_url,
            sp_entity_id=config.sp_entity_id,
        )
        relay_state = encode_state(state_payload, self.settings.sso_state_secret)
        url = _append_query(
            idp_sso_url,
            {"SAMLRequest": base64.b64encode(authn_request).decode("ascii"), "RelayState": relay_state},
        )
        return LoginRedirect(url=url, protocol="SAML", state=relay_state, request_id=request_id)

    def _build_oidc(self, config: OidcConfig, state_payload: Dict[str, Any]) -> LoginRedirect:
        if not config.authorization_endpoint or not config.client_id or not config.acs_url:
            raise ConfigIncompleteError("OIDC configuration needs an authorization endpoint, client id and redirect URL.")
        nonce = secrets.token_urlsafe(16)
        state = encode_state({**state_payload, "nonce": nonce}, self.settings.sso_state_secret)
        params = {
            "client_id": config.client_id,
            "redirect_uri": config.acs_url,
            "response_type": "code",
            "scope": " ".join(OIDC_SCOPES),
            "state": state,
            "nonce": nonce,
        }
        return LoginRedirect(
            url=_append_query(config.authorization_endpoint, params),
            protocol="OIDC",
            state=state,
            nonce=nonce,
        )


def generate_sp_metadata(config: SamlConfig) -> str:
    """Return SP metadata XML for registering this service with an IdP."""
    if not (config.sp_entity_id and config.acs_url):
        raise ConfigIncompleteError("SAML configuration needs an SP entity id and an ACS URL.")
    metadata = f"""<?xml version="1.0" encoding="UTF-8"?>
<EntityDescriptor xmlns="{SAML_METADATA_NS}" entityID={quoteattr(config.sp_entity_id)}>
  <SPSSODescriptor AuthnRequestsSigned="false" WantAssertionsSigned="true" protocolSupportEnumeration="{SAML_PROTOCOL_NS}">
    <NameIDFormat>{SAML_NAMEID_EMAIL}</NameIDFormat>
    <AssertionConsumerService index="1" isDefault="true" Binding="{SAML_BINDING_POST}" Location={quoteattr(config.acs_url)}/>
  </SPSSODescriptor>
</EntityDescriptor>"""
    return metadata.strip()


__all__ = [
    "LoginRedirect",
    "SsoLoginUrlBuilder",
    "build_authn_request",
    "decode_relay_state",
    "decode_state",
    "encode_state",
    "generate_sp_metadata",
    "sso_url_from_metadata",
]
