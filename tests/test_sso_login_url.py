import base64
import uuid
from dataclasses import replace
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from lxml import etree

from schemas.sso_config import OidcConfig, SamlConfig
from services.auth.common import ConfigIncompleteError, InvalidSsoStateError, UnsupportedProtocolError
from services.auth.login_url import (
    SsoLoginUrlBuilder,
    decode_relay_state,
    decode_state,
    encode_state,
    generate_sp_metadata,
    sso_url_from_metadata,
)

ORG_ID = uuid.uuid4()

IDP_METADATA = """<?xml version="1.0"?>
<md:EntityDescriptor xmlns:md="urn:oasis:names:tc:SAML:2.0:metadata" entityID="https://idp.example.com">
  <md:IDPSSODescriptor protocolSupportEnumeration="urn:oasis:names:tc:SAML:2.0:protocol">
    <md:SingleSignOnService Binding="urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST" Location="https://idp.example.com/sso/post"/>
    <md:SingleSignOnService Binding="urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect" Location="https://idp.example.com/sso/redirect"/>
  </md:IDPSSODescriptor>
</md:EntityDescriptor>"""


def _saml_config(**overrides) -> SamlConfig:
    values = dict(
        org_id=ORG_ID,
        status="ACTIVE",
        sp_entity_id="https://chat.example.com/saml/metadata",
        acs_url="https://chat.example.com/api/auth/saml/acs",
        idp_sso_url="https://idp.example.com/sso",
    )
    values.update(overrides)
    return SamlConfig(**values)


def _oidc_config(**overrides) -> OidcConfig:
    values = dict(
        org_id=ORG_ID,
        status="ACTIVE",
        acs_url="https://chat.example.com/api/auth/oidc/callback",
        authorization_endpoint="https://login.example.com/authorize",
        client_id="chat-client",
    )
    values.update(overrides)
    return OidcConfig(**values)


def _query(url: str) -> dict:
    return {key: values[0] for key, values in parse_qs(urlsplit(url).query).items()}


def test_saml_login_url_carries_authn_request_and_relay_state(auth_settings) -> None:
    redirect = SsoLoginUrlBuilder(auth_settings).build_login_url(_saml_config(), "/chats/42", "acme")

    assert redirect.url.startswith("https://idp.example.com/sso?")
    params = _query(redirect.url)
    request = etree.fromstring(base64.b64decode(params["SAMLRequest"]))
    assert etree.QName(request).localname == "AuthnRequest"
    assert request.get("AssertionConsumerServiceURL") == "https://chat.example.com/api/auth/saml/acs"
    assert request.get("ID") == redirect.request_id
    issuer = request.find("{urn:oasis:names:tc:SAML:2.0:assertion}Issuer")
    assert issuer.text == "https://chat.example.com/saml/metadata"
    state = decode_relay_state(params["RelayState"])
    assert state == {"orgId": str(ORG_ID), "returnUrl": "/chats/42", "orgSlug": "acme"}


def test_oidc_login_url_has_standard_parameters(auth_settings) -> None:
    redirect = SsoLoginUrlBuilder(auth_settings).build_login_url(_oidc_config())

    params = _query(redirect.url)
    assert params["client_id"] == "chat-client"
    assert params["redirect_uri"] == "https://chat.example.com/api/auth/oidc/callback"
    assert params["response_type"] == "code"
    assert params["scope"] == "openid email profile"
    assert params["nonce"] == redirect.nonce
    state = decode_state(params["state"])
    assert state["orgId"] == str(ORG_ID)
    assert state["returnUrl"] == "/"
    assert state["nonce"] == redirect.nonce


def test_existing_query_string_is_preserved(auth_settings) -> None:
    config = _oidc_config(authorization_endpoint="https://login.example.com/authorize?tenant=abc")

    redirect = SsoLoginUrlBuilder(auth_settings).build_login_url(config)

    assert redirect.url.startswith("https://login.example.com/authorize?tenant=abc&client_id=")


@pytest.mark.parametrize(
    "overrides",
    [
        {"sp_entity_id": None},
        {"acs_url": None},
        {"idp_sso_url": None},
    ],
)
def test_incomplete_saml_config_is_rejected(auth_settings, overrides) -> None:
    with pytest.raises(ConfigIncompleteError):
        SsoLoginUrlBuilder(auth_settings).build_login_url(_saml_config(**overrides))


@pytest.mark.parametrize(
    "overrides",
    [
        {"authorization_endpoint": None},
        {"client_id": None},
        {"acs_url": None},
    ],
)
def test_incomplete_oidc_config_is_rejected(auth_settings, overrides) -> None:
    with pytest.raises(ConfigIncompleteError):
        SsoLoginUrlBuilder(auth_settings).build_login_url(_oidc_config(**overrides))


def test_unknown_config_type_is_rejected(auth_settings) -> None:
    with pytest.raises(UnsupportedProtocolError):
        SsoLoginUrlBuilder(auth_settings).build_login_url(object())


def test_idp_url_is_read_from_inline_metadata(auth_settings) -> None:
    config = _saml_config(idp_sso_url=None, metadata_xml=IDP_METADATA)

    redirect = SsoLoginUrlBuilder(auth_settings).build_login_url(config)

    assert redirect.url.startswith("https://idp.example.com/sso/redirect?")


def test_idp_url_is_fetched_from_metadata_url(auth_settings) -> None:
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        return httpx.Response(200, content=IDP_METADATA.encode("utf-8"))

    client = httpx.Client(transport=httpx.MockTransport(handler))
    config = _saml_config(idp_sso_url=None, metadata_url="https://idp.example.com/metadata")

    redirect = SsoLoginUrlBuilder(auth_settings, http_client=client).build_login_url(config)

    assert requested == ["https://idp.example.com/metadata"]
    assert redirect.url.startswith("https://idp.example.com/sso/redirect?")


def test_metadata_fetch_failure_is_a_config_error(auth_settings) -> None:
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    config = _saml_config(idp_sso_url=None, metadata_url="https://idp.example.com/metadata")

    with pytest.raises(ConfigIncompleteError):
        SsoLoginUrlBuilder(auth_settings, http_client=client).build_login_url(config)


def test_metadata_post_binding_is_used_when_redirect_is_missing() -> None:
    metadata = IDP_METADATA.replace(
        '<md:SingleSignOnService Binding="urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect" '
        'Location="https://idp.example.com/sso/redirect"/>',
        "",
    )

    assert sso_url_from_metadata(metadata) == "https://idp.example.com/sso/post"


def test_signed_state_round_trip_and_tamper_detection() -> None:
    token = encode_state({"orgId": "o-1", "returnUrl": "/x"}, "state-secret")

    assert decode_state(token, "state-secret") == {"orgId": "o-1", "returnUrl": "/x"}
    with pytest.raises(InvalidSsoStateError):
        decode_state(token, "another-secret")
    with pytest.raises(InvalidSsoStateError):
        decode_state(encode_state({"orgId": "o-1"}), "state-secret")


def test_corrupted_state_is_rejected() -> None:
    with pytest.raises(InvalidSsoStateError):
        decode_state("%%%not-base64%%%")


def test_bare_relay_state_is_treated_as_org_slug() -> None:
    assert decode_relay_state("acme-corp") == {"orgSlug": "acme-corp"}
    assert decode_relay_state("") == {}


def test_signed_relay_state_uses_configured_secret(auth_settings) -> None:
    settings = replace(auth_settings, sso_state_secret="state-secret")

    redirect = SsoLoginUrlBuilder(settings).build_login_url(_saml_config())

    assert decode_relay_state(redirect.state, "state-secret")["orgId"] == str(ORG_ID)
    with pytest.raises(InvalidSsoStateError):
        decode_relay_state(redirect.state, "wrong-secret")


def test_sp_metadata_describes_the_acs_endpoint() -> None:
    metadata = generate_sp_metadata(_saml_config())

    root = etree.fromstring(metadata.encode("utf-8"))
    assert root.get("entityID") == "https://chat.example.com/saml/metadata"
    acs = root.find(".//{urn:oasis:names:tc:SAML:2.0:metadata}AssertionConsumerService")
    assert acs.get("Location") == "https://chat.example.com/api/auth/saml/acs"
    assert acs.get("Binding") == "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST"
