import base64
import json
import uuid

import pytest

from schemas.sso_config import OidcConfig, SamlConfig
from services.auth.assertions import (
    attributes_from_claims,
    decode_id_token_claims,
    parse_oidc_id_token,
    parse_saml,
)
from services.auth.common import InvalidIdTokenError, InvalidSamlResponseError, MissingEmailAttributeError

ORG_ID = uuid.uuid4()


def _saml_config(**overrides) -> SamlConfig:
    return SamlConfig(org_id=ORG_ID, status="ACTIVE", **overrides)


def _oidc_config(**overrides) -> OidcConfig:
    return OidcConfig(org_id=ORG_ID, status="ACTIVE", **overrides)


def _assertion(name_id: str, attributes: str = "") -> str:
    return f"""
<samlp:Response xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol"
                xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion" ID="_r1" Version="2.0">
  <saml:Assertion ID="_a1" Version="2.0">
    <saml:Subject><saml:NameID>{name_id}</saml:NameID></saml:Subject>
    <saml:AttributeStatement>{attributes}</saml:AttributeStatement>
  </saml:Assertion>
</samlp:Response>
""".strip()


def _attribute(name: str, *values: str, friendly: str = "") -> str:
    friendly_attr = f' FriendlyName="{friendly}"' if friendly else ""
    body = "".join(f"<saml:AttributeValue>{value}</saml:AttributeValue>" for value in values)
    return f'<saml:Attribute Name="{name}"{friendly_attr}>{body}</saml:Attribute>'


def _id_token(claims: dict) -> str:
    def _segment(payload: dict) -> str:
        return base64.urlsafe_b64encode(json.dumps(payload).encode("utf-8")).decode("ascii").rstrip("=")

    return f"{_segment({'alg': 'none'})}.{_segment(claims)}.signature"


def test_saml_attributes_are_extracted() -> None:
    xml = _assertion(
        "user-123",
        _attribute("email", "alice@example.com")
        + _attribute("name", "Alice Example")
        + _attribute("groups", "engineering", "admins"),
    )

    attributes = parse_saml(xml, _saml_config())

    assert attributes.subject == "user-123"
    assert attributes.email == "alice@example.com"
    assert attributes.name == "Alice Example"
    assert attributes.groups == ("engineering", "admins")


def test_saml_attribute_names_match_case_insensitively() -> None:
    xml = _assertion("user-123", _attribute("EMAILADDRESS", "bob@example.com"))

    attributes = parse_saml(xml, _saml_config(email_attribute="emailAddress"))

    assert attributes.email == "bob@example.com"


def test_saml_falls_back_to_well_known_email_claims() -> None:
    xml = _assertion(
        "user-123",
        _attribute("http://schemas.xmlsoap.org/ws/2005/05/identity/claims/emailaddress", "carol@example.com"),
    )

    assert parse_saml(xml, _saml_config()).email == "carol@example.com"


def test_saml_friendly_name_is_an_alias() -> None:
    xml = _assertion("user-123", _attribute("urn:oid:0.9.2342.19200300.100.1.3", "dave@example.com", friendly="mail"))

    assert parse_saml(xml, _saml_config(email_attribute="mail")).email == "dave@example.com"


def test_saml_email_falls_back_to_name_id() -> None:
    attributes = parse_saml(_assertion("erin@example.com"), _saml_config())

    assert attributes.email == "erin@example.com"
    assert attributes.groups is None


def test_saml_without_any_email_is_rejected() -> None:
    with pytest.raises(MissingEmailAttributeError):
        parse_saml(_assertion("opaque-id"), _saml_config())


def test_saml_malformed_xml_is_rejected() -> None:
    with pytest.raises(InvalidSamlResponseError):
        parse_saml(b"<not-xml", _saml_config())


def test_saml_groups_attribute_without_values_is_absent() -> None:
    xml = _assertion("frank@example.com", _attribute("groups"))

    assert parse_saml(xml, _saml_config()).groups is None


def test_oidc_claims_are_extracted() -> None:
    token = _id_token(
        {
            "sub": "oidc-sub-1",
            "email": "gina@example.com",
            "given_name": "Gina",
            "family_name": "Example",
            "groups": ["eng"],
        }
    )

    attributes = parse_oidc_id_token(token, _oidc_config())

    assert attributes.subject == "oidc-sub-1"
    assert attributes.email == "gina@example.com"
    assert attributes.name == "Gina Example"
    assert attributes.groups == ("eng",)


def test_oidc_email_falls_back_to_preferred_username() -> None:
    token = _id_token({"sub": "s", "preferred_username": "hank@example.com"})

    attributes = parse_oidc_id_token(token, _oidc_config())

    assert attributes.email == "hank@example.com"
    assert attributes.groups is None


def test_oidc_without_email_is_rejected() -> None:
    with pytest.raises(MissingEmailAttributeError):
        parse_oidc_id_token(_id_token({"sub": "s", "preferred_username": "not-an-email"}), _oidc_config())


@pytest.mark.parametrize("token", ["only.two", "a.b.c.d", "head.%%%.sig", "head." + base64.urlsafe_b64encode(b"[1]").decode() + ".sig"])
def test_malformed_id_tokens_are_rejected(token: str) -> None:
    with pytest.raises(InvalidIdTokenError):
        decode_id_token_claims(token)


def test_userinfo_supplies_missing_groups() -> None:
    calls = []

    def fetcher():
        calls.append(True)
        return {"groups": ["support"]}

    attributes = attributes_from_claims({"sub": "s", "email": "ivy@example.com"}, _oidc_config(), fetcher)

    assert attributes.groups == ("support",)
    assert calls == [True]


def test_userinfo_failures_do_not_break_login() -> None:
    def fetcher():
        raise RuntimeError("userinfo down")

    attributes = attributes_from_claims({"sub": "s", "email": "jack@example.com"}, _oidc_config(), fetcher)

    assert attributes.email == "jack@example.com"
    assert attributes.groups is None


def test_microsoft_groups_claim_is_recognised() -> None:
    claims = {
        "sub": "s",
        "email": "kim@example.com",
        "http://schemas.microsoft.com/ws/2008/06/identity/claims/groups": ["g-1", "g-2"],
    }

    assert attributes_from_claims(claims, _oidc_config()).groups == ("g-1", "g-2")


def test_oidc_empty_groups_claim_is_absent() -> None:
    attributes = attributes_from_claims({"sub": "s", "email": "lee@example.com", "groups": []}, _oidc_config())

    assert attributes.groups is None
