"""Extract identity attributes from SAML assertions and OIDC ID tokens."""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from lxml import etree

from core.auth.constants import CLAIMS_EMAIL_URI, CLAIMS_NAME_URI
from core.logging import get_logger
from schemas.sso_config import OidcConfig, SamlConfig
from services.auth.common import (
    AssertionAttributes,
    InvalidIdTokenError,
    InvalidSamlResponseError,
    MissingEmailAttributeError,
)

logger = get_logger(__name__)

_MS_GROUPS_CLAIM = "http://schemas.microsoft.com/ws/2008/06/identity/claims/groups"

XmlPayload = Union[bytes, str, "etree._Element"]
UserinfoFetcher = Callable[[], Optional[Mapping[str, Any]]]


def secure_xml_parser() -> etree.XMLParser:
    return etree.XMLParser(resolve_entities=False, no_network=True, remove_comments=True)


def load_xml(payload: XmlPayload) -> "etree._Element":
    if isinstance(payload, etree._Element):
        return payload
    data = payload.encode("utf-8") if isinstance(payload, str) else payload
    try:
        return etree.fromstring(data, parser=secure_xml_parser())
    except etree.XMLSyntaxError as exc:
        raise InvalidSamlResponseError("SAML response is not well-formed XML.") from exc


def _local_name(element: "etree._Element") -> str:
    tag = element.tag
    if not isinstance(tag, str):
        return ""
    return etree.QName(tag).localname


def _text(element: "etree._Element") -> Optional[str]:
    value = "".join(element.itertext()).strip()
    return value or None


def _find_name_id(root: "etree._Element") -> Optional[str]:
    for element in root.iter():
        if _local_name(element) == "NameID":
            return _text(element)
    return None


def _collect_attributes(root: "etree._Element") -> List[Tuple[str, List[str]]]:
    attributes: List[Tuple[str, List[str]]] = []
    for element in root.iter():
        if _local_name(element) != "Attribute":
            continue
        name = element.get("Name") or element.get("FriendlyName")
        if not name:
            continue
        values = [
            text
            for child in element
            if _local_name(child) == "AttributeValue"
            for text in [_text(child)]
            if text
        ]
        attributes.append((name, values))
        friendly = element.get("FriendlyName")
        if friendly and friendly != name:
            attributes.append((friendly, values))
    return attributes


def _lookup(attributes: Sequence[Tuple[str, List[str]]], candidates: Sequence[Optional[str]]) -> Optional[str]:
    for candidate in candidates:
        if not candidate:
            continue
        wanted = candidate.lower()
        for name, values in attributes:
            if name.lower() == wanted and values:
                return values[0]
    return None


def _lookup_all(attributes: Sequence[Tuple[str, List[str]]], name: str) -> Optional[Tuple[str, ...]]:
    wanted = name.lower()
    for attr_name, values in attributes:
        if attr_name.lower() == wanted:
            return tuple(values) or None
    return None


def parse_saml(xml_payload: XmlPayload, config: SamlConfig) -> AssertionAttributes:
    """Pull subject, email, name and groups out of a SAML response or assertion.

    Attribute names are matched case-insensitively. When no email attribute is
    present the NameID is used, provided it looks like an address.
    """
    root = load_xml(xml_payload)
    subject = _find_name_id(root)
    attributes = _collect_attributes(root)

    email = _lookup(attributes, [config.email_attribute, "Email", "mail", CLAIMS_EMAIL_URI])
    if not email and subject and "@" in subject:
        email = subject
    if not email:
        raise MissingEmailAttributeError()

    name = _lookup(attributes, [config.name_attribute, "Name", CLAIMS_NAME_URI])
    groups = _lookup_all(attributes, config.groups_attribute)
    return AssertionAttributes(subject=subject or email, email=email.strip(), name=name, groups=groups)


def decode_id_token_claims(id_token: str) -> Dict[str, Any]:
    """Decode the payload segment of a compact JWT without checking its signature."""
    parts = (id_token or "").split(".")
    if len(parts) != 3:
        raise InvalidIdTokenError("ID token must have three segments.")
    segment = parts[1]
    padding = "=" * (-len(segment) % 4)
    try:
        raw = base64.urlsafe_b64decode(segment + padding)
        claims = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise InvalidIdTokenError("ID token payload is not valid base64url JSON.") from exc
    if not isinstance(claims, dict):
        raise InvalidIdTokenError("ID token payload is not a JSON object.")
    return claims


def _claim_text(claims: Mapping[str, Any], key: Optional[str]) -> Optional[str]:
    if not key:
        return None
    value = claims.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _claim_groups(claims: Mapping[str, Any], keys: Sequence[Optional[str]]) -> Optional[Tuple[str, ...]]:
    for key in keys:
        if not key or key not in claims:
            continue
        value = claims[key]
        if value is None:
            continue
        if isinstance(value, str):
            return (value,)
        if isinstance(value, (list, tuple)):
            return tuple(str(item) for item in value if item is not None and str(item)) or None
    return None


def _display_name(claims: Mapping[str, Any], config: OidcConfig) -> Optional[str]:
    name = _claim_text(claims, config.name_attribute) or _claim_text(claims, "name")
    if name:
        return name
    given = _claim_text(claims, "given_name")
    family = _claim_text(claims, "family_name")
    if given and family:
        return f"{given} {family}"
    return given


def parse_oidc_id_token(
    id_token: str,
    config: OidcConfig,
    userinfo_fetcher: Optional[UserinfoFetcher] = None,
) -> AssertionAttributes:
    claims = decode_id_token_claims(id_token)
    return attributes_from_claims(claims, config, userinfo_fetcher)


def attributes_from_claims(
    claims: Mapping[str, Any],
    config: OidcConfig,
    userinfo_fetcher: Optional[UserinfoFetcher] = None,
) -> AssertionAttributes:
    email = _claim_text(claims, config.email_attribute) or _claim_text(claims, "email")
    if not email:
        preferred = _claim_text(claims, "preferred_username")
        if preferred and "@" in preferred:
            email = preferred
    if not email:
        raise MissingEmailAttributeError()

    group_keys = [config.groups_attribute, "groups", _MS_GROUPS_CLAIM]
    groups = _claim_groups(claims, group_keys)
    if not groups and userinfo_fetcher is not None:
        try:
            userinfo = userinfo_fetcher()
        except Exception:
            logger.warning("Userinfo lookup failed; continuing with ID token claims only.", exc_info=True)
            userinfo = None
        if userinfo:
            groups = _claim_groups(userinfo, group_keys) or groups

    subject = _claim_text(claims, "sub") or email
    return AssertionAttributes(subject=subject, email=email, name=_display_name(claims, config), groups=groups)


__all__ = [
    "UserinfoFetcher",
    "attributes_from_claims",
    "decode_id_token_claims",
    "load_xml",
    "parse_oidc_id_token",
    "parse_saml",
    "secure_xml_parser",
]
