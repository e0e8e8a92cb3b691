"""Signature and condition checks for inbound SAML responses."""

from __future__ import annotations

import textwrap
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from lxml import etree
from signxml import XMLVerifier
from signxml.exceptions import InvalidInput, InvalidSignature

from core.auth.constants import SAML_ASSERTION_NS
from core.logging import get_logger
from schemas.sso_config import SamlConfig
from services.auth.assertions import XmlPayload, load_xml
from services.auth.common import InvalidSamlResponseError, SamlValidationError

logger = get_logger(__name__)

_DSIG_NS = "http://www.w3.org/2000/09/xmldsig#"
_ASSERTION_TAG = f"{{{SAML_ASSERTION_NS}}}Assertion"


def sanitize_certificate(pem_value: Optional[str]) -> Optional[str]:
    if not pem_value:
        return None
    lines = []
    for line in pem_value.strip().splitlines():
        stripped = line.strip()
        if "BEGIN CERTIFICATE" in stripped or "END CERTIFICATE" in stripped:
            continue
        if stripped:
            lines.append(stripped)
    return "".join(lines) or None


def build_pem_certificate(pem_value: Optional[str]) -> Optional[str]:
    body = sanitize_certificate(pem_value)
    if not body:
        return None
    wrapped = "\n".join(textwrap.wrap(body, 64)) or body
    return f"-----BEGIN CERTIFICATE-----\n{wrapped}\n-----END CERTIFICATE-----"


def parse_saml_instant(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    normalized = value.strip()
    if not normalized:
        return None
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _local_name(element: "etree._Element") -> str:
    return etree.QName(element.tag).localname if isinstance(element.tag, str) else ""


def _children(element: "etree._Element", name: str) -> Iterable["etree._Element"]:
    return (child for child in element if _local_name(child) == name)


def _first_child(element: "etree._Element", name: str) -> Optional["etree._Element"]:
    return next(iter(_children(element, name)), None)


def _verify_signature(root: "etree._Element", cert_pem: str) -> "etree._Element":
    """Verify the Response signature, falling back to a signed Assertion."""
    verifier = XMLVerifier()
    try:
        return verifier.verify(root, x509_cert=cert_pem, expect_references=1).signed_xml
    except (InvalidSignature, InvalidInput) as exc:
        assertion = root if root.tag == _ASSERTION_TAG else root.find(f".//{_ASSERTION_TAG}")
        has_assertion_signature = (
            assertion is not None
            and assertion is not root
            and assertion.find(f"{{{_DSIG_NS}}}Signature") is not None
        )
        if has_assertion_signature:
            try:
                return verifier.verify(assertion, x509_cert=cert_pem, expect_references=1).signed_xml
            except (InvalidSignature, InvalidInput) as inner_exc:
                exc = inner_exc
        raise SamlValidationError("SAML signature verification failed.") from exc


def _check_issuer(element: "etree._Element", config: SamlConfig, *, source: str) -> None:
    issuer_el = _first_child(element, "Issuer")
    if issuer_el is None or not config.idp_entity_id:
        return
    issuer = (issuer_el.text or "").strip()
    if issuer and issuer != config.idp_entity_id:
        raise SamlValidationError(f"{source} issuer does not match the configured IdP.")


def _check_conditions(assertion: "etree._Element", config: SamlConfig, now: datetime, skew: timedelta) -> None:
    conditions = _first_child(assertion, "Conditions")
    if conditions is None:
        return
    not_before = parse_saml_instant(conditions.get("NotBefore"))
    if not_before and now + skew < not_before:
        raise SamlValidationError("SAML assertion is not yet valid.")
    not_on_or_after = parse_saml_instant(conditions.get("NotOnOrAfter"))
    if not_on_or_after and now - skew >= not_on_or_after:
        raise SamlValidationError("SAML assertion has expired.")
    audiences = [
        (audience.text or "").strip()
        for restriction in _children(conditions, "AudienceRestriction")
        for audience in _children(restriction, "Audience")
    ]
    audiences = [value for value in audiences if value]
    if audiences and config.sp_entity_id and config.sp_entity_id not in audiences:
        raise SamlValidationError("SAML audience does not match this service provider.")


def verify_saml_response(
    xml_payload: XmlPayload,
    config: SamlConfig,
    *,
    clock_skew_seconds: int = 120,
    now: Optional[datetime] = None,
) -> "etree._Element":
    """Return the signed portion of the response once every check has passed.

    A response is only accepted unsigned when the organisation has no IdP
    certificate and has explicitly opted in with ``allow_unsigned_assertions``.
    """
    root = load_xml(xml_payload)
    if _local_name(root) not in {"Response", "Assertion"}:
        raise InvalidSamlResponseError("SAML payload is neither a Response nor an Assertion.")

    cert_pem = build_pem_certificate(config.idp_certificate)
    if cert_pem:
        verified = _verify_signature(root, cert_pem)
    elif config.allow_unsigned_assertions:
        logger.warning("Accepting unsigned SAML response for org %s (explicit opt-in).", config.org_id)
        verified = root
    else:
        raise SamlValidationError("No IdP certificate configured; refusing unsigned SAML response.")

    if _local_name(root) == "Response":
        destination = root.get("Destination")
        if destination and config.acs_url and destination.rstrip("/") != config.acs_url.rstrip("/"):
            raise SamlValidationError("SAML destination does not match the ACS URL.")
        _check_issuer(root, config, source="Response")

    if _local_name(verified) == "Assertion":
        assertion = verified
    else:
        assertion = next((el for el in verified.iter() if _local_name(el) == "Assertion"), None)
    if assertion is None:
        raise InvalidSamlResponseError("SAML response does not contain an assertion.")

    current = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    skew = timedelta(seconds=clock_skew_seconds)
    issue_instant = parse_saml_instant(assertion.get("IssueInstant"))
    if issue_instant and issue_instant - skew > current:
        raise SamlValidationError("SAML assertion was issued in the future.")
    _check_issuer(assertion, config, source="Assertion")
    _check_conditions(assertion, config, current, skew)
    return verified


__all__ = [
    "build_pem_certificate",
    "parse_saml_instant",
    "sanitize_certificate",
    "verify_saml_response",
]
