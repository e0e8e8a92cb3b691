"""Helpers for storing and loading per-organisation SSO configuration."""

from __future__ import annotations

import uuid
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import ValidationError
from sqlalchemy import event, select
from sqlalchemy.orm import Session

from core.auth.constants import SSO_PROTOCOLS, SSO_STATUS_ACTIVE, SSO_STATUS_INACTIVE
from core.logging import get_logger
from models.org import Org
from models.sso_config import SsoConfigRecord
from schemas.sso_config import SSO_CONFIG_ADAPTER, OidcConfig, SamlConfig
from services.auth.common import ConfigIncompleteError, UnsupportedProtocolError
from services.sso_config_cache import invalidate_sso_config_cache
from services.sso_secrets import encrypt_client_secret

logger = get_logger(__name__)

# Columns that never flow into the typed config (identity, bookkeeping, secrets).
_INTERNAL_COLUMNS = frozenset({"id", "created_at", "updated_at", "client_secret_encrypted"})
_MUTABLE_COLUMNS = frozenset(
    column.name
    for column in SsoConfigRecord.__table__.columns
    if column.name not in _INTERNAL_COLUMNS | {"org_id", "protocol"}
)


def _normalize_protocol(protocol: Optional[str]) -> str:
    candidate = (protocol or "").strip().upper()
    if candidate not in SSO_PROTOCOLS:
        raise UnsupportedProtocolError(f"Unsupported SSO protocol: {protocol!r}")
    return candidate


def _normalize_slug(slug: str) -> str:
    return (slug or "").strip().lower()


_PENDING_INVALIDATIONS = "sso_config_pending_invalidations"


def _invalidate_after_transaction(session: Session, org_id: uuid.UUID) -> None:
    """Drop cached config now and again once the surrounding transaction ends.

    A read between flush and commit can put the old row back in the cache, so the
    entry is evicted a second time after commit or rollback.
    """
    invalidate_sso_config_cache(org_id)
    pending = session.info.get(_PENDING_INVALIDATIONS)
    if pending is not None:
        pending.add(org_id)
        return
    pending = session.info[_PENDING_INVALIDATIONS] = {org_id}

    @event.listens_for(session, "after_transaction_end")
    def _drain(_session, transaction) -> None:
        if transaction.parent is not None or not pending:
            return
        for pending_org_id in tuple(pending):
            invalidate_sso_config_cache(pending_org_id)
        pending.clear()


def _record_payload(record: SsoConfigRecord) -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    for column in SsoConfigRecord.__table__.columns:
        if column.name in _INTERNAL_COLUMNS:
            continue
        value = getattr(record, column.name)
        if value is not None:
            payload[column.name] = value
    return payload


def load_sso_config(record: SsoConfigRecord) -> Union[SamlConfig, OidcConfig]:
    """Validate a stored row into its tagged protocol variant."""
    payload = _record_payload(record)
    payload["protocol"] = _normalize_protocol(record.protocol)
    try:
        return SSO_CONFIG_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        logger.warning("Stored SSO config for org %s is invalid: %s", record.org_id, exc)
        raise ConfigIncompleteError(
            "Stored SSO configuration is invalid.",
            extra={"errors": [error.get("loc") for error in exc.errors()]},
        ) from exc


class SqlSsoConfigStore:
    def __init__(self, session: Session):
        self.session = session

    def _record(self, org_id: uuid.UUID) -> Optional[SsoConfigRecord]:
        return self.session.execute(
            select(SsoConfigRecord).where(SsoConfigRecord.org_id == org_id)
        ).scalar_one_or_none()

    def get_for_org(self, org_id: uuid.UUID) -> Optional[Union[SamlConfig, OidcConfig]]:
        record = self._record(org_id)
        if record is None:
            return None
        return load_sso_config(record)

    def resolve_org_id(self, slug: str) -> Optional[uuid.UUID]:
        normalized = _normalize_slug(slug)
        if not normalized:
            return None
        return self.session.execute(select(Org.id).where(Org.slug == normalized)).scalar_one_or_none()


def _apply_fields(record: SsoConfigRecord, fields: Mapping[str, Any]) -> None:
    unknown = set(fields) - _MUTABLE_COLUMNS
    if unknown:
        raise ValueError(f"Unknown SSO config fields: {', '.join(sorted(unknown))}")
    for name, value in fields.items():
        if name == "status" and value is not None:
            value = str(value).strip().upper()
            if value not in (SSO_STATUS_ACTIVE, SSO_STATUS_INACTIVE):
                raise ValueError(f"Invalid SSO status: {value}")
        if name == "allowed_domains" and value is not None:
            value = [str(item).strip().lower().lstrip("@") for item in value if str(item).strip()]
        if name == "group_to_role_mappings" and value is not None:
            value = {str(key).strip(): str(role) for key, role in dict(value).items() if str(key).strip()}
        setattr(record, name, value)


def create_sso_config(
    session: Session,
    *,
    org_id: uuid.UUID,
    protocol: str,
    **fields: Any,
) -> SsoConfigRecord:
    """Persist the SSO configuration for an org. Each org has at most one."""
    record = SsoConfigRecord(org_id=org_id, protocol=_normalize_protocol(protocol))
    _apply_fields(record, fields)
    session.add(record)
    session.flush()
    _invalidate_after_transaction(session, org_id)
    logger.info("Created %s SSO config for org %s.", record.protocol, org_id)
    return record


def update_sso_config(session: Session, org_id: uuid.UUID, **fields: Any) -> SsoConfigRecord:
    """Update mutable fields of an existing config."""
    record = SqlSsoConfigStore(session)._record(org_id)
    if record is None:
        raise ValueError(f"SSO config for org {org_id} not found")
    _apply_fields(record, fields)
    session.flush()
    _invalidate_after_transaction(session, org_id)
    return record


def store_client_secret(session: Session, org_id: uuid.UUID, secret: str, *, key: Optional[str]) -> None:
    """Encrypt and store the OIDC client secret on the org's config row."""
    record = SqlSsoConfigStore(session)._record(org_id)
    if record is None:
        raise ValueError(f"SSO config for org {org_id} not found")
    if record.protocol != "OIDC":
        raise UnsupportedProtocolError("Client secrets only apply to OIDC configurations.")
    record.client_secret_encrypted = encrypt_client_secret(secret, key)
    session.flush()
    logger.info("Stored OIDC client secret for org %s.", org_id)


__all__ = [
    "SqlSsoConfigStore",
    "create_sso_config",
    "load_sso_config",
    "store_client_secret",
    "update_sso_config",
]
