"""OIDC client-secret storage and lookup.

Secrets are stored Fernet-encrypted on the org's SSO config row. Lookup falls
back to ``OIDC_CLIENT_SECRET_<org_id>`` environment variables so deployments
can keep secrets out of the database entirely.
"""

from __future__ import annotations

import uuid
from typing import Mapping, Optional

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import select
from sqlalchemy.orm import Session

from core.env import env_str
from core.logging import get_logger
from models.sso_config import SsoConfigRecord

logger = get_logger(__name__)

ENV_SECRET_PREFIX = "OIDC_CLIENT_SECRET_"


class SecretKeyMissingError(RuntimeError):
    """Raised when a client secret must be encrypted but no key is configured."""


def build_cipher(key: Optional[str]) -> Optional[Fernet]:
    if not key:
        return None
    try:
        return Fernet(key.encode("utf-8"))
    except (TypeError, ValueError) as exc:
        logger.warning("Invalid SSO_SECRET_ENCRYPTION_KEY: %s. Stored client secrets are unavailable.", exc)
        return None


def encrypt_client_secret(value: str, key: Optional[str]) -> str:
    cipher = build_cipher(key)
    if cipher is None:
        raise SecretKeyMissingError("SSO_SECRET_ENCRYPTION_KEY must be set to store client secrets.")
    return cipher.encrypt(value.encode("utf-8")).decode("ascii")


def decrypt_client_secret(value: Optional[str], key: Optional[str]) -> Optional[str]:
    if not value:
        return None
    cipher = build_cipher(key)
    if cipher is None:
        return None
    try:
        return cipher.decrypt(value.encode("ascii")).decode("utf-8")
    except InvalidToken:
        logger.warning("Unable to decrypt stored OIDC client secret with the configured key.")
        return None


class StaticSecretResolver:
    """In-memory mapping of org id to client secret."""

    def __init__(self, secrets: Mapping[object, str]):
        self._secrets = {str(org_id): secret for org_id, secret in secrets.items()}

    def resolve(self, org_id: uuid.UUID) -> Optional[str]:
        return self._secrets.get(str(org_id))


class EnvSecretResolver:
    def resolve(self, org_id: uuid.UUID) -> Optional[str]:
        return env_str(f"{ENV_SECRET_PREFIX}{org_id}")


class StoredSecretResolver:
    """Encrypted column first, then the environment."""

    def __init__(self, session: Session, key: Optional[str], *, fallback: Optional[EnvSecretResolver] = None):
        self.session = session
        self.key = key
        self.fallback = fallback if fallback is not None else EnvSecretResolver()

    def resolve(self, org_id: uuid.UUID) -> Optional[str]:
        encrypted = self.session.execute(
            select(SsoConfigRecord.client_secret_encrypted).where(SsoConfigRecord.org_id == org_id)
        ).scalar_one_or_none()
        secret = decrypt_client_secret(encrypted, self.key)
        if secret:
            return secret
        return self.fallback.resolve(org_id)


__all__ = [
    "EnvSecretResolver",
    "SecretKeyMissingError",
    "StaticSecretResolver",
    "StoredSecretResolver",
    "decrypt_client_secret",
    "encrypt_client_secret",
]
