"""SQLAlchemy model for per-organisation SSO configuration."""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text, Uuid
from sqlalchemy.sql import func

from database import Base, JSONType


class SsoConfigRecord(Base):
    """SAML or OIDC settings bound to exactly one organisation."""

    __tablename__ = "sso_configs"
    __table_args__ = {"extend_existing": True}

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid(as_uuid=True), ForeignKey("orgs.id", ondelete="CASCADE"), unique=True, nullable=False)
    protocol = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, default="INACTIVE")

    # Shared by both protocols; OIDC uses it as redirect_uri.
    acs_url = Column(Text, nullable=True)

    # SAML
    sp_entity_id = Column(Text, nullable=True)
    idp_entity_id = Column(Text, nullable=True)
    idp_sso_url = Column(Text, nullable=True)
    metadata_url = Column(Text, nullable=True)
    metadata_xml = Column(Text, nullable=True)
    idp_certificate = Column(Text, nullable=True)
    allow_unsigned_assertions = Column(Boolean, nullable=False, default=False)

    # OIDC
    issuer = Column(Text, nullable=True)
    authorization_endpoint = Column(Text, nullable=True)
    token_endpoint = Column(Text, nullable=True)
    userinfo_endpoint = Column(Text, nullable=True)
    jwks_uri = Column(Text, nullable=True)
    client_id = Column(Text, nullable=True)
    client_secret_encrypted = Column(Text, nullable=True)

    email_attribute = Column(String(255), nullable=False, default="email")
    name_attribute = Column(String(255), nullable=False, default="name")
    groups_attribute = Column(String(255), nullable=False, default="groups")
    allowed_domains = Column(JSONType, nullable=False, default=list)
    group_to_role_mappings = Column(JSONType, nullable=False, default=dict)
    jit_provisioning_enabled = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<SsoConfigRecord org_id={self.org_id!s} protocol={self.protocol!r}>"


__all__ = ["SsoConfigRecord"]
