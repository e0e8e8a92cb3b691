"""Typed SSO configuration variants, validated once when loaded from storage."""

from __future__ import annotations

import uuid
from typing import Annotated, Dict, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationInfo, field_validator

from core.auth.constants import (
    DEFAULT_EMAIL_ATTRIBUTE,
    DEFAULT_GROUPS_ATTRIBUTE,
    DEFAULT_NAME_ATTRIBUTE,
    SSO_STATUS_ACTIVE,
    SsoStatus,
)


class _SsoConfigBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    org_id: uuid.UUID
    status: SsoStatus = "INACTIVE"
    acs_url: Optional[str] = Field(default=None, description="SAML ACS URL, also the OIDC redirect_uri.")
    email_attribute: str = DEFAULT_EMAIL_ATTRIBUTE
    name_attribute: str = DEFAULT_NAME_ATTRIBUTE
    groups_attribute: str = DEFAULT_GROUPS_ATTRIBUTE
    allowed_domains: Tuple[str, ...] = ()
    group_to_role_mappings: Dict[str, str] = Field(default_factory=dict)
    jit_provisioning_enabled: bool = True

    @field_validator("status", mode="before")
    @classmethod
    def _upper_status(cls, value: object) -> object:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("allowed_domains", mode="before")
    @classmethod
    def _normalize_domains(cls, value: object) -> object:
        if value is None:
            return ()
        if isinstance(value, str):
            value = value.split(",")
        return tuple(str(item).strip().lower().lstrip("@") for item in value if str(item).strip())

    @field_validator("group_to_role_mappings", mode="before")
    @classmethod
    def _default_mappings(cls, value: object) -> object:
        return value or {}

    @field_validator("email_attribute", "name_attribute", "groups_attribute", mode="before")
    @classmethod
    def _blank_attribute(cls, value: object, info: ValidationInfo) -> object:
        if value is None or (isinstance(value, str) and not value.strip()):
            return cls.model_fields[info.field_name].default
        return value

    @property
    def is_active(self) -> bool:
        return self.status == SSO_STATUS_ACTIVE


class SamlConfig(_SsoConfigBase):
    protocol: Literal["SAML"] = "SAML"
    sp_entity_id: Optional[str] = None
    idp_entity_id: Optional[str] = None
    idp_sso_url: Optional[str] = None
    metadata_url: Optional[str] = None
    metadata_xml: Optional[str] = None
    idp_certificate: Optional[str] = None
    allow_unsigned_assertions: bool = False


class OidcConfig(_SsoConfigBase):
    protocol: Literal["OIDC"] = "OIDC"
    issuer: Optional[str] = None
    authorization_endpoint: Optional[str] = None
    token_endpoint: Optional[str] = None
    userinfo_endpoint: Optional[str] = None
    jwks_uri: Optional[str] = None
    client_id: Optional[str] = None


SsoConfig = Annotated[Union[SamlConfig, OidcConfig], Field(discriminator="protocol")]
SSO_CONFIG_ADAPTER: TypeAdapter = TypeAdapter(SsoConfig)


__all__ = ["OidcConfig", "SSO_CONFIG_ADAPTER", "SamlConfig", "SsoConfig"]
