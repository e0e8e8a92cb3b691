"""Just-in-time user and membership reconciliation for SSO logins."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Tuple, Union

from core.auth.constants import DEFAULT_MEMBER_ROLE, SEAT_REASON_SSO_JIT
from core.logging import get_logger
from schemas.sso_config import OidcConfig, SamlConfig
from services.auth.common import (
    AssertionAttributes,
    DomainNotAllowedError,
    MembershipRecord,
    MembershipStore,
    SeatLimitEnforcer,
    SecurityEventSink,
    SsoInactiveError,
    UserNotProvisionedError,
    UserRecord,
    UserStore,
    email_domain,
    email_local_part,
    mask_email,
    normalize_email,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProvisioningResult:
    user: UserRecord
    membership: MembershipRecord
    user_created: bool = False
    membership_created: bool = False


def resolve_roles(groups: Optional[Iterable[str]], mappings: Mapping[str, str]) -> Tuple[str, ...]:
    """Map IdP groups to roles; unmapped groups are dropped, nothing mapped means the default role."""
    roles = []
    for group in groups or ():
        role = mappings.get(group)
        if role and role not in roles:
            roles.append(role)
    return tuple(roles) or (DEFAULT_MEMBER_ROLE,)


class IdentityReconciler:
    """Turns assertion attributes into a user plus an enabled membership in the target org.

    Callers run ``reconcile`` inside one transaction so a rejected seat check
    leaves no partial writes behind.
    """

    def __init__(
        self,
        users: UserStore,
        memberships: MembershipStore,
        seats: SeatLimitEnforcer,
        events: Optional[SecurityEventSink] = None,
    ):
        self.users = users
        self.memberships = memberships
        self.seats = seats
        self.events = events

    def reconcile(
        self,
        org_id: uuid.UUID,
        attributes: AssertionAttributes,
        config: Union[SamlConfig, OidcConfig],
    ) -> ProvisioningResult:
        if not config.is_active:
            raise SsoInactiveError()

        email = normalize_email(attributes.email)
        if config.allowed_domains and email_domain(email) not in config.allowed_domains:
            raise DomainNotAllowedError(extra={"domain": email_domain(email)})

        user_created = False
        user = self.users.find_by_email(email)
        if user is None:
            if not config.jit_provisioning_enabled:
                raise UserNotProvisionedError()
            self.seats.enforce(org_id, SEAT_REASON_SSO_JIT)
            user = self.users.create(email=email, name=attributes.name or email_local_part(email))
            user_created = True
            logger.info("JIT-provisioned user %s for org %s.", mask_email(email), org_id)
            if self.events is not None:
                self.events.log("user_created", email=mask_email(email), org_id=str(org_id), source="sso_jit")

        roles = resolve_roles(attributes.groups, config.group_to_role_mappings)
        membership_created = False
        membership = self.memberships.find(user.id, org_id)
        if membership is None:
            self.seats.enforce(org_id, SEAT_REASON_SSO_JIT)
            membership = self.memberships.create(user_id=user.id, org_id=org_id, roles=roles)
            membership_created = True
        else:
            # Re-enables a disabled membership; that does not go through the seat check.
            membership = self.memberships.update_roles(membership.id, roles)

        if (user_created or membership_created) and self.events is not None:
            self.events.log(
                "sso_user_provisioned",
                email=mask_email(email),
                org_id=str(org_id),
                roles=list(membership.roles),
                user_created=user_created,
            )
        return ProvisioningResult(
            user=user.sanitized(),
            membership=membership,
            user_created=user_created,
            membership_created=membership_created,
        )


__all__ = ["IdentityReconciler", "ProvisioningResult", "resolve_roles"]
