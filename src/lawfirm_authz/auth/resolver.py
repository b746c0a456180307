from __future__ import annotations

from typing import Any, Protocol

from lawfirm_authz.auth.catalog import DEFAULT_CATALOG, Role, RoleCatalog, parse_role
from lawfirm_authz.auth.jwt import (
    CLAIM_IMPERSONATION,
    CLAIM_TENANT,
    CLAIM_VERSION,
    LEGACY_CLAIMS,
    decode_token,
)
from lawfirm_authz.auth.models import PLATFORM_TENANT, Principal
from lawfirm_authz.auth.outcomes import FailureKind, Resolution, ResolutionFailure
from lawfirm_authz.configs.logging_config import get_logger, get_security_logger
from lawfirm_authz.configs.settings import Settings
from lawfirm_authz.domain.entities.directory import IdentityRecord, MembershipRecord
from lawfirm_authz.errors import AuthError

log = get_logger(__name__)
security_log = get_security_logger()


class IdentityDirectory(Protocol):
    async def get_identity(self, identity_id: str) -> IdentityRecord | None: ...

    async def list_memberships(self, identity_id: str) -> list[MembershipRecord]:
        """All memberships of the identity, oldest first, with tenant and roles attached."""
        ...

    async def get_membership(self, identity_id: str, tenant_id: str) -> MembershipRecord | None: ...


class RevocationChecker(Protocol):
    async def is_revoked(self, credential_id: str) -> bool: ...


def expand_membership(
    membership: MembershipRecord, catalog: RoleCatalog = DEFAULT_CATALOG
) -> tuple[Role | None, frozenset[str]]:
    """
    Primary role and permission set of a membership.

    The primary role is the highest catalog role assigned; the permission set
    is the union over every assigned role (catalog grants plus the role's
    tenant-custom grants).
    """
    catalog_roles: list[Role] = []
    permissions: set[str] = set()
    for record in membership.roles:
        if record.tenant_id != membership.tenant_id:
            security_log.warning(
                "security.cross_tenant_role_binding membership=%s tenant=%s role_id=%s role_tenant=%s",
                membership.membership_id,
                membership.tenant_id,
                record.role_id,
                record.tenant_id,
            )
            continue
        role = parse_role(record.name)
        if role is not None:
            catalog_roles.append(role)
            permissions |= catalog.permissions_for(role)
        permissions |= {p for p in record.permissions if isinstance(p, str) and "." in p}

    primary = catalog.highest(catalog_roles)
    return primary, frozenset(permissions)


class PrincipalResolver:
    """
    Turns a bearer credential into a Principal, or a typed failure.

    Nothing is cached between calls: a role or membership change takes
    effect on the next request.
    """

    def __init__(
        self,
        directory: IdentityDirectory,
        settings: Settings,
        catalog: RoleCatalog = DEFAULT_CATALOG,
        revocations: RevocationChecker | None = None,
    ):
        self._directory = directory
        self._settings = settings
        self._catalog = catalog
        self._revocations = revocations

    async def resolve(self, credential: str | None) -> Resolution:
        if not credential:
            return ResolutionFailure(FailureKind.MISSING_CREDENTIAL)

        try:
            claims = decode_token(credential, self._settings)
        except AuthError:
            return ResolutionFailure(FailureKind.INVALID_CREDENTIAL, "verification failed")

        stale = self._stale_reason(claims)
        if stale:
            log.info("auth.resolve stale_credential sub=%s reason=%s", claims.get("sub"), stale)
            return ResolutionFailure(FailureKind.STALE_CREDENTIAL_VERSION, stale)

        identity_id = str(claims.get("sub") or "")
        identity = await self._directory.get_identity(identity_id)
        if identity is None:
            return ResolutionFailure(FailureKind.INVALID_CREDENTIAL, "unknown identity")
        if not identity.active:
            return ResolutionFailure(FailureKind.INACTIVE_ACCOUNT, "identity inactive")

        impersonation = claims.get(CLAIM_IMPERSONATION)
        if impersonation is not None:
            return await self._resolve_impersonated(identity, claims, impersonation)

        memberships = await self._directory.list_memberships(identity.identity_id)
        if self._is_platform_operator(identity, memberships):
            return self._platform_principal(identity, claims)
        if not memberships:
            return ResolutionFailure(FailureKind.INACTIVE_ACCOUNT, "identity not provisioned")

        primary = next((m for m in memberships if m.active and m.tenant.active), None)
        if primary is None:
            return ResolutionFailure(FailureKind.INACTIVE_ACCOUNT, "no active membership")

        return self._tenant_principal(identity, primary, claims)

    def _stale_reason(self, claims: dict[str, Any]) -> str | None:
        version = claims.get(CLAIM_VERSION)
        legacy = [c for c in LEGACY_CLAIMS if c in claims]
        if version is None:
            return f"missing version legacy_markers={legacy}"
        if not isinstance(version, int) or version < self._settings.credential_min_version:
            return f"version={version} min={self._settings.credential_min_version}"
        return None

    def _is_platform_operator(
        self, identity: IdentityRecord, memberships: list[MembershipRecord]
    ) -> bool:
        if identity.platform_operator is not None:
            return identity.platform_operator
        # Compatibility fallback: no memberships means platform-level.
        return self._settings.implicit_platform_operator and not memberships

    def _platform_principal(self, identity: IdentityRecord, claims: dict[str, Any]) -> Principal:
        role = self._catalog.platform_role
        log.info("auth.resolve platform identity_id=%s", identity.identity_id)
        return Principal(
            identity_id=identity.identity_id,
            tenant_id=PLATFORM_TENANT,
            role=role,
            permissions=self._catalog.permissions_for(role),
            active=True,
            credential_id=claims.get("jti"),
        )

    def _tenant_principal(
        self,
        identity: IdentityRecord,
        membership: MembershipRecord,
        claims: dict[str, Any],
        *,
        impersonator_id: str | None = None,
        impersonation_reason: str | None = None,
    ) -> Resolution:
        role, permissions = expand_membership(membership, self._catalog)
        if role is None or role is self._catalog.platform_role:
            # A tenant membership can never confer the platform role.
            return ResolutionFailure(FailureKind.INACTIVE_ACCOUNT, "membership has no tenant role")

        log.info(
            "auth.resolve tenant identity_id=%s tenant_id=%s role=%s permissions=%s impersonator=%s",
            identity.identity_id,
            membership.tenant_id,
            role.value,
            len(permissions),
            impersonator_id,
        )
        return Principal(
            identity_id=identity.identity_id,
            tenant_id=membership.tenant_id,
            role=role,
            permissions=permissions,
            active=True,
            impersonator_id=impersonator_id,
            impersonation_reason=impersonation_reason,
            credential_id=claims.get("jti"),
        )

    async def _resolve_impersonated(
        self, identity: IdentityRecord, claims: dict[str, Any], impersonation: Any
    ) -> Resolution:
        tenant_id = claims.get(CLAIM_TENANT)
        if not isinstance(impersonation, dict) or not impersonation.get("act") or not tenant_id:
            return ResolutionFailure(FailureKind.INVALID_CREDENTIAL, "malformed impersonation tag")

        credential_id = claims.get("jti")
        if self._revocations is not None:
            if not credential_id:
                return ResolutionFailure(FailureKind.INVALID_CREDENTIAL, "impersonation without jti")
            try:
                revoked = await self._revocations.is_revoked(credential_id)
            except Exception as exc:
                log.error("auth.resolve revocation_lookup_failed jti=%s error=%s", credential_id, str(exc))
                return ResolutionFailure(FailureKind.INVALID_CREDENTIAL, "revocation lookup failed")
            if revoked:
                security_log.warning(
                    "security.revoked_credential_used jti=%s actor=%s target=%s",
                    credential_id,
                    impersonation.get("act"),
                    identity.identity_id,
                )
                return ResolutionFailure(FailureKind.INVALID_CREDENTIAL, "credential revoked")

        membership = await self._directory.get_membership(identity.identity_id, str(tenant_id))
        if membership is None or not membership.active or not membership.tenant.active:
            return ResolutionFailure(FailureKind.INACTIVE_ACCOUNT, "impersonation target inactive")

        return self._tenant_principal(
            identity,
            membership,
            claims,
            impersonator_id=str(impersonation["act"]),
            impersonation_reason=impersonation.get("reason"),
        )
