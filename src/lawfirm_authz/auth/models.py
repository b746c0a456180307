from __future__ import annotations

from dataclasses import dataclass

from lawfirm_authz.auth.catalog import Role

# Tenant id carried by platform-level principals.
PLATFORM_TENANT = ""


@dataclass(frozen=True)
class Principal:
    identity_id: str
    tenant_id: str
    role: Role
    permissions: frozenset[str]
    active: bool = True
    # Set when the credential was minted by an impersonation grant.
    impersonator_id: str | None = None
    impersonation_reason: str | None = None
    credential_id: str | None = None

    @property
    def is_platform(self) -> bool:
        return self.tenant_id == PLATFORM_TENANT

    @property
    def is_impersonated(self) -> bool:
        return self.impersonator_id is not None

    def summary(self) -> dict:
        return {
            "identityId": self.identity_id,
            "tenantId": self.tenant_id,
            "role": self.role.value,
            "permissions": sorted(self.permissions),
            "isPlatformUser": self.is_platform,
            "impersonatedBy": self.impersonator_id,
        }
