from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class IdentityRecord:
    identity_id: str
    email: str | None = None
    active: bool = True
    # None: not recorded, fall back to membership cardinality.
    platform_operator: bool | None = None


@dataclass(frozen=True)
class TenantRecord:
    tenant_id: str
    name: str | None = None
    active: bool = True


@dataclass(frozen=True)
class RoleRecord:
    """A tenant-scoped role row; `name` maps onto the catalog, `permissions` are custom grants."""

    role_id: str
    tenant_id: str
    name: str
    permissions: tuple[str, ...] = ()


@dataclass(frozen=True)
class MembershipRecord:
    membership_id: str
    identity_id: str
    tenant: TenantRecord
    active: bool = True
    roles: tuple[RoleRecord, ...] = ()
    created_at: datetime | None = field(default=None, compare=False)

    @property
    def tenant_id(self) -> str:
        return self.tenant.tenant_id
