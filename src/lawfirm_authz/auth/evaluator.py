"""
Permission evaluation over a resolved Principal.

Every function here is pure and total: anything unexpected (no principal,
inactive account, unknown role name) is a denial, never an exception.
"""

from __future__ import annotations

from typing import Iterable

from lawfirm_authz.auth.catalog import DEFAULT_CATALOG, Role, RoleCatalog, parse_role
from lawfirm_authz.auth.models import Principal


def _is_live(principal: Principal | None) -> bool:
    return isinstance(principal, Principal) and principal.active is True


def has_permission(principal: Principal | None, permission: str) -> bool:
    if not _is_live(principal):
        return False
    return isinstance(permission, str) and permission in principal.permissions


def has_any_permission(principal: Principal | None, permissions: Iterable[str]) -> bool:
    if not _is_live(principal):
        return False
    return any(isinstance(p, str) and p in principal.permissions for p in permissions)


def has_all_permissions(principal: Principal | None, permissions: Iterable[str]) -> bool:
    if not _is_live(principal):
        return False
    return all(isinstance(p, str) and p in principal.permissions for p in permissions)


def has_role_or_higher(
    principal: Principal | None,
    required: Role | str,
    catalog: RoleCatalog = DEFAULT_CATALOG,
) -> bool:
    if not _is_live(principal):
        return False
    held = parse_role(principal.role)
    wanted = parse_role(required)
    if held is None or wanted is None:
        return False
    return catalog.hierarchy_level(held) >= catalog.hierarchy_level(wanted)


def can_access_resource(
    principal: Principal | None,
    resource_owner_id: str | None,
    resource_tenant_id: str | None,
    catalog: RoleCatalog = DEFAULT_CATALOG,
) -> bool:
    """Per-record check: same tenant, then top role, ownership or broad-access role."""
    if not _is_live(principal):
        return False
    role = parse_role(principal.role)
    if role is None:
        return False

    if role is catalog.platform_role:
        return True

    if not principal.tenant_id or principal.tenant_id != resource_tenant_id:
        return False

    if role is catalog.top_tenant_role:
        return True

    if resource_owner_id and principal.identity_id == resource_owner_id:
        return True

    return role in catalog.broad_access_roles
