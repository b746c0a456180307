"""
Role and permission catalog.

The catalog is the single source of truth for turning a role into default
grants and for comparing roles. It is built once at import time and passed
around by reference; consumers accept a `catalog` argument so tests can
substitute their own table.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping


class Role(str, Enum):
    # Declared from most to least privileged; declaration order breaks ties.
    PLATFORM_ADMIN = "platform_admin"
    OWNER = "owner"
    SENIOR_PRACTITIONER = "senior_practitioner"
    JUNIOR_PRACTITIONER = "junior_practitioner"
    ASSISTANT = "assistant"
    FRONTDESK = "frontdesk"
    CLIENT = "client"


def parse_role(value: Any) -> Role | None:
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Role(value.strip().lower())
    except ValueError:
        return None


# ----------------------------
# Permissions
# ----------------------------
PLATFORM_MANAGE_LAW_FIRMS = "platform.law_firms.manage"
PLATFORM_VIEW_ANALYTICS = "platform.analytics.view"
PLATFORM_MANAGE_BILLING = "platform.billing.manage"
PLATFORM_SUPPORT_ACCESS = "platform.support.access"

USERS_VIEW = "users.view"
USERS_CREATE = "users.create"
USERS_EDIT = "users.edit"
USERS_DELETE = "users.delete"
USERS_MANAGE_ROLES = "users.manage_roles"

CASES_VIEW = "cases.view"
CASES_VIEW_ALL = "cases.view_all"
CASES_CREATE = "cases.create"
CASES_EDIT = "cases.edit"
CASES_DELETE = "cases.delete"
CASES_ASSIGN = "cases.assign"

DOCUMENTS_VIEW = "documents.view"
DOCUMENTS_UPLOAD = "documents.upload"
DOCUMENTS_EDIT = "documents.edit"
DOCUMENTS_DELETE = "documents.delete"
DOCUMENTS_MANAGE_PERMISSIONS = "documents.manage_permissions"

CALENDAR_VIEW = "calendar.view"
CALENDAR_VIEW_ALL = "calendar.view_all"
CALENDAR_CREATE = "calendar.create"
CALENDAR_EDIT = "calendar.edit"
CALENDAR_DELETE = "calendar.delete"

TASKS_VIEW = "tasks.view"
TASKS_CREATE = "tasks.create"
TASKS_EDIT = "tasks.edit"
TASKS_DELETE = "tasks.delete"
TASKS_ASSIGN = "tasks.assign"

ADMIN_FIRM_SETTINGS = "admin.firm_settings"
ADMIN_WORKSPACES = "admin.workspaces"
ADMIN_AUDIT_LOGS = "admin.audit_logs"

PLATFORM_PERMISSIONS = (
    PLATFORM_MANAGE_LAW_FIRMS,
    PLATFORM_VIEW_ANALYTICS,
    PLATFORM_MANAGE_BILLING,
    PLATFORM_SUPPORT_ACCESS,
)
USER_PERMISSIONS = (USERS_VIEW, USERS_CREATE, USERS_EDIT, USERS_DELETE, USERS_MANAGE_ROLES)
CASE_PERMISSIONS = (
    CASES_VIEW,
    CASES_VIEW_ALL,
    CASES_CREATE,
    CASES_EDIT,
    CASES_DELETE,
    CASES_ASSIGN,
)
DOCUMENT_PERMISSIONS = (
    DOCUMENTS_VIEW,
    DOCUMENTS_UPLOAD,
    DOCUMENTS_EDIT,
    DOCUMENTS_DELETE,
    DOCUMENTS_MANAGE_PERMISSIONS,
)
CALENDAR_PERMISSIONS = (
    CALENDAR_VIEW,
    CALENDAR_VIEW_ALL,
    CALENDAR_CREATE,
    CALENDAR_EDIT,
    CALENDAR_DELETE,
)
TASK_PERMISSIONS = (TASKS_VIEW, TASKS_CREATE, TASKS_EDIT, TASKS_DELETE, TASKS_ASSIGN)
ADMIN_PERMISSIONS = (ADMIN_FIRM_SETTINGS, ADMIN_WORKSPACES, ADMIN_AUDIT_LOGS)

FIRM_PERMISSIONS = (
    USER_PERMISSIONS
    + CASE_PERMISSIONS
    + DOCUMENT_PERMISSIONS
    + CALENDAR_PERMISSIONS
    + TASK_PERMISSIONS
    + ADMIN_PERMISSIONS
)


@dataclass(frozen=True)
class RoleCatalog:
    grants: Mapping[Role, frozenset[str]]
    levels: Mapping[Role, int]
    platform_role: Role = Role.PLATFORM_ADMIN
    top_tenant_role: Role = Role.OWNER
    broad_access_roles: frozenset[Role] = field(
        default_factory=lambda: frozenset({Role.SENIOR_PRACTITIONER})
    )

    def __post_init__(self) -> None:
        # A role must never have grants without a level, or a level without grants.
        expected = set(Role)
        if set(self.grants) != expected:
            missing = sorted(r.value for r in expected - set(self.grants))
            raise ValueError(f"catalog grants incomplete, missing={missing}")
        if set(self.levels) != expected:
            missing = sorted(r.value for r in expected - set(self.levels))
            raise ValueError(f"catalog levels incomplete, missing={missing}")
        if len(set(self.levels.values())) != len(self.levels):
            raise ValueError("catalog levels must be distinct")

        object.__setattr__(
            self,
            "grants",
            MappingProxyType({role: frozenset(perms) for role, perms in self.grants.items()}),
        )
        object.__setattr__(self, "levels", MappingProxyType(dict(self.levels)))

    def permissions_for(self, role: Role | str) -> frozenset[str]:
        parsed = parse_role(role)
        if parsed is None:
            return frozenset()
        return self.grants.get(parsed, frozenset())

    def hierarchy_level(self, role: Role) -> int:
        return self.levels[role]

    @property
    def all_permissions(self) -> frozenset[str]:
        return frozenset().union(*self.grants.values())

    def ordered_roles(self) -> list[Role]:
        """Roles from least to most privileged."""
        return sorted(self.levels, key=self.levels.__getitem__)

    def highest(self, roles: Iterable[Role]) -> Role | None:
        declared = list(Role)
        best: Role | None = None
        for role in roles:
            if best is None:
                best = role
                continue
            level, best_level = self.levels[role], self.levels[best]
            if level > best_level or (
                level == best_level and declared.index(role) < declared.index(best)
            ):
                best = role
        return best


def build_default_catalog() -> RoleCatalog:
    grants: dict[Role, tuple[str, ...]] = {
        Role.PLATFORM_ADMIN: PLATFORM_PERMISSIONS + FIRM_PERMISSIONS,
        Role.OWNER: FIRM_PERMISSIONS,
        Role.SENIOR_PRACTITIONER: (
            CASES_VIEW_ALL,
            CASES_CREATE,
            CASES_EDIT,
            CASES_ASSIGN,
            DOCUMENTS_VIEW,
            DOCUMENTS_UPLOAD,
            DOCUMENTS_EDIT,
            CALENDAR_VIEW_ALL,
            CALENDAR_CREATE,
            CALENDAR_EDIT,
            TASKS_VIEW,
            TASKS_CREATE,
            TASKS_EDIT,
            TASKS_ASSIGN,
            USERS_VIEW,
        ),
        Role.JUNIOR_PRACTITIONER: (
            CASES_VIEW,
            CASES_EDIT,
            DOCUMENTS_VIEW,
            DOCUMENTS_UPLOAD,
            DOCUMENTS_EDIT,
            CALENDAR_VIEW,
            CALENDAR_CREATE,
            CALENDAR_EDIT,
            TASKS_VIEW,
            TASKS_CREATE,
            TASKS_EDIT,
        ),
        Role.ASSISTANT: (
            CASES_VIEW,
            DOCUMENTS_VIEW,
            DOCUMENTS_UPLOAD,
            CALENDAR_VIEW,
            CALENDAR_CREATE,
            CALENDAR_EDIT,
            TASKS_VIEW,
            TASKS_EDIT,
        ),
        Role.FRONTDESK: (
            CASES_VIEW,
            DOCUMENTS_VIEW,
            CALENDAR_VIEW,
            CALENDAR_CREATE,
            TASKS_VIEW,
        ),
        Role.CLIENT: (CASES_VIEW, DOCUMENTS_VIEW, CALENDAR_VIEW),
    }
    levels = {
        Role.PLATFORM_ADMIN: 1000,
        Role.OWNER: 100,
        Role.SENIOR_PRACTITIONER: 80,
        Role.JUNIOR_PRACTITIONER: 60,
        Role.ASSISTANT: 40,
        Role.FRONTDESK: 30,
        Role.CLIENT: 10,
    }
    return RoleCatalog(
        grants={role: frozenset(perms) for role, perms in grants.items()},
        levels=levels,
    )


DEFAULT_CATALOG = build_default_catalog()
