"""
Tenant-scoped data gateway.

Every unit of work borrows its own session (and therefore its own pooled
connection), pushes the caller's tenant id and role into transaction-local
Postgres settings consumed by the row-level security policies, and clears
them before the session goes back to the pool. A `ScopedSession` is only
usable inside the `async with` block that produced it.

Database side of the contract (installed by `apply_row_policies`): each
tenant-scoped table has a `law_firm_id` column, row security enabled and
forced, and one policy

    law_firm_id = current_setting('app.current_law_firm_id', true)
    OR current_setting('app.current_user_role', true) = 'platform_admin'

for both reads and writes. With neither setting present a session matches
no rows.
"""

from __future__ import annotations

import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lawfirm_authz.auth.catalog import DEFAULT_CATALOG, RoleCatalog
from lawfirm_authz.auth.models import PLATFORM_TENANT, Principal
from lawfirm_authz.configs.logging_config import get_logger, get_security_logger
from lawfirm_authz.errors import ForbiddenError, TenantContextMissing, TenantIsolationViolation

log = get_logger(__name__)
security_log = get_security_logger()

TENANT_SETTING = "app.current_law_firm_id"
ROLE_SETTING = "app.current_user_role"

# is_local=true: the settings die with the transaction even if the clear step never runs.
_SET_CONTEXT = text(
    "SELECT set_config('app.current_law_firm_id', :tenant_id, true), "
    "set_config('app.current_user_role', :role, true)"
)
_CLEAR_CONTEXT = text(
    "SELECT set_config('app.current_law_firm_id', '', true), "
    "set_config('app.current_user_role', '', true)"
)
_CURRENT_TENANT = text("SELECT current_setting('app.current_law_firm_id', true)")
_UNFORCED_TABLES = text(
    "SELECT c.relname FROM pg_class c "
    "JOIN pg_namespace n ON n.oid = c.relnamespace "
    "WHERE n.nspname = current_schema() AND c.relname = ANY(:tables) "
    "AND NOT (c.relrowsecurity AND c.relforcerowsecurity)"
)
_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")

_EXISTING_TABLES = text(
    "SELECT c.relname FROM pg_class c "
    "JOIN pg_namespace n ON n.oid = c.relnamespace "
    "WHERE n.nspname = current_schema() AND c.relname = ANY(:tables)"
)


class ScopedSession:
    """Session handle bound to one tenant context for one unit of work."""

    def __init__(self, session: AsyncSession, tenant_id: str, role: str, platform: bool):
        self._session = session
        self._tenant_id = tenant_id
        self._role = role
        self._platform = platform
        self._open = True

    @property
    def tenant_id(self) -> str:
        return self._tenant_id

    @property
    def role(self) -> str:
        return self._role

    @property
    def is_platform(self) -> bool:
        return self._platform

    def _ensure_open(self) -> None:
        if not self._open:
            raise RuntimeError("scoped session used outside its unit of work")

    async def execute(self, statement: Any, params: dict[str, Any] | None = None):
        self._ensure_open()
        return await self._session.execute(statement, params or {})

    def assert_tenant(self, resource_tenant_id: str | None) -> None:
        """Fail hard if a write targets a row of another tenant."""
        self._ensure_open()
        if self._platform:
            return
        if resource_tenant_id != self._tenant_id:
            security_log.error(
                "security.tenant_isolation_violation session_tenant=%s resource_tenant=%s role=%s",
                self._tenant_id,
                resource_tenant_id,
                self._role,
            )
            raise TenantIsolationViolation()

    def _close(self) -> None:
        self._open = False


class TenantScopedGateway:
    def __init__(self, session_factory: async_sessionmaker, catalog: RoleCatalog = DEFAULT_CATALOG):
        self._session_factory = session_factory
        self._catalog = catalog

    @asynccontextmanager
    async def scoped(self, principal: Principal) -> AsyncIterator[ScopedSession]:
        if not principal.active:
            raise ForbiddenError("account is inactive")
        if not principal.tenant_id:
            # Never fall back to an unfiltered session.
            log.error(
                "gateway.scoped refused identity_id=%s role=%s reason=no_tenant",
                principal.identity_id,
                principal.role.value,
            )
            raise TenantContextMissing()
        async with self._unit_of_work(principal.tenant_id, principal.role.value, platform=False) as s:
            yield s

    @asynccontextmanager
    async def platform_scope(self, principal: Principal) -> AsyncIterator[ScopedSession]:
        """Unfiltered access; only for active, non-impersonated platform operators."""
        if (
            not principal.active
            or principal.role is not self._catalog.platform_role
            or principal.is_impersonated
        ):
            security_log.warning(
                "security.platform_scope_refused identity_id=%s role=%s impersonator=%s",
                principal.identity_id,
                principal.role.value,
                principal.impersonator_id,
            )
            raise ForbiddenError("platform scope requires the platform role")
        async with self._unit_of_work(
            PLATFORM_TENANT, self._catalog.platform_role.value, platform=True
        ) as s:
            yield s

    @asynccontextmanager
    async def _unit_of_work(
        self, tenant_id: str, role: str, *, platform: bool
    ) -> AsyncIterator[ScopedSession]:
        session: AsyncSession = self._session_factory()
        scoped = ScopedSession(session, tenant_id, role, platform)
        log.debug("gateway.uow.begin tenant_id=%s role=%s platform=%s", tenant_id, role, platform)
        try:
            # An exception inside the block rolls the transaction back, which
            # also discards the transaction-local settings.
            async with session.begin():
                await session.execute(_SET_CONTEXT, {"tenant_id": tenant_id, "role": role})
                yield scoped
                await session.execute(_CLEAR_CONTEXT)
        finally:
            scoped._close()
            await session.close()
            log.debug("gateway.uow.end tenant_id=%s", tenant_id)


async def verify_row_policies(session_factory: async_sessionmaker, tables: Iterable[str]) -> None:
    """
    Start-up check that row isolation is the enforced default.

    Every tenant-scoped table must have row security enabled and forced, and a
    fresh session must carry no tenant setting (so an unscoped query matches
    no rows instead of every row).
    """
    names = list(tables)
    async with session_factory() as session:
        existing = {row[0] for row in (await session.execute(_EXISTING_TABLES, {"tables": names})).all()}
        missing = sorted(set(names) - existing)
        if missing:
            raise RuntimeError(f"tenant-scoped tables not found: {missing}")

        unforced = sorted(row[0] for row in (await session.execute(_UNFORCED_TABLES, {"tables": names})).all())
        if unforced:
            security_log.error("security.row_security_not_enforced tables=%s", unforced)
            raise RuntimeError(f"row level security not enabled and forced on: {unforced}")

        current = (await session.execute(_CURRENT_TENANT)).scalar()
        if current:
            security_log.error("security.ambient_tenant_setting value=%s", current)
            raise RuntimeError("fresh sessions must not carry a tenant context")
    log.info("gateway.verify_row_policies ok tables=%s", names)


def _identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"not a plain table or role name: {name!r}")
    return name


def row_policy_statements(tables: Iterable[str], platform_role: str = "platform_admin") -> list[str]:
    """DDL that puts each table under the tenant isolation policy. Re-running it is safe."""
    role = _identifier(platform_role)
    condition = (
        f"law_firm_id = current_setting('{TENANT_SETTING}', true) "
        f"OR current_setting('{ROLE_SETTING}', true) = '{role}'"
    )
    statements: list[str] = []
    for table in tables:
        name = _identifier(table)
        statements += [
            f"ALTER TABLE {name} ENABLE ROW LEVEL SECURITY",
            f"ALTER TABLE {name} FORCE ROW LEVEL SECURITY",
            f"DROP POLICY IF EXISTS {name}_tenant_isolation ON {name}",
            f"CREATE POLICY {name}_tenant_isolation ON {name} FOR ALL "
            f"USING ({condition}) WITH CHECK ({condition})",
        ]
    return statements


async def apply_row_policies(
    session_factory: async_sessionmaker,
    tables: Iterable[str],
    catalog: RoleCatalog = DEFAULT_CATALOG,
) -> None:
    """Install the isolation policies in one transaction."""
    names = list(tables)
    statements = row_policy_statements(names, catalog.platform_role.value)
    async with session_factory() as session:
        async with session.begin():
            for statement in statements:
                await session.execute(text(statement))
    log.info("gateway.apply_row_policies ok tables=%s", names)
