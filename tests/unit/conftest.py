from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from lawfirm_authz.auth.catalog import DEFAULT_CATALOG, Role
from lawfirm_authz.auth.jwt import issue_token
from lawfirm_authz.auth.models import PLATFORM_TENANT, Principal
from lawfirm_authz.configs.settings import Settings
from lawfirm_authz.domain.entities.audit import AuditQuery, AuditRecord
from lawfirm_authz.domain.entities.directory import (
    IdentityRecord,
    MembershipRecord,
    RoleRecord,
    TenantRecord,
)

_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeDirectory:
    """In-memory identity directory; memberships keep insertion order."""

    def __init__(self) -> None:
        self.identities: dict[str, IdentityRecord] = {}
        self.memberships: dict[str, list[MembershipRecord]] = {}
        self.tenants: dict[str, TenantRecord] = {}

    def add_identity(
        self,
        identity_id: str,
        *,
        active: bool = True,
        platform_operator: bool | None = None,
        email: str | None = None,
    ) -> IdentityRecord:
        record = IdentityRecord(
            identity_id=identity_id,
            email=email or f"{identity_id}@example.test",
            active=active,
            platform_operator=platform_operator,
        )
        self.identities[identity_id] = record
        return record

    def add_membership(
        self,
        identity_id: str,
        tenant_id: str,
        roles: list[str | RoleRecord],
        *,
        active: bool = True,
        tenant_active: bool = True,
    ) -> MembershipRecord:
        tenant = TenantRecord(tenant_id=tenant_id, name=f"Firm {tenant_id}", active=tenant_active)
        self.tenants[tenant_id] = tenant
        existing = self.memberships.setdefault(identity_id, [])
        records = tuple(
            r if isinstance(r, RoleRecord) else RoleRecord(role_id=f"{tenant_id}:{r}", tenant_id=tenant_id, name=r)
            for r in roles
        )
        membership = MembershipRecord(
            membership_id=f"m-{identity_id}-{tenant_id}",
            identity_id=identity_id,
            tenant=tenant,
            active=active,
            roles=records,
            created_at=_EPOCH + timedelta(minutes=len(existing)),
        )
        existing.append(membership)
        return membership

    def replace_membership(self, membership: MembershipRecord) -> None:
        items = self.memberships[membership.identity_id]
        for i, m in enumerate(items):
            if m.tenant_id == membership.tenant_id:
                items[i] = membership

    async def get_identity(self, identity_id: str) -> IdentityRecord | None:
        return self.identities.get(identity_id)

    async def list_memberships(self, identity_id: str) -> list[MembershipRecord]:
        return list(self.memberships.get(identity_id, []))

    async def get_membership(self, identity_id: str, tenant_id: str) -> MembershipRecord | None:
        for m in self.memberships.get(identity_id, []):
            if m.tenant_id == tenant_id:
                return m
        return None


class FakeAuditSink:
    def __init__(self) -> None:
        self.records: list[AuditRecord] = []
        self.fail = False

    async def append(self, record: AuditRecord) -> AuditRecord:
        if self.fail:
            raise ConnectionError("audit store unavailable")
        self.records.append(record)
        return record

    async def list_records(self, query: AuditQuery) -> tuple[list[AuditRecord], int]:
        out = [
            r
            for r in self.records
            if (query.tenant_id is None or r.acting_tenant_id == query.tenant_id)
            and (query.action is None or r.action == query.action)
            and (query.entity_type is None or r.entity_type == query.entity_type)
        ]
        start = (query.page - 1) * query.limit
        return out[start : start + query.limit], len(out)

    def actions(self) -> list[str]:
        return [r.action for r in self.records]


class FakeRevocations:
    def __init__(self) -> None:
        self.revoked: dict[str, int] = {}
        self.broken = False

    async def revoke(self, credential_id: str, ttl_seconds: int) -> None:
        self.revoked[credential_id] = ttl_seconds

    async def is_revoked(self, credential_id: str) -> bool:
        if self.broken:
            raise ConnectionError("revocation store unavailable")
        return credential_id in self.revoked


def make_principal(
    role: Role = Role.JUNIOR_PRACTITIONER,
    *,
    identity_id: str = "user-1",
    tenant_id: str | None = None,
    active: bool = True,
    permissions: frozenset[str] | None = None,
    impersonator_id: str | None = None,
) -> Principal:
    if tenant_id is None:
        tenant_id = PLATFORM_TENANT if role is Role.PLATFORM_ADMIN else "firm-a"
    return Principal(
        identity_id=identity_id,
        tenant_id=tenant_id,
        role=role,
        permissions=DEFAULT_CATALOG.permissions_for(role) if permissions is None else permissions,
        active=active,
        impersonator_id=impersonator_id,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        jwt_secret="unit-test-secret",
        jwt_issuer="lawfirm-authz",
        credential_version=2,
        credential_min_version=2,
        impersonation_ttl_seconds=3600,
        implicit_platform_operator=True,
    )


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def audit_sink() -> FakeAuditSink:
    return FakeAuditSink()


@pytest.fixture
def revocations() -> FakeRevocations:
    return FakeRevocations()


@pytest.fixture
def mint(settings: Settings):
    def _mint(subject: str, **kwargs: Any) -> str:
        token, _ = issue_token(subject, settings, **kwargs)
        return token

    return _mint


class FakeResult:
    def __init__(self, rows: list[dict[str, Any]] | None = None, scalar: Any = None):
        self._rows = rows or []
        self._scalar = scalar

    def scalar(self) -> Any:
        return self._scalar

    def all(self) -> list[tuple]:
        return [tuple(r.values()) for r in self._rows]

    def mappings(self) -> "FakeMappingResult":
        return FakeMappingResult(self._rows)

    def first(self) -> dict[str, Any] | None:
        return self._rows[0] if self._rows else None


class FakeMappingResult:
    def __init__(self, rows: list[dict[str, Any]]):
        self._rows = rows

    def all(self) -> list[dict[str, Any]]:
        return [dict(r) for r in self._rows]

    def first(self) -> dict[str, Any] | None:
        return self._rows[0] if self._rows else None


class FakeTransaction:
    def __init__(self, session: "FakeSession"):
        self._session = session

    async def __aenter__(self) -> "FakeTransaction":
        self._session.events.append("begin")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        self._session.events.append("rollback" if exc_type else "commit")
        # Transaction-local settings never outlive the transaction.
        self._session.tenant = ""
        self._session.role = ""
        return False


class FakeSession:
    """
    Stand-in for an AsyncSession on one pooled connection.

    Understands the tenant-context statements, the start-up policy checks and
    the handful of document queries, applying row visibility the way the
    database policies do.
    """

    def __init__(self, database: "FakeDatabase"):
        self.db = database
        self.events: list[Any] = []
        self.tenant = ""
        self.role = ""
        self.closed = False

    def begin(self) -> FakeTransaction:
        return FakeTransaction(self)

    async def __aenter__(self) -> "FakeSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        await self.close()
        return False

    async def close(self) -> None:
        self.closed = True

    def _visible(self, row: dict[str, Any]) -> bool:
        return self.role == "platform_admin" or (bool(self.tenant) and row["law_firm_id"] == self.tenant)

    async def execute(self, statement: Any, params: dict[str, Any] | None = None) -> FakeResult:
        sql = str(statement)
        params = params or {}
        # Yield so concurrent units of work interleave.
        await asyncio.sleep(0)

        if sql.startswith(("ALTER TABLE", "DROP POLICY", "CREATE POLICY")):
            self.events.append(("ddl", sql))
            if sql.endswith("FORCE ROW LEVEL SECURITY"):
                self.db.tables[sql.split()[2]] = (True, True)
            return FakeResult()
        if "set_config" in sql and ":tenant_id" in sql:
            self.tenant, self.role = params["tenant_id"], params["role"]
            self.events.append(("set", self.tenant, self.role))
            return FakeResult()
        if "set_config" in sql:
            self.tenant, self.role = "", ""
            self.events.append("clear")
            return FakeResult()
        if "current_setting" in sql:
            return FakeResult(scalar=self.tenant)
        if "relforcerowsecurity" in sql:
            rows = [
                {"relname": t}
                for t in params["tables"]
                if t in self.db.tables and self.db.tables[t] != (True, True)
            ]
            return FakeResult(rows)
        if "pg_class" in sql:
            return FakeResult([{"relname": t} for t in params["tables"] if t in self.db.tables])

        self.events.append(("query", sql.split()[0].upper()))
        docs = [d for d in self.db.documents if self._visible(d)]
        if sql.startswith("DELETE FROM documents"):
            self.db.documents = [
                d for d in self.db.documents
                if not (self._visible(d) and d["id"] == params["id"] and d["law_firm_id"] == params["tenant_id"])
            ]
            return FakeResult()
        if "WHERE id = :id" in sql:
            return FakeResult([d for d in docs if d["id"] == params["id"]])
        if "tenant_id" in params:
            docs = [d for d in docs if d["law_firm_id"] == params["tenant_id"]]
        if "case_id" in params:
            docs = [d for d in docs if d.get("case_id") == params["case_id"]]
        if "client_id" in params:
            docs = [d for d in docs if d.get("client_id") == params["client_id"]]
        if "count(*)" in sql:
            return FakeResult(scalar=len(docs))
        offset, limit = params.get("offset", 0), params.get("limit", len(docs))
        return FakeResult([dict(d) for d in docs[offset : offset + limit]])


class FakeDatabase:
    def __init__(self) -> None:
        # table -> (row security enabled, forced)
        self.tables: dict[str, tuple[bool, bool]] = {"documents": (True, True)}
        self.documents: list[dict[str, Any]] = []
        self.sessions: list[FakeSession] = []

    def add_document(self, doc_id: str, tenant_id: str, uploaded_by: str, **extra: Any) -> None:
        self.documents.append(
            {
                "id": doc_id,
                "law_firm_id": tenant_id,
                "case_id": extra.get("case_id"),
                "client_id": extra.get("client_id"),
                "name": extra.get("name", f"{doc_id}.pdf"),
                "description": None,
                "file_size": 1024,
                "mime_type": "application/pdf",
                "uploaded_by": uploaded_by,
                "created_at": None,
            }
        )

    def session_factory(self) -> FakeSession:
        session = FakeSession(self)
        self.sessions.append(session)
        return session


@pytest.fixture
def database() -> FakeDatabase:
    return FakeDatabase()
