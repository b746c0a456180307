from __future__ import annotations

from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase

from lawfirm_authz.configs.settings import Settings
from lawfirm_authz.configs.logging_config import get_logger
from lawfirm_authz.domain.entities.directory import (
    IdentityRecord,
    MembershipRecord,
    RoleRecord,
    TenantRecord,
)

log = get_logger(__name__)


def _identity(doc: dict[str, Any]) -> IdentityRecord:
    return IdentityRecord(
        identity_id=str(doc["identity_id"]),
        email=doc.get("email"),
        active=bool(doc.get("is_active", True)),
        platform_operator=doc.get("platform_operator"),
    )


def _tenant(doc: dict[str, Any] | None, tenant_id: str) -> TenantRecord:
    if doc is None:
        # Dangling membership: treat the tenant as inactive.
        return TenantRecord(tenant_id=tenant_id, active=False)
    return TenantRecord(
        tenant_id=str(doc["tenant_id"]),
        name=doc.get("name"),
        active=bool(doc.get("is_active", True)),
    )


def _role(doc: dict[str, Any]) -> RoleRecord:
    return RoleRecord(
        role_id=str(doc["role_id"]),
        tenant_id=str(doc["tenant_id"]),
        name=str(doc.get("name") or ""),
        permissions=tuple(str(p) for p in doc.get("permissions") or []),
    )


class DirectoryRepository:
    """
    Identity directory: identities, tenants (law firms), memberships and tenant roles.

    Collections:
    - identities   {identity_id, email, is_active, platform_operator?}
    - tenants      {tenant_id, name, is_active}
    - memberships  {membership_id, identity_id, tenant_id, is_active, role_ids, created_at}
    - roles        {role_id, tenant_id, name, permissions}
    """

    def __init__(self, db: AsyncIOMotorDatabase, settings: Settings):
        self._db = db
        self._settings = settings
        self._identities = db["identities"]
        self._tenants = db["tenants"]
        self._memberships = db["memberships"]
        self._roles = db["roles"]

    async def ensure_indexes(self) -> None:
        log.info("repo.directory.ensure_indexes start")
        await self._identities.create_index([("identity_id", 1)], unique=True)
        await self._tenants.create_index([("tenant_id", 1)], unique=True)
        await self._memberships.create_index([("identity_id", 1), ("tenant_id", 1)], unique=True)
        await self._memberships.create_index([("identity_id", 1), ("created_at", 1)])
        await self._roles.create_index([("tenant_id", 1), ("role_id", 1)], unique=True)
        log.info("repo.directory.ensure_indexes done")

    async def get_identity(self, identity_id: str) -> IdentityRecord | None:
        doc = await self._identities.find_one({"identity_id": identity_id})
        if not doc:
            log.info("repo.directory.get_identity not_found identity_id=%s", identity_id)
            return None
        return _identity(doc)

    async def list_memberships(self, identity_id: str) -> list[MembershipRecord]:
        # Deterministic order: first membership created wins.
        cursor = self._memberships.find({"identity_id": identity_id}).sort(
            [("created_at", 1), ("membership_id", 1)]
        )
        docs = await cursor.to_list(length=None)
        log.info("repo.directory.list_memberships identity_id=%s count=%s", identity_id, len(docs))
        return await self._assemble(docs)

    async def get_membership(self, identity_id: str, tenant_id: str) -> MembershipRecord | None:
        doc = await self._memberships.find_one({"identity_id": identity_id, "tenant_id": tenant_id})
        if not doc:
            return None
        assembled = await self._assemble([doc])
        return assembled[0]

    async def _assemble(self, docs: list[dict[str, Any]]) -> list[MembershipRecord]:
        if not docs:
            return []
        tenant_ids = sorted({str(d["tenant_id"]) for d in docs})
        role_ids = sorted({str(r) for d in docs for r in d.get("role_ids") or []})

        tenants = {
            str(t["tenant_id"]): t
            async for t in self._tenants.find({"tenant_id": {"$in": tenant_ids}})
        }
        roles: dict[tuple[str, str], RoleRecord] = {}
        if role_ids:
            async for r in self._roles.find({"role_id": {"$in": role_ids}}):
                record = _role(r)
                roles[(record.role_id, record.tenant_id)] = record

        out: list[MembershipRecord] = []
        for d in docs:
            tenant_id = str(d["tenant_id"])
            assigned = []
            for role_id in d.get("role_ids") or []:
                # Roles are looked up inside the membership's tenant only.
                record = roles.get((str(role_id), tenant_id))
                if record is None:
                    log.warning(
                        "repo.directory.role_missing membership=%s role_id=%s tenant_id=%s",
                        d.get("membership_id"),
                        role_id,
                        tenant_id,
                    )
                    continue
                assigned.append(record)
            out.append(
                MembershipRecord(
                    membership_id=str(d.get("membership_id") or d.get("_id")),
                    identity_id=str(d["identity_id"]),
                    tenant=_tenant(tenants.get(tenant_id), tenant_id),
                    active=bool(d.get("is_active", True)),
                    roles=tuple(assigned),
                    created_at=d.get("created_at"),
                )
            )
        return out
