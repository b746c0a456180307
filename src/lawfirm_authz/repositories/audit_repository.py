from __future__ import annotations

from typing import Any, Protocol

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING

from lawfirm_authz.configs.settings import Settings
from lawfirm_authz.configs.logging_config import get_logger
from lawfirm_authz.domain.entities.audit import AuditQuery, AuditRecord

log = get_logger(__name__)


class AuditSink(Protocol):
    async def append(self, record: AuditRecord) -> AuditRecord: ...

    async def list_records(self, query: AuditQuery) -> tuple[list[AuditRecord], int]: ...


class AuditRepository:
    """
    Append-only audit log.

    There is deliberately no update or delete method on this class.
    """

    def __init__(self, db: AsyncIOMotorDatabase, settings: Settings):
        self._db = db
        self._settings = settings
        self._col = db[settings.audit_collection]

    async def ensure_indexes(self) -> None:
        log.info("repo.audit.ensure_indexes start")
        await self._col.create_index([("record_id", 1)], unique=True)
        await self._col.create_index([("acting_tenant_id", 1), ("created_at", DESCENDING)])
        await self._col.create_index([("action", 1), ("created_at", DESCENDING)])
        await self._col.create_index([("impersonator_id", 1), ("created_at", DESCENDING)])
        log.info("repo.audit.ensure_indexes done")

    async def append(self, record: AuditRecord) -> AuditRecord:
        log.info(
            "repo.audit.append action=%s actor=%s tenant=%s entity=%s/%s impersonator=%s",
            record.action,
            record.actor_id,
            record.acting_tenant_id,
            record.entity_type,
            record.entity_id,
            record.impersonator_id,
        )
        await self._col.insert_one(record.model_dump())
        return record

    async def list_records(self, query: AuditQuery) -> tuple[list[AuditRecord], int]:
        q: dict[str, Any] = {}
        if query.tenant_id is not None:
            q["acting_tenant_id"] = query.tenant_id
        if query.action:
            q["action"] = query.action
        if query.entity_type:
            q["entity_type"] = query.entity_type

        limit = max(min(query.limit, 200), 1)
        skip = (max(query.page, 1) - 1) * limit
        log.info(
            "repo.audit.list skip=%s limit=%s query_keys=%s", skip, limit, sorted(q.keys())
        )
        cursor = self._col.find(q, projection={"_id": 0}).sort("created_at", DESCENDING).skip(skip).limit(limit)
        docs = await cursor.to_list(length=limit)
        total = await self._col.count_documents(q)
        return [AuditRecord(**d) for d in docs], total
