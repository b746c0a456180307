from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import text

from lawfirm_authz.configs.logging_config import get_logger
from lawfirm_authz.repositories.tenant_gateway import ScopedSession

log = get_logger(__name__)

_COLUMNS = (
    'id, law_firm_id, case_id, client_id, name, description, file_size, mime_type, '
    'uploaded_by, "createdAt" AS created_at'
)


def _row(mapping: Any) -> dict[str, Any]:
    doc = dict(mapping)
    created = doc.get("created_at")
    if isinstance(created, datetime):
        doc["created_at"] = created.isoformat()
    return doc


class DocumentRepository:
    """
    Tenant-scoped document rows.

    Row-level security already limits what a scoped session can see; the
    explicit `law_firm_id` predicate keeps queries correct for platform
    sessions that pass a tenant filter.
    """

    def __init__(self, session: ScopedSession):
        self._session = session

    def _tenant_filter(self, tenant_id: str | None) -> str | None:
        if self._session.is_platform:
            return tenant_id
        return self._session.tenant_id

    async def list_documents(
        self,
        *,
        tenant_id: str | None = None,
        case_id: str | None = None,
        client_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], int]:
        clauses: list[str] = []
        params: dict[str, Any] = {}
        tenant = self._tenant_filter(tenant_id)
        if tenant:
            clauses.append("law_firm_id = :tenant_id")
            params["tenant_id"] = tenant
        if case_id:
            clauses.append("case_id = :case_id")
            params["case_id"] = case_id
        if client_id:
            clauses.append("client_id = :client_id")
            params["client_id"] = client_id
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

        limit = max(min(limit, 200), 1)
        offset = max(offset, 0)
        log.info(
            "repo.documents.list tenant_id=%s limit=%s offset=%s filters=%s",
            tenant,
            limit,
            offset,
            sorted(params.keys()),
        )
        rows = await self._session.execute(
            text(f'SELECT {_COLUMNS} FROM documents{where} ORDER BY "createdAt" DESC LIMIT :limit OFFSET :offset'),
            {**params, "limit": limit, "offset": offset},
        )
        total = await self._session.execute(text(f"SELECT count(*) FROM documents{where}"), params)
        return [_row(r) for r in rows.mappings().all()], int(total.scalar() or 0)

    async def get_document(self, document_id: str) -> dict[str, Any] | None:
        result = await self._session.execute(
            text(f"SELECT {_COLUMNS} FROM documents WHERE id = :id"), {"id": document_id}
        )
        row = result.mappings().first()
        if row is None:
            log.info("repo.documents.get not_found document_id=%s", document_id)
            return None
        return _row(row)

    async def delete_document(self, document_id: str) -> dict[str, Any] | None:
        """Delete one document and return the row as it was before deletion."""
        existing = await self.get_document(document_id)
        if existing is None:
            return None
        self._session.assert_tenant(existing["law_firm_id"])
        await self._session.execute(
            text("DELETE FROM documents WHERE id = :id AND law_firm_id = :tenant_id"),
            {"id": document_id, "tenant_id": existing["law_firm_id"]},
        )
        log.info(
            "repo.documents.delete document_id=%s tenant_id=%s", document_id, existing["law_firm_id"]
        )
        return existing
