from __future__ import annotations

from contextlib import AbstractAsyncContextManager

from fastapi import APIRouter, Request

from lawfirm_authz.auth.catalog import DOCUMENTS_DELETE, DOCUMENTS_VIEW
from lawfirm_authz.auth.guards import (
    ResourceRef,
    audited,
    require_permission,
    require_resource_access,
)
from lawfirm_authz.auth.models import Principal
from lawfirm_authz.configs.logging_config import get_logger
from lawfirm_authz.errors import NotFoundError, ValidationError
from lawfirm_authz.repositories.document_repository import DocumentRepository
from lawfirm_authz.repositories.tenant_gateway import ScopedSession, TenantScopedGateway
from lawfirm_authz.utils.response import success

log = get_logger(__name__)

router = APIRouter(prefix="/documents", tags=["documents"])


def _session(request: Request, principal: Principal) -> AbstractAsyncContextManager[ScopedSession]:
    gateway: TenantScopedGateway = request.app.state.gateway
    if principal.is_platform:
        return gateway.platform_scope(principal)
    return gateway.scoped(principal)


async def load_document(request: Request, principal: Principal) -> ResourceRef | None:
    document_id = request.path_params["document_id"]
    async with _session(request, principal) as session:
        doc = await DocumentRepository(session).get_document(document_id)
    if doc is None:
        return None
    return ResourceRef(owner_id=doc["uploaded_by"], tenant_id=doc["law_firm_id"], payload=doc)


def _int_query(request: Request, name: str, default: int) -> int:
    raw = request.query_params.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer", field=name) from exc


@router.get("")
@require_permission(DOCUMENTS_VIEW)
async def list_documents(request: Request, principal: Principal) -> dict:
    params = request.query_params
    async with _session(request, principal) as session:
        docs, total = await DocumentRepository(session).list_documents(
            tenant_id=params.get("lawFirmId") or None,
            case_id=params.get("caseId") or None,
            client_id=params.get("clientId") or None,
            limit=_int_query(request, "limit", 50),
            offset=_int_query(request, "offset", 0),
        )
    log.info(
        "documents.list identity_id=%s tenant_id=%s count=%s total=%s",
        principal.identity_id,
        principal.tenant_id,
        len(docs),
        total,
    )
    return success({"documents": docs, "total": total})


@router.get("/{document_id}")
@require_permission(DOCUMENTS_VIEW)
@require_resource_access(load_document)
async def get_document(request: Request, principal: Principal) -> dict:
    ref: ResourceRef = request.state.resource
    return success(ref.payload)


@router.delete("/{document_id}")
@require_permission(DOCUMENTS_DELETE)
@require_resource_access(load_document)
@audited("DELETE", "Document", entity_id_param="document_id")
async def delete_document(request: Request, principal: Principal) -> dict:
    document_id = request.path_params["document_id"]
    async with _session(request, principal) as session:
        deleted = await DocumentRepository(session).delete_document(document_id)
    if deleted is None:
        raise NotFoundError("document not found")
    request.state.audit_before = deleted
    request.state.audit_after = None
    log.info(
        "documents.delete identity_id=%s tenant_id=%s document_id=%s",
        principal.identity_id,
        principal.tenant_id,
        document_id,
    )
    return success({"id": document_id, "deleted": True}, message="document deleted")
