from __future__ import annotations

from fastapi import APIRouter, Request

from lawfirm_authz.auth.catalog import ADMIN_AUDIT_LOGS, Role
from lawfirm_authz.auth.guards import require_permission, require_role
from lawfirm_authz.auth.models import Principal
from lawfirm_authz.configs.logging_config import get_logger
from lawfirm_authz.domain.entities.audit import AuditQuery
from lawfirm_authz.domain.entities.impersonation import (
    ImpersonationEndRequest,
    ImpersonationStartRequest,
)
from lawfirm_authz.errors import ValidationError
from lawfirm_authz.services.impersonation_service import ImpersonationService
from lawfirm_authz.utils.request_meta import client_address, read_model, user_agent
from lawfirm_authz.utils.response import success
from lawfirm_authz.utils.time_utils import utc_now

log = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def _service(request: Request) -> ImpersonationService:
    return request.app.state.impersonation


def _int_param(request: Request, name: str, default: int, *, minimum: int, maximum: int) -> int:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer", field=name) from exc
    return max(min(value, maximum), minimum)


@router.post("/impersonate")
@require_role(Role.PLATFORM_ADMIN)
async def start_impersonation(request: Request, principal: Principal) -> dict:
    body = await read_model(request, ImpersonationStartRequest)
    log.info(
        "admin.impersonate.start request_id=%s actor=%s target=%s tenant=%s",
        body.request_id,
        principal.identity_id,
        body.identity_id,
        body.tenant_id,
    )
    session = await _service(request).start_impersonation(
        principal,
        body.identity_id,
        body.tenant_id,
        body.reason,
        ticket_ref=body.ticket_ref,
        origin=client_address(request),
        user_agent=user_agent(request),
    )
    return success(
        {
            "impersonationToken": session.credential,
            "credentialId": session.credential_id,
            "expiresAt": session.expires_at.isoformat(),
            "targetUser": {"id": session.grant.target_identity_id, "role": session.target_role.value},
            "lawFirm": {"id": session.grant.target_tenant_id},
            "reason": session.grant.reason,
            "ticketNumber": session.grant.ticket_ref,
        },
        message="impersonation session started",
    )


@router.delete("/impersonate")
@require_role(Role.PLATFORM_ADMIN)
async def end_impersonation(request: Request, principal: Principal) -> dict:
    body = await read_model(request, ImpersonationEndRequest)
    record = await _service(request).end_impersonation(
        principal,
        body.identity_id,
        body.tenant_id,
        body.duration_ms,
        credential_id=body.credential_id,
        origin=client_address(request),
        user_agent=user_agent(request),
    )
    log.info(
        "admin.impersonate.end request_id=%s actor=%s target=%s record_id=%s",
        body.request_id,
        principal.identity_id,
        body.identity_id,
        record.record_id,
    )
    return success(
        {"endedAt": utc_now().isoformat(), "auditRecordId": record.record_id},
        message="impersonation session ended",
    )


@router.get("/audit")
@require_permission(ADMIN_AUDIT_LOGS)
async def list_audit_records(request: Request, principal: Principal) -> dict:
    params = request.query_params
    tenant_id = params.get("tenant_id") or None
    if not principal.is_platform:
        # Firm administrators only ever see their own firm.
        tenant_id = principal.tenant_id
    query = AuditQuery(
        tenant_id=tenant_id,
        action=params.get("action") or None,
        entity_type=params.get("entity_type") or None,
        page=_int_param(request, "page", 1, minimum=1, maximum=10_000),
        limit=_int_param(request, "limit", 50, minimum=1, maximum=200),
    )
    records, total = await request.app.state.audit_sink.list_records(query)
    log.info(
        "admin.audit.list identity_id=%s tenant_filter=%s page=%s count=%s total=%s",
        principal.identity_id,
        query.tenant_id,
        query.page,
        len(records),
        total,
    )
    pages = (total + query.limit - 1) // query.limit
    return success(
        {
            "logs": [r.model_dump(mode="json") for r in records],
            "pagination": {"page": query.page, "limit": query.limit, "total": total, "pages": pages},
        }
    )
