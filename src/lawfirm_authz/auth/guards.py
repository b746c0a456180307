"""
Route guards.

A protected handler has the shape `async def handler(request, principal)`.
Decorating it with one or more guards produces a FastAPI endpoint taking only
`request`; the outermost layer authenticates once, then each guard runs its
check in decoration order (outermost first) before the handler is reached.

    @router.delete("/documents/{document_id}")
    @require_permission(DOCUMENTS_DELETE)
    @require_resource_access(load_document)
    @audited("DELETE", "Document", entity_id_param="document_id")
    async def delete_document(request, principal): ...

Denials are returned as responses built from `Denial` values, never raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

from fastapi import Request
from fastapi.responses import JSONResponse

from lawfirm_authz.auth.catalog import DEFAULT_CATALOG, Role, RoleCatalog
from lawfirm_authz.auth.evaluator import (
    can_access_resource,
    has_all_permissions,
    has_any_permission,
    has_permission,
    has_role_or_higher,
)
from lawfirm_authz.auth.models import Principal
from lawfirm_authz.auth.outcomes import Denial, DenialReason, Resolution, ResolutionFailure
from lawfirm_authz.configs.logging_config import get_logger, get_security_logger
from lawfirm_authz.domain.entities.audit import IMPERSONATED_REQUEST, AuditRecord
from lawfirm_authz.errors import AppError
from lawfirm_authz.utils.request_meta import client_address, user_agent
from lawfirm_authz.utils.response import failure

log = get_logger(__name__)
security_log = get_security_logger()

Handler = Callable[[Request, Principal], Awaitable[Any]]
Check = Callable[[Request, Principal], Awaitable["Denial | None"]]

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


@dataclass(frozen=True)
class ResourceRef:
    """Ownership facts a resource guard needs about one record."""

    owner_id: str | None
    tenant_id: str | None
    payload: Any = None


ResourceLoader = Callable[[Request, Principal], Awaitable["ResourceRef | None"]]


def _bearer_token(value: str | None) -> str | None:
    if not value:
        return None
    parts = value.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    token = parts[1].strip()
    return token or None


def extract_bearer_token(request: Request) -> str | None:
    token = _bearer_token(request.headers.get("authorization"))
    if token:
        return token
    alt = request.headers.get("x-auth-token")
    return alt.strip() if alt and alt.strip() else None


async def authenticate(request: Request) -> Resolution:
    """Resolve the request's principal once; later calls reuse the result."""
    cached = getattr(request.state, "principal", None)
    if cached is not None:
        return cached
    resolver = request.app.state.resolver
    resolution = await resolver.resolve(extract_bearer_token(request))
    request.state.principal = resolution
    if isinstance(resolution, ResolutionFailure):
        log.info(
            "auth.authenticate failed kind=%s detail=%s path=%s",
            resolution.kind.value,
            resolution.detail,
            request.url.path,
        )
    return resolution


def denial_response(denial: Denial) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if denial.reason is DenialReason.UNAUTHENTICATED else None
    return JSONResponse(
        status_code=denial.http_status,
        content=failure(denial.message, denial.reason.value),
        headers=headers,
    )


def _status_of(result: Any) -> int:
    return int(getattr(result, "status_code", 200))


async def _record_impersonated_request(request: Request, principal: Principal, status: int) -> None:
    sink = request.app.state.audit_sink
    record = AuditRecord(
        actor_id=principal.identity_id,
        acting_tenant_id=principal.tenant_id,
        action=IMPERSONATED_REQUEST,
        entity_type="Request",
        entity_id=request.url.path,
        after={"method": request.method, "path": request.url.path, "status": status},
        origin=client_address(request),
        user_agent=user_agent(request),
        impersonator_id=principal.impersonator_id,
    )
    security_log.info(
        "security.impersonated_request actor=%s target=%s tenant=%s method=%s path=%s status=%s",
        principal.impersonator_id,
        principal.identity_id,
        principal.tenant_id,
        request.method,
        request.url.path,
        status,
    )
    await sink.append(record)


def _entrypoint(with_principal: Handler, original: Callable) -> Callable[[Request], Awaitable[Any]]:
    async def endpoint(request: Request):
        resolution = await authenticate(request)
        if isinstance(resolution, ResolutionFailure):
            return denial_response(Denial.from_failure(resolution))
        if not resolution.is_impersonated or request.method.upper() in SAFE_METHODS:
            return await with_principal(request, resolution)
        try:
            result = await with_principal(request, resolution)
        except AppError as exc:
            await _record_impersonated_request(request, resolution, exc.http_status)
            raise
        except Exception:
            await _record_impersonated_request(request, resolution, 500)
            raise
        await _record_impersonated_request(request, resolution, _status_of(result))
        return result

    # functools.wraps would expose the (request, principal) signature to FastAPI.
    endpoint.__name__ = getattr(original, "__name__", "endpoint")
    endpoint.__qualname__ = getattr(original, "__qualname__", endpoint.__name__)
    endpoint.__doc__ = getattr(original, "__doc__", None)
    endpoint.__inner__ = with_principal  # type: ignore[attr-defined]
    return endpoint


def _guard(check: Check) -> Callable[[Callable], Callable[[Request], Awaitable[Any]]]:
    def decorator(handler: Callable) -> Callable[[Request], Awaitable[Any]]:
        target: Handler = getattr(handler, "__inner__", handler)

        async def with_principal(request: Request, principal: Principal):
            denial = await check(request, principal)
            if denial is not None:
                log.info(
                    "auth.denied reason=%s required=%s identity_id=%s tenant_id=%s path=%s",
                    denial.reason.value,
                    denial.required,
                    principal.identity_id,
                    principal.tenant_id,
                    request.url.path,
                )
                return denial_response(denial)
            return await target(request, principal)

        return _entrypoint(with_principal, handler)

    return decorator


def require_auth(handler: Callable) -> Callable[[Request], Awaitable[Any]]:
    async def check(_: Request, principal: Principal) -> Denial | None:
        if not principal.active:
            return Denial(DenialReason.ACCOUNT_INACTIVE)
        return None

    return _guard(check)(handler)


def require_role(role: Role | str, catalog: RoleCatalog = DEFAULT_CATALOG):
    required = role.value if isinstance(role, Role) else str(role)

    async def check(_: Request, principal: Principal) -> Denial | None:
        if not principal.active:
            return Denial(DenialReason.ACCOUNT_INACTIVE)
        if not has_role_or_higher(principal, role, catalog):
            return Denial(DenialReason.ROLE_DENIED, required)
        return None

    return _guard(check)


def require_permission(permission: str):
    async def check(_: Request, principal: Principal) -> Denial | None:
        if not principal.active:
            return Denial(DenialReason.ACCOUNT_INACTIVE)
        if not has_permission(principal, permission):
            return Denial(DenialReason.PERMISSION_DENIED, permission)
        return None

    return _guard(check)


def require_any_permission(permissions: Iterable[str]):
    wanted = tuple(permissions)

    async def check(_: Request, principal: Principal) -> Denial | None:
        if not principal.active:
            return Denial(DenialReason.ACCOUNT_INACTIVE)
        if not has_any_permission(principal, wanted):
            return Denial(DenialReason.PERMISSION_DENIED, " or ".join(wanted))
        return None

    return _guard(check)


def require_all_permissions(permissions: Iterable[str]):
    wanted = tuple(permissions)

    async def check(_: Request, principal: Principal) -> Denial | None:
        if not principal.active:
            return Denial(DenialReason.ACCOUNT_INACTIVE)
        if not has_all_permissions(principal, wanted):
            missing = [p for p in wanted if not has_permission(principal, p)]
            return Denial(DenialReason.PERMISSION_DENIED, ", ".join(missing))
        return None

    return _guard(check)


def require_resource_access(loader: ResourceLoader, catalog: RoleCatalog = DEFAULT_CATALOG):
    """
    Load the target record and check ownership before the handler runs.

    The loaded `ResourceRef` is left on `request.state.resource`.
    """

    async def check(request: Request, principal: Principal) -> Denial | None:
        if not principal.active:
            return Denial(DenialReason.ACCOUNT_INACTIVE)
        ref = await loader(request, principal)
        if ref is None:
            return Denial(DenialReason.RESOURCE_NOT_FOUND)
        if not can_access_resource(principal, ref.owner_id, ref.tenant_id, catalog):
            if ref.tenant_id != principal.tenant_id and not principal.is_platform:
                security_log.warning(
                    "security.cross_tenant_access_denied identity_id=%s tenant_id=%s resource_tenant=%s path=%s",
                    principal.identity_id,
                    principal.tenant_id,
                    ref.tenant_id,
                    request.url.path,
                )
            return Denial(DenialReason.RESOURCE_DENIED)
        request.state.resource = ref
        return None

    return _guard(check)


def audited(action: str, entity_type: str, *, entity_id_param: str | None = None):
    """
    Append an audit record after the handler succeeds.

    Handlers put snapshots on `request.state.audit_before` / `audit_after`
    and may set `request.state.audit_entity_id` when the id is not a path
    parameter.
    """

    def decorator(handler: Callable) -> Callable:
        target: Handler = getattr(handler, "__inner__", handler)

        async def with_audit(request: Request, principal: Principal):
            result = await target(request, principal)
            if _status_of(result) >= 400:
                return result
            entity_id = getattr(request.state, "audit_entity_id", None)
            if entity_id is None and entity_id_param:
                entity_id = request.path_params.get(entity_id_param)
            record = AuditRecord(
                actor_id=principal.identity_id,
                acting_tenant_id=principal.tenant_id or None,
                action=action,
                entity_type=entity_type,
                entity_id=str(entity_id) if entity_id is not None else None,
                before=getattr(request.state, "audit_before", None),
                after=getattr(request.state, "audit_after", None),
                origin=client_address(request),
                user_agent=user_agent(request),
                impersonator_id=principal.impersonator_id,
            )
            await request.app.state.audit_sink.append(record)
            return result

        if hasattr(handler, "__inner__"):
            return _entrypoint(with_audit, handler)
        with_audit.__name__ = getattr(handler, "__name__", "handler")
        with_audit.__doc__ = getattr(handler, "__doc__", None)
        return with_audit

    return decorator
