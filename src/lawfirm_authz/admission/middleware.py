from __future__ import annotations

from typing import Mapping

from fastapi import Request
from fastapi.responses import JSONResponse

from lawfirm_authz.admission.limiter import AdmissionController, AdmissionDecision
from lawfirm_authz.auth.guards import extract_bearer_token
from lawfirm_authz.auth.jwt import CLAIM_TENANT, decode_token
from lawfirm_authz.configs.logging_config import get_logger
from lawfirm_authz.configs.settings import Settings
from lawfirm_authz.errors import AuthError
from lawfirm_authz.utils.request_meta import client_address
from lawfirm_authz.utils.response import failure

log = get_logger(__name__)


def tenant_hint(request: Request, settings: Settings) -> str | None:
    """
    Tenant id carried by a correctly signed bearer credential. Bucketing only.

    Credentials that fail verification charge no firm's quota.
    """
    token = extract_bearer_token(request)
    if not token:
        return None
    try:
        claims = decode_token(token, settings)
    except AuthError:
        return None
    tenant_id = claims.get(CLAIM_TENANT)
    return str(tenant_id) if tenant_id else None


def _matches(path: str, prefix: str) -> bool:
    prefix = prefix.rstrip("/")
    return path == prefix or path.startswith(prefix + "/")


def policy_for_path(path: str, route_policies: Mapping[str, str], default: str) -> str:
    """Longest matching prefix wins."""
    best: str | None = None
    for prefix in route_policies:
        if _matches(path, prefix) and (best is None or len(prefix) > len(best)):
            best = prefix
    return route_policies[best] if best is not None else default


def is_exempt(path: str, exempt_paths: list[str]) -> bool:
    return any(_matches(path, p) for p in exempt_paths)


def rejection_response(decision: AdmissionDecision) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content=failure(decision.message or "rate limit exceeded", "rate_limited"),
        headers=decision.headers(),
    )


async def admit(
    request: Request, controller: AdmissionController, settings: Settings
) -> tuple[AdmissionDecision | None, AdmissionDecision | None]:
    """
    Run the route policy and, when a tenant hint is present, the per-tenant policy.

    Returns (route decision, tenant decision); the tenant check is skipped once
    the route check has already rejected.
    """
    path = request.url.path
    policy = policy_for_path(path, settings.admission_route_policies, settings.admission_default_policy)
    address = client_address(request)
    route_decision = await controller.check_admission(f"ip:{address}", policy)
    if not route_decision.allowed:
        return route_decision, None

    tenant_id = tenant_hint(request, settings)
    if not tenant_id or settings.admission_tenant_policy not in controller.policies:
        return route_decision, None
    tenant_decision = await controller.check_admission(
        f"firm:{tenant_id}", settings.admission_tenant_policy
    )
    return route_decision, tenant_decision


async def admission_middleware(request: Request, call_next):
    controller: AdmissionController | None = getattr(request.app.state, "admission", None)
    settings: Settings | None = getattr(request.app.state, "settings", None)
    if controller is None or settings is None or is_exempt(request.url.path, settings.admission_exempt_paths):
        return await call_next(request)

    route_decision, tenant_decision = await admit(request, controller, settings)
    for decision in (route_decision, tenant_decision):
        if decision is not None and not decision.allowed:
            log.info(
                "admission.reject path=%s policy=%s client=%s degraded=%s",
                request.url.path,
                decision.policy,
                client_address(request),
                decision.degraded,
            )
            return rejection_response(decision)

    response = await call_next(request)
    if route_decision is not None:
        for name, value in route_decision.headers().items():
            response.headers[name] = value
    return response
