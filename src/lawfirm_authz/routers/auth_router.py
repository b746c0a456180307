from __future__ import annotations

from fastapi import APIRouter, Request

from lawfirm_authz.auth.guards import require_auth
from lawfirm_authz.auth.models import Principal
from lawfirm_authz.utils.response import success

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me")
@require_auth
async def me(request: Request, principal: Principal) -> dict:
    """Who the current credential resolves to."""
    data = principal.summary()
    data["impersonationReason"] = principal.impersonation_reason
    return success(data)
