from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, Field

from lawfirm_authz.auth.catalog import Role


@dataclass(frozen=True)
class ImpersonationGrant:
    original_actor_id: str
    target_identity_id: str
    target_tenant_id: str
    reason: str
    ticket_ref: str | None
    issued_at: datetime


@dataclass(frozen=True)
class ImpersonationSession:
    grant: ImpersonationGrant
    credential: str
    credential_id: str
    expires_at: datetime
    target_role: Role


class Envelope(BaseModel):
    request_id: str | None = None


class ImpersonationStartRequest(Envelope):
    tenant_id: str = Field(alias="lawFirmId")
    identity_id: str = Field(alias="userId")
    reason: str = ""
    ticket_ref: str | None = Field(default=None, alias="ticketNumber")

    model_config = {"populate_by_name": True}


class ImpersonationEndRequest(Envelope):
    tenant_id: str = Field(alias="lawFirmId")
    identity_id: str = Field(alias="userId")
    duration_ms: int = Field(default=0, alias="sessionDuration", ge=0)
    credential_id: str | None = Field(default=None, alias="credentialId")

    model_config = {"populate_by_name": True}
