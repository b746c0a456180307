from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from lawfirm_authz.utils.time_utils import utc_now

IMPERSONATION_START = "IMPERSONATION_START"
IMPERSONATION_END = "IMPERSONATION_END"
IMPERSONATED_REQUEST = "IMPERSONATED_REQUEST"


class AuditRecord(BaseModel):
    """
    Mongo document model for the audit collection.

    Records are written once and never updated or deleted.
    """

    model_config = ConfigDict(frozen=True)

    record_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    actor_id: str
    acting_tenant_id: str | None = None
    action: str
    entity_type: str
    entity_id: str | None = None
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    origin: str | None = None
    user_agent: str | None = None
    # Original platform operator when the actor was impersonated.
    impersonator_id: str | None = None
    created_at: datetime = Field(default_factory=utc_now)


class AuditQuery(BaseModel):
    tenant_id: str | None = None
    action: str | None = None
    entity_type: str | None = None
    page: int = 1
    limit: int = 50
