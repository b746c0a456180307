from __future__ import annotations

from lawfirm_authz.auth.catalog import DEFAULT_CATALOG, RoleCatalog
from lawfirm_authz.auth.jwt import CLAIM_IMPERSONATION, CLAIM_ROLE_HINT, issue_token
from lawfirm_authz.auth.models import Principal
from lawfirm_authz.auth.resolver import IdentityDirectory, expand_membership
from lawfirm_authz.auth.revocation import RevocationList
from lawfirm_authz.configs.logging_config import get_logger, get_security_logger
from lawfirm_authz.configs.settings import Settings
from lawfirm_authz.domain.entities.audit import IMPERSONATION_END, IMPERSONATION_START, AuditRecord
from lawfirm_authz.domain.entities.impersonation import ImpersonationGrant, ImpersonationSession
from lawfirm_authz.errors import ForbiddenError, NotFoundError, ValidationError
from lawfirm_authz.repositories.audit_repository import AuditSink
from lawfirm_authz.utils.time_utils import from_epoch, utc_now

log = get_logger(__name__)
security_log = get_security_logger()


class ImpersonationService:
    """
    Time-boxed, audited impersonation of a tenant member by a platform operator.

    The start record is written before any credential exists; if the audit
    write fails, no credential is issued.
    """

    def __init__(
        self,
        directory: IdentityDirectory,
        audit_sink: AuditSink,
        settings: Settings,
        *,
        catalog: RoleCatalog = DEFAULT_CATALOG,
        revocations: RevocationList | None = None,
    ):
        self._directory = directory
        self._audit = audit_sink
        self._settings = settings
        self._catalog = catalog
        self._revocations = revocations

    def _ensure_operator(self, actor: Principal) -> None:
        if not actor.active or actor.role is not self._catalog.platform_role or not actor.is_platform:
            security_log.warning(
                "security.impersonation_refused actor=%s role=%s tenant=%s reason=not_platform_operator",
                actor.identity_id,
                actor.role.value,
                actor.tenant_id,
            )
            raise ForbiddenError("platform operator access required")
        if actor.is_impersonated:
            security_log.warning(
                "security.impersonation_refused actor=%s impersonator=%s reason=nested",
                actor.identity_id,
                actor.impersonator_id,
            )
            raise ForbiddenError("nested impersonation is not allowed")

    async def start_impersonation(
        self,
        actor: Principal,
        target_identity_id: str,
        target_tenant_id: str,
        reason: str,
        ticket_ref: str | None = None,
        origin: str | None = None,
        user_agent: str | None = None,
    ) -> ImpersonationSession:
        if not reason or not reason.strip():
            raise ValidationError("reason for impersonation is required", field="reason")
        self._ensure_operator(actor)

        identity = await self._directory.get_identity(target_identity_id)
        membership = await self._directory.get_membership(target_identity_id, target_tenant_id)
        if (
            identity is None
            or not identity.active
            or membership is None
            or not membership.active
            or not membership.tenant.active
        ):
            log.info(
                "impersonation.start target_not_found actor=%s target=%s tenant=%s",
                actor.identity_id,
                target_identity_id,
                target_tenant_id,
            )
            raise NotFoundError("user not found or inactive in this firm")

        target_role, _ = expand_membership(membership, self._catalog)
        if target_role is None or target_role is self._catalog.platform_role:
            raise NotFoundError("user has no role in this firm")

        reason = reason.strip()
        grant = ImpersonationGrant(
            original_actor_id=actor.identity_id,
            target_identity_id=target_identity_id,
            target_tenant_id=target_tenant_id,
            reason=reason,
            ticket_ref=ticket_ref,
            issued_at=utc_now(),
        )

        await self._audit.append(
            AuditRecord(
                actor_id=actor.identity_id,
                acting_tenant_id=target_tenant_id,
                action=IMPERSONATION_START,
                entity_type="User",
                entity_id=target_identity_id,
                after={
                    "targetUserId": target_identity_id,
                    "targetUserEmail": identity.email,
                    "targetUserRole": target_role.value,
                    "lawFirmId": target_tenant_id,
                    "reason": reason,
                    "ticketNumber": ticket_ref,
                },
                origin=origin,
                user_agent=user_agent,
            )
        )

        credential, claims = issue_token(
            target_identity_id,
            self._settings,
            tenant_id=target_tenant_id,
            ttl_seconds=self._settings.impersonation_ttl_seconds,
            extra_claims={
                CLAIM_IMPERSONATION: {"act": actor.identity_id, "reason": reason, "ticket": ticket_ref},
                CLAIM_ROLE_HINT: target_role.value,
            },
        )
        security_log.warning(
            "security.impersonation_start actor=%s target=%s tenant=%s role=%s jti=%s ticket=%s",
            actor.identity_id,
            target_identity_id,
            target_tenant_id,
            target_role.value,
            claims["jti"],
            ticket_ref,
        )
        return ImpersonationSession(
            grant=grant,
            credential=credential,
            credential_id=claims["jti"],
            expires_at=from_epoch(claims["exp"]),
            target_role=target_role,
        )

    async def end_impersonation(
        self,
        actor: Principal,
        target_identity_id: str,
        target_tenant_id: str,
        duration_ms: int,
        credential_id: str | None = None,
        origin: str | None = None,
        user_agent: str | None = None,
    ) -> AuditRecord:
        self._ensure_operator(actor)
        if duration_ms < 0:
            raise ValidationError("session duration must not be negative", field="sessionDuration")

        record = await self._audit.append(
            AuditRecord(
                actor_id=actor.identity_id,
                acting_tenant_id=target_tenant_id,
                action=IMPERSONATION_END,
                entity_type="User",
                entity_id=target_identity_id,
                after={
                    "targetUserId": target_identity_id,
                    "lawFirmId": target_tenant_id,
                    "sessionDuration": duration_ms,
                    "credentialId": credential_id,
                },
                origin=origin,
                user_agent=user_agent,
            )
        )

        if credential_id and self._revocations is not None:
            await self._revocations.revoke(credential_id, self._settings.impersonation_ttl_seconds)

        security_log.warning(
            "security.impersonation_end actor=%s target=%s tenant=%s duration_ms=%s revoked=%s",
            actor.identity_id,
            target_identity_id,
            target_tenant_id,
            duration_ms,
            bool(credential_id and self._revocations is not None),
        )
        return record
