from __future__ import annotations

import pytest

from conftest import make_principal
from lawfirm_authz.auth.catalog import Role
from lawfirm_authz.auth.jwt import decode_token
from lawfirm_authz.auth.models import Principal
from lawfirm_authz.auth.outcomes import FailureKind
from lawfirm_authz.auth.resolver import PrincipalResolver
from lawfirm_authz.domain.entities.audit import IMPERSONATION_END, IMPERSONATION_START
from lawfirm_authz.errors import ForbiddenError, NotFoundError, ValidationError
from lawfirm_authz.services.impersonation_service import ImpersonationService


@pytest.fixture
def service(directory, audit_sink, settings, revocations) -> ImpersonationService:
    directory.add_identity("target")
    directory.add_membership("target", "firm-a", ["assistant"])
    directory.add_identity("idle")
    directory.add_membership("idle", "firm-a", ["assistant"], active=False)
    return ImpersonationService(directory, audit_sink, settings, revocations=revocations)


@pytest.fixture
def operator() -> Principal:
    return make_principal(Role.PLATFORM_ADMIN, identity_id="admin")


@pytest.mark.asyncio
@pytest.mark.parametrize("reason", ["", "   "])
async def test_blank_reason_is_rejected_before_anything_else(service, audit_sink, reason) -> None:
    # Even a non-operator gets the validation error first.
    with pytest.raises(ValidationError):
        await service.start_impersonation(make_principal(Role.CLIENT), "target", "firm-a", reason)
    assert audit_sink.records == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "actor",
    [
        make_principal(Role.OWNER, identity_id="owner"),
        make_principal(Role.PLATFORM_ADMIN, identity_id="admin", active=False),
        make_principal(Role.PLATFORM_ADMIN, identity_id="admin", impersonator_id="other-admin"),
    ],
)
async def test_only_live_operators_may_impersonate(service, audit_sink, actor) -> None:
    with pytest.raises(ForbiddenError):
        await service.start_impersonation(actor, "target", "firm-a", "support ticket")
    assert audit_sink.records == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "target,tenant",
    [("idle", "firm-a"), ("target", "firm-b"), ("nobody", "firm-a")],
)
async def test_target_must_be_active_member(service, operator, audit_sink, target, tenant) -> None:
    with pytest.raises(NotFoundError):
        await service.start_impersonation(operator, target, tenant, "support ticket")
    assert audit_sink.records == []


@pytest.mark.asyncio
async def test_start_audits_then_issues_credential(service, operator, audit_sink, settings, directory) -> None:
    session = await service.start_impersonation(
        operator, "target", "firm-a", "  customer cannot open case  ", ticket_ref="T-1", origin="10.0.0.1"
    )

    assert audit_sink.actions() == [IMPERSONATION_START]
    record = audit_sink.records[0]
    assert record.actor_id == "admin"
    assert record.acting_tenant_id == "firm-a"
    assert record.entity_id == "target"
    assert record.after["reason"] == "customer cannot open case"
    assert record.after["ticketNumber"] == "T-1"
    assert record.origin == "10.0.0.1"

    assert session.target_role is Role.ASSISTANT
    assert session.grant.original_actor_id == "admin"
    claims = decode_token(session.credential, settings)
    assert claims["sub"] == "target"
    assert claims["tid"] == "firm-a"
    assert claims["imp"]["act"] == "admin"
    assert claims["jti"] == session.credential_id
    assert claims["exp"] - claims["iat"] == settings.impersonation_ttl_seconds

    # The minted credential resolves to the target, tagged with the operator.
    resolved = await PrincipalResolver(directory, settings).resolve(session.credential)
    assert resolved.identity_id == "target"
    assert resolved.impersonator_id == "admin"
    assert resolved.role is Role.ASSISTANT


@pytest.mark.asyncio
async def test_audit_failure_means_no_credential(service, operator, audit_sink) -> None:
    audit_sink.fail = True
    with pytest.raises(ConnectionError):
        await service.start_impersonation(operator, "target", "firm-a", "support ticket")


@pytest.mark.asyncio
async def test_end_records_duration_and_revokes(
    service, operator, audit_sink, revocations, directory, settings
) -> None:
    session = await service.start_impersonation(operator, "target", "firm-a", "support ticket")
    record = await service.end_impersonation(
        operator, "target", "firm-a", 90_000, credential_id=session.credential_id
    )

    assert audit_sink.actions() == [IMPERSONATION_START, IMPERSONATION_END]
    assert record.after["sessionDuration"] == 90_000
    assert session.credential_id in revocations.revoked

    resolver = PrincipalResolver(directory, settings, revocations=revocations)
    result = await resolver.resolve(session.credential)
    assert result.kind is FailureKind.INVALID_CREDENTIAL


@pytest.mark.asyncio
async def test_end_without_credential_id_only_audits(service, operator, audit_sink, revocations) -> None:
    await service.end_impersonation(operator, "target", "firm-a", 1000)
    assert audit_sink.actions() == [IMPERSONATION_END]
    assert revocations.revoked == {}


@pytest.mark.asyncio
async def test_end_requires_operator(service, audit_sink) -> None:
    with pytest.raises(ForbiddenError):
        await service.end_impersonation(make_principal(Role.OWNER), "target", "firm-a", 1000)
    assert audit_sink.records == []
