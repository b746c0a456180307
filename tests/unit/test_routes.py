from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from lawfirm_authz.admission.limiter import AdmissionController
from lawfirm_authz.admission.stores import MemoryWindowStore
from lawfirm_authz.auth.resolver import PrincipalResolver
from lawfirm_authz.configs.settings import default_rate_limits
from lawfirm_authz.domain.entities.audit import IMPERSONATED_REQUEST, IMPERSONATION_END, IMPERSONATION_START
from lawfirm_authz.main import create_app
from lawfirm_authz.repositories.tenant_gateway import TenantScopedGateway
from lawfirm_authz.services.impersonation_service import ImpersonationService


@pytest.fixture
def app(directory, settings, audit_sink, revocations, database) -> FastAPI:
    directory.add_identity("admin", platform_operator=True)
    directory.add_identity("owner-a")
    directory.add_membership("owner-a", "firm-a", ["owner"])
    directory.add_identity("junior-a")
    directory.add_membership("junior-a", "firm-a", ["junior_practitioner"])
    directory.add_identity("client-a")
    directory.add_membership("client-a", "firm-a", ["client"])
    directory.add_identity("owner-b")
    directory.add_membership("owner-b", "firm-b", ["owner"])

    database.add_document("a-own", "firm-a", "junior-a")
    database.add_document("a-other", "firm-a", "owner-a")
    database.add_document("b-1", "firm-b", "owner-b")

    app = create_app()
    app.state.settings = settings
    app.state.resolver = PrincipalResolver(directory, settings, revocations=revocations)
    app.state.audit_sink = audit_sink
    app.state.gateway = TenantScopedGateway(database.session_factory)
    app.state.impersonation = ImpersonationService(directory, audit_sink, settings, revocations=revocations)
    return app


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_health(client) -> None:
    body = client.get("/health").json()
    assert body["status"] == "success"
    assert body["data"] == {"ok": True}


def test_me(client, mint) -> None:
    resp = client.get("/auth/me", headers=_auth(mint("junior-a")))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["tenantId"] == "firm-a"
    assert data["role"] == "junior_practitioner"
    assert data["isPlatformUser"] is False
    assert client.get("/auth/me").status_code == 401


def test_me_is_not_throttled_as_a_login(app, mint) -> None:
    app.state.admission = AdmissionController(default_rate_limits(), MemoryWindowStore())
    client = TestClient(app)
    junior = _auth(mint("junior-a"))

    codes = [client.get("/auth/me", headers=junior).status_code for _ in range(10)]
    assert codes == [200] * 10
    assert client.get("/auth/me", headers=junior).headers["x-ratelimit-limit"] == "100"


def test_documents_are_tenant_scoped(client, mint) -> None:
    resp = client.get("/documents", headers=_auth(mint("owner-b")))
    assert resp.status_code == 200
    assert [d["id"] for d in resp.json()["data"]["documents"]] == ["b-1"]

    resp = client.get("/documents", headers=_auth(mint("owner-a")))
    assert {d["id"] for d in resp.json()["data"]["documents"]} == {"a-own", "a-other"}


def test_document_read_checks_ownership(client, mint) -> None:
    junior = _auth(mint("junior-a"))
    assert client.get("/documents/a-own", headers=junior).status_code == 200
    assert client.get("/documents/a-other", headers=junior).json()["code"] == "resource_denied"
    # Another firm's row is invisible through the scoped session.
    assert client.get("/documents/b-1", headers=junior).status_code == 404


def test_platform_operator_reads_any_firm(client, mint) -> None:
    resp = client.get("/documents/b-1", headers=_auth(mint("admin")))
    assert resp.status_code == 200
    assert resp.json()["data"]["law_firm_id"] == "firm-b"


def test_delete_is_permission_guarded_and_audited(client, mint, audit_sink, database) -> None:
    resp = client.delete("/documents/a-own", headers=_auth(mint("junior-a")))
    assert resp.status_code == 403
    assert resp.json()["code"] == "permission_denied"
    assert audit_sink.records == []

    resp = client.delete("/documents/a-own", headers=_auth(mint("owner-a")))
    assert resp.status_code == 200
    assert [d["id"] for d in database.documents] == ["a-other", "b-1"]
    (record,) = audit_sink.records
    assert record.action == "DELETE"
    assert record.entity_id == "a-own"
    assert record.before["uploaded_by"] == "junior-a"


def test_impersonation_round_trip(client, mint, audit_sink) -> None:
    admin = _auth(mint("admin"))
    resp = client.post(
        "/admin/impersonate",
        headers=admin,
        json={"lawFirmId": "firm-a", "userId": "client-a", "reason": "client reports missing files", "ticketNumber": "T-9"},
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["targetUser"]["role"] == "client"
    token = data["impersonationToken"]

    me = client.get("/auth/me", headers=_auth(token)).json()["data"]
    assert me["identityId"] == "client-a"
    assert me["impersonatedBy"] == "admin"

    # Writes under impersonation are attributed to the operator.
    client.delete("/documents/a-own", headers=_auth(token))
    assert IMPERSONATED_REQUEST in audit_sink.actions()

    resp = client.request(
        "DELETE",
        "/admin/impersonate",
        headers=admin,
        json={"lawFirmId": "firm-a", "userId": "client-a", "sessionDuration": 120000, "credentialId": data["credentialId"]},
    )
    assert resp.status_code == 200
    assert audit_sink.actions()[0] == IMPERSONATION_START
    assert audit_sink.actions()[-1] == IMPERSONATION_END

    # The ended session's credential no longer resolves.
    assert client.get("/auth/me", headers=_auth(token)).status_code == 401


def test_impersonation_requires_platform_role(client, mint) -> None:
    resp = client.post(
        "/admin/impersonate",
        headers=_auth(mint("owner-a")),
        json={"lawFirmId": "firm-a", "userId": "client-a", "reason": "x"},
    )
    assert resp.status_code == 403
    assert resp.json()["code"] == "role_denied"


def test_impersonation_validation_errors(client, mint) -> None:
    admin = _auth(mint("admin"))
    blank = client.post("/admin/impersonate", headers=admin, json={"lawFirmId": "firm-a", "userId": "client-a", "reason": " "})
    assert blank.status_code == 400
    assert blank.json()["code"] == "validation_error"

    missing = client.post("/admin/impersonate", headers=admin, json={"reason": "x"})
    assert missing.status_code == 400

    unknown = client.post("/admin/impersonate", headers=admin, json={"lawFirmId": "firm-a", "userId": "nobody", "reason": "x"})
    assert unknown.status_code == 404


def test_audit_listing_is_tenant_limited(client, mint, audit_sink) -> None:
    client.delete("/documents/a-other", headers=_auth(mint("owner-a")))
    client.delete("/documents/b-1", headers=_auth(mint("owner-b")))

    resp = client.get("/admin/audit", headers=_auth(mint("owner-a")), params={"tenant_id": "firm-b"})
    assert resp.status_code == 200
    logs = resp.json()["data"]["logs"]
    assert [entry["acting_tenant_id"] for entry in logs] == ["firm-a"]

    everything = client.get("/admin/audit", headers=_auth(mint("admin"))).json()["data"]
    assert everything["pagination"]["total"] == 2

    assert client.get("/admin/audit", headers=_auth(mint("junior-a"))).status_code == 403
