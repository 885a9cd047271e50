"""API tests over the ASGI app with the in-memory database."""

import pytest
import redis.asyncio as aioredis

from securewatch.models import ExecutionStatus
from tests.conftest import make_employee, make_execution, make_policy, make_violation

CARD_REQUEST = {
    "communication": {
        "message_id": "api-msg-1",
        "sender": "dana.whitfield@company.com",
        "recipients": ["orders@vendor-example.net"],
        "subject": "Renewal",
        "body": "Please charge card number 4111 1111 1111 1111 for the renewal.",
        "sent_at": "2026-10-14T21:30:00",
    },
}

POLICY_BODY = {
    "name": "PCI exposure",
    "priority": 80,
    "conditions": [{"condition_type": "regulation", "operator": "equals", "value": "PCI_DSS"}],
    "actions": [
        {"action_type": "email_alert", "action_config": {"recipients": ["security@company.com"]}},
        {"action_type": "increase_monitoring", "delay_minutes": 10},
    ],
}


async def employee_id(session_factory) -> int:
    async with session_factory() as session:
        employee = await make_employee(session)
        await session.commit()
        return employee.id


@pytest.mark.asyncio
class TestCommunications:
    async def test_analyze_records_violation_and_triggers_policy(self, client, session_factory):
        eid = await employee_id(session_factory)
        created = await client.post("/api/policies", json=POLICY_BODY)
        assert created.status_code == 201

        resp = await client.post("/api/communications/analyze", json={**CARD_REQUEST, "employee_id": eid})

        assert resp.status_code == 200
        data = resp.json()
        assert data["classification"]["risk_score"] == 75
        assert data["classification"]["category"] == "pci_dss"
        assert data["violation_created"] is True
        assert data["executions_created"] == 1

        again = await client.post("/api/communications/analyze", json={**CARD_REQUEST, "employee_id": eid})
        assert again.json()["violation_created"] is False
        assert again.json()["violation_id"] == data["violation_id"]
        assert again.json()["executions_created"] == 0

    async def test_analyze_rejects_bad_channel(self, client):
        body = {"employee_id": 1, "communication": {**CARD_REQUEST["communication"], "channel": "fax"}}
        resp = await client.post("/api/communications/analyze", json=body)
        assert resp.status_code == 422

    async def test_submit_queues_message(self, client, monkeypatch):
        queued = []

        async def fake_enqueue(request, r=None):
            queued.append(request)

        monkeypatch.setattr("securewatch.api.communications.enqueue_communication", fake_enqueue)
        resp = await client.post("/api/communications", json={**CARD_REQUEST, "employee_id": 1})

        assert resp.status_code == 202
        assert resp.json() == {"message_id": "api-msg-1", "queued": True}
        assert queued[0].communication.message_id == "api-msg-1"

    async def test_submit_without_redis(self, client, monkeypatch):
        async def broken_enqueue(request, r=None):
            raise aioredis.ConnectionError("Connection refused")

        monkeypatch.setattr("securewatch.api.communications.enqueue_communication", broken_enqueue)
        resp = await client.post("/api/communications", json={**CARD_REQUEST, "employee_id": 1})
        assert resp.status_code == 503


@pytest.mark.asyncio
class TestViolations:
    async def test_list_serializes_details_as_metadata(self, client, session_factory):
        eid = await employee_id(session_factory)
        await client.post("/api/communications/analyze", json={**CARD_REQUEST, "employee_id": eid})

        resp = await client.get("/api/violations", params={"employee_id": eid})

        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 1
        item = data["items"][0]
        assert item["severity"] == "High"
        assert item["metadata"]["risk_score"] == 75
        assert item["metadata"]["regulations"] == ["PCI_DSS"]
        assert "details" not in item

    async def test_filter_by_severity(self, client, session_factory):
        async with session_factory() as session:
            employee = await make_employee(session)
            await make_violation(session, employee, risk_score=95, severity="Critical", message_id="c")
            await make_violation(session, employee, risk_score=72, severity="High", message_id="h")
            await session.commit()

        resp = await client.get("/api/violations", params={"severity": "Critical"})
        assert resp.json()["total"] == 1
        assert resp.json()["items"][0]["source_message_id"] == "c"

    async def test_detail_and_404(self, client, session_factory):
        async with session_factory() as session:
            employee = await make_employee(session)
            violation = await make_violation(session, employee)
            await session.commit()

        resp = await client.get(f"/api/violations/{violation.id}")
        assert resp.status_code == 200
        assert resp.json()["metadata"]["risk_score"] == 75
        assert (await client.get("/api/violations/9999")).status_code == 404


@pytest.mark.asyncio
class TestPolicies:
    async def test_create_and_read(self, client):
        resp = await client.post("/api/policies", json=POLICY_BODY)

        assert resp.status_code == 201
        policy = resp.json()
        assert policy["is_active"] is True
        assert [a["execution_order"] for a in policy["actions"]] == [1, 2]
        assert policy["actions"][1]["delay_minutes"] == 10
        assert policy["conditions"][0]["condition_type"] == "regulation"

        detail = await client.get(f"/api/policies/{policy['id']}")
        assert detail.json()["name"] == "PCI exposure"
        listed = await client.get("/api/policies")
        assert [p["id"] for p in listed.json()] == [policy["id"]]

    async def test_invalid_policies_rejected(self, client):
        unknown_action = {**POLICY_BODY, "actions": [{"action_type": "shutdown_laptop"}]}
        assert (await client.post("/api/policies", json=unknown_action)).status_code == 422

        unknown_condition = {**POLICY_BODY, "conditions": [
            {"condition_type": "data_access", "operator": "greater_than", "value": "100MB"},
        ]}
        assert (await client.post("/api/policies", json=unknown_condition)).status_code == 422

        no_actions = {**POLICY_BODY, "actions": []}
        assert (await client.post("/api/policies", json=no_actions)).status_code == 422

    async def test_toggle_policy_and_action(self, client):
        policy = (await client.post("/api/policies", json=POLICY_BODY)).json()

        resp = await client.patch(f"/api/policies/{policy['id']}/status", json={"is_active": False})
        assert resp.status_code == 200
        assert resp.json()["is_active"] is False
        active = await client.get("/api/policies", params={"active_only": True})
        assert active.json() == []

        action_id = policy["actions"][0]["id"]
        resp = await client.patch(
            f"/api/policies/{policy['id']}/actions/{action_id}/status", json={"is_enabled": False},
        )
        assert resp.status_code == 200
        assert resp.json()["is_enabled"] is False

        audit = await client.get("/api/audit", params={"event_type": "policy_changed"})
        assert audit.json()["total"] == 3

    async def test_missing_policy_and_action(self, client):
        assert (await client.get("/api/policies/404")).status_code == 404
        assert (await client.patch("/api/policies/404/status", json={"is_active": False})).status_code == 404
        policy = (await client.post("/api/policies", json=POLICY_BODY)).json()
        resp = await client.patch(f"/api/policies/{policy['id']}/actions/9999/status", json={"is_enabled": False})
        assert resp.status_code == 404


@pytest.mark.asyncio
class TestExecutions:
    async def _failed_and_pending(self, session_factory):
        async with session_factory() as session:
            employee = await make_employee(session)
            policy = await make_policy(session, "Logs", [], [{"action_type": "log_detailed_activity"}])
            other = await make_policy(session, "Other", [])
            violation = await make_violation(session, employee)
            failed = await make_execution(session, policy, violation)
            failed.mark_terminal(ExecutionStatus.FAILED, error="notification: HTTP 503")
            pending = await make_execution(session, other, violation)
            await session.commit()
            return failed.id, pending.id

    async def test_list_and_filter(self, client, session_factory):
        failed_id, pending_id = await self._failed_and_pending(session_factory)

        everything = await client.get("/api/executions")
        assert everything.json()["total"] == 2

        failed = await client.get("/api/executions", params={"status": "failed"})
        assert [e["id"] for e in failed.json()["items"]] == [failed_id]
        assert failed.json()["items"][0]["error_message"] == "notification: HTTP 503"

        pending = await client.get(f"/api/executions/{pending_id}")
        assert pending.json()["execution_status"] == "pending"

    async def test_unknown_status_filter_rejected(self, client):
        resp = await client.get("/api/executions", params={"status": "processing"})
        assert resp.status_code == 422

    async def test_replay(self, client, session_factory):
        failed_id, pending_id = await self._failed_and_pending(session_factory)

        resp = await client.post(f"/api/executions/{failed_id}/replay")
        assert resp.status_code == 200
        assert resp.json()["ok"] is True
        assert resp.json()["actions"][0]["action_type"] == "log_detailed_activity"

        # The failed row itself is unchanged
        detail = await client.get(f"/api/executions/{failed_id}")
        assert detail.json()["execution_status"] == "failed"

        assert (await client.post(f"/api/executions/{pending_id}/replay")).status_code == 409
        assert (await client.post("/api/executions/9999/replay")).status_code == 404


@pytest.mark.asyncio
class TestAuditAndMetrics:
    async def test_audit_trail_and_integrity(self, client, session_factory):
        eid = await employee_id(session_factory)
        await client.post("/api/policies", json=POLICY_BODY)
        await client.post("/api/communications/analyze", json={**CARD_REQUEST, "employee_id": eid})

        entries = await client.get("/api/audit")
        assert [e["event_type"] for e in entries.json()["items"]] == ["violation_recorded", "policy_changed"]

        integrity = await client.get("/api/audit/integrity")
        assert integrity.json()["valid"] is True
        assert integrity.json()["entries_checked"] == 2

    async def test_metrics_exposes_backlog(self, client, session_factory):
        await self._pending(session_factory)
        resp = await client.get("/metrics")
        assert resp.status_code == 200
        assert "policy_executions_pending 1.0" in resp.text
        assert "execution_status_invariant_violations_total" in resp.text

    async def _pending(self, session_factory):
        async with session_factory() as session:
            employee = await make_employee(session)
            policy = await make_policy(session)
            violation = await make_violation(session, employee)
            await make_execution(session, policy, violation)
            await session.commit()

    async def test_request_id_header(self, client):
        resp = await client.get("/api/policies", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"

    async def test_health_reports_components(self, client, monkeypatch):
        async def redis_down():
            return {"status": "disconnected", "error": "Connection refused"}

        monkeypatch.setattr("securewatch.api.health._redis_status", redis_down)
        monkeypatch.setattr("securewatch.api.health._cached", None)
        resp = await client.get("/api/health")

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "degraded"
        assert data["components"]["database"] == {"status": "connected"}
        assert "text_classifier" in data["components"]["collaborators"]
