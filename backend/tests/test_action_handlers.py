"""Tests for the individual action handlers, called with a hand-built context."""

import pytest
from sqlalchemy import select

from securewatch.actions.base import ActionContext, discover_handlers
from securewatch.actions.disable_access import DisableAccessHandler
from securewatch.actions.email_alert import EmailAlertHandler
from securewatch.actions.escalate_incident import EscalateIncidentHandler
from securewatch.actions.immediate_alert import ImmediateAlertHandler
from securewatch.actions.increase_monitoring import IncreaseMonitoringHandler
from securewatch.actions.log_detailed_activity import LogDetailedActivityHandler
from securewatch.exceptions import ActionError
from securewatch.models import AccessRestriction, AuditLog, Incident, MonitoringFlag, SystemNotification
from securewatch.services.capabilities import INCIDENT_STORE, capabilities
from securewatch.services.collaborators import Collaborators
from tests.conftest import FakeIdentity, FakeNotification, FakeSMS, make_employee, make_policy, make_violation


async def context_for(session, action_type, config, collaborators=None, **violation_details) -> ActionContext:
    employee = await make_employee(session)
    policy = await make_policy(session, "Handler test", [], [{"action_type": action_type, "action_config": config}])
    violation = await make_violation(
        session, employee, risk_score=92, severity="Critical",
        risk_factors=["External recipients detected", "Credit card number detected"],
        **violation_details,
    )
    return ActionContext(
        session=session,
        policy=policy,
        action=policy.actions[0],
        violation=violation,
        employee=employee,
        collaborators=collaborators or Collaborators(
            notification=FakeNotification(), sms=FakeSMS(), identity=FakeIdentity(),
        ),
        execution_id=17,
        actor="executor:test",
    )


def test_discovery_finds_all_six_handlers():
    assert sorted(discover_handlers()) == [
        "disable_access", "email_alert", "escalate_incident",
        "immediate_alert", "increase_monitoring", "log_detailed_activity",
    ]


@pytest.mark.asyncio
class TestEmailAlert:
    async def test_sends_to_recipients(self, db_session):
        ctx = await context_for(db_session, "email_alert", {"recipients": ["security@company.com"]})
        result = await EmailAlertHandler().execute(ctx)

        assert result == {"message_id": "msg-1", "recipients": ["security@company.com"]}
        [sent] = ctx.collaborators.notification.sent
        assert sent["subject"] == "[SecureWatch] Critical pci_dss violation (risk 92)"
        assert "Policy 'Handler test' was triggered." in sent["body"]
        assert "Dana Whitfield <dana.whitfield@company.com>" in sent["body"]
        assert "  - Credit card number detected" in sent["body"]

    async def test_custom_subject_without_details(self, db_session):
        ctx = await context_for(db_session, "email_alert", {
            "recipients": ["security@company.com"], "subject": "PCI exposure", "include_details": False,
        })
        await EmailAlertHandler().execute(ctx)
        [sent] = ctx.collaborators.notification.sent
        assert sent["subject"] == "PCI exposure"
        assert "Risk factors" not in sent["body"]

    async def test_delivery_failure_raises(self, db_session):
        ctx = await context_for(
            db_session, "email_alert", {"recipients": ["security@company.com"]},
            Collaborators(notification=FakeNotification(fail=True), sms=FakeSMS(), identity=FakeIdentity()),
        )
        with pytest.raises(ActionError, match="connection refused"):
            await EmailAlertHandler().execute(ctx)

    async def test_invalid_stored_config_raises(self, db_session):
        ctx = await context_for(db_session, "email_alert", {"recipients": []})
        with pytest.raises(ActionError, match="invalid action_config"):
            await EmailAlertHandler().execute(ctx)


@pytest.mark.asyncio
class TestEscalateIncident:
    async def test_creates_incident(self, db_session):
        ctx = await context_for(db_session, "escalate_incident", {"escalation_level": "security_team",
                                                                   "priority": "critical"})
        result = await EscalateIncidentHandler().execute(ctx)

        assert result["status"] == "created"
        assert result["incident_id"].startswith("INC-")
        incident = (await db_session.execute(select(Incident))).scalar_one()
        assert incident.violation_id == ctx.violation.id
        assert incident.policy_id == ctx.policy.id
        assert incident.escalation_level == "security_team"
        assert incident.details == {"risk_score": 92, "execution_id": 17}

    async def test_logged_only_without_incident_store(self, db_session):
        capabilities.set(INCIDENT_STORE, False)
        ctx = await context_for(db_session, "escalate_incident", {})
        result = await EscalateIncidentHandler().execute(ctx)

        assert result["status"] == "logged_only"
        assert (await db_session.execute(select(Incident))).scalar_one_or_none() is None

    async def test_notifies_manager_by_default(self, db_session):
        ctx = await context_for(db_session, "escalate_incident", {"notify_management": True})
        result = await EscalateIncidentHandler().execute(ctx)

        assert result["management_notified"] is True
        [sent] = ctx.collaborators.notification.sent
        assert sent["recipients"] == ["cfo@company.com"]
        assert sent["subject"].startswith("[Escalation] ")

    async def test_management_notification_failure_is_not_fatal(self, db_session):
        ctx = await context_for(
            db_session, "escalate_incident", {"notify_management": True},
            Collaborators(notification=FakeNotification(fail=True), sms=FakeSMS(), identity=FakeIdentity()),
        )
        result = await EscalateIncidentHandler().execute(ctx)
        assert result["status"] == "created"
        assert result["management_notified"] is False


@pytest.mark.asyncio
class TestIncreaseMonitoring:
    async def test_creates_flag(self, db_session):
        ctx = await context_for(db_session, "increase_monitoring", {"monitoring_level": "strict",
                                                                     "duration_hours": 48, "weight": 2.0})
        result = await IncreaseMonitoringHandler().execute(ctx)

        flag = (await db_session.execute(select(MonitoringFlag))).scalar_one()
        assert flag.employee_id == ctx.violation.employee_id
        assert flag.monitoring_level == "strict"
        assert flag.weight == 2.0
        assert result["weight"] == 2.0

    async def test_repeat_extends_and_never_lowers_weight(self, db_session):
        ctx = await context_for(db_session, "increase_monitoring", {"duration_hours": 72, "weight": 2.5})
        handler = IncreaseMonitoringHandler()
        await handler.execute(ctx)
        first_expiry = (await db_session.execute(select(MonitoringFlag))).scalar_one().expires_at

        ctx.action.action_config = {"duration_hours": 1, "weight": 1.1}
        await handler.execute(ctx)

        flag = (await db_session.execute(select(MonitoringFlag))).scalar_one()
        assert flag.weight == 2.5
        assert flag.expires_at == first_expiry


@pytest.mark.asyncio
class TestDisableAccess:
    async def test_revokes_and_records_restriction(self, db_session):
        ctx = await context_for(db_session, "disable_access", {"access_type": "vpn", "duration_hours": 8,
                                                                "notify_employee": True})
        result = await DisableAccessHandler().execute(ctx)

        assert result == {"access_type": "vpn", "reference": "REV-1", "employee_notified": True}
        [revoked] = ctx.collaborators.identity.revoked
        assert revoked["employee_id"] == ctx.violation.employee_id
        restriction = (await db_session.execute(select(AccessRestriction))).scalar_one()
        assert restriction.external_reference == "REV-1"
        assert restriction.expires_at is not None
        assert ctx.collaborators.notification.sent[0]["recipients"] == ["dana.whitfield@company.com"]

    async def test_identity_failure_raises(self, db_session):
        ctx = await context_for(
            db_session, "disable_access", {},
            Collaborators(notification=FakeNotification(), sms=FakeSMS(), identity=FakeIdentity(fail=True)),
        )
        with pytest.raises(ActionError, match="identity"):
            await DisableAccessHandler().execute(ctx)
        assert (await db_session.execute(select(AccessRestriction))).scalar_one_or_none() is None


@pytest.mark.asyncio
class TestLogDetailedActivity:
    async def test_forensic_entry(self, db_session):
        ctx = await context_for(db_session, "log_detailed_activity", {"log_level": "forensic",
                                                                       "include_content": True})
        result = await LogDetailedActivityHandler().execute(ctx)

        entry = (await db_session.execute(
            select(AuditLog).where(AuditLog.event_type == "detailed_activity")
        )).scalar_one()
        assert result == {"audit_event_id": entry.event_id, "hash": entry.current_hash}
        assert entry.actor == "executor:test"
        assert entry.details["execution_id"] == 17
        assert entry.details["risk_factors"] == ["External recipients detected", "Credit card number detected"]
        assert entry.details["description"] == ctx.violation.description

    async def test_basic_level_omits_factors(self, db_session):
        ctx = await context_for(db_session, "log_detailed_activity", {"log_level": "basic"})
        await LogDetailedActivityHandler().execute(ctx)
        entry = (await db_session.execute(
            select(AuditLog).where(AuditLog.event_type == "detailed_activity")
        )).scalar_one()
        assert "risk_factors" not in entry.details
        assert "description" not in entry.details


@pytest.mark.asyncio
class TestImmediateAlert:
    async def test_all_channels(self, db_session):
        ctx = await context_for(db_session, "immediate_alert", {
            "alert_channels": ["email", "sms", "system"],
            "recipients": ["security@company.com"],
            "phone_numbers": ["+15550100"],
        })
        result = await ImmediateAlertHandler().execute(ctx)

        assert result["succeeded"] == ["email", "sms", "system"]
        assert result["failed"] == []
        assert ctx.collaborators.notification.sent[0]["subject"].startswith("[URGENT] ")
        assert ctx.collaborators.sms.sent[0]["numbers"] == ["+15550100"]
        notification = (await db_session.execute(select(SystemNotification))).scalar_one()
        assert notification.violation_id == ctx.violation.id
        assert result["channels"]["system"]["notification_id"] == notification.id

    async def test_partial_failure_still_succeeds(self, db_session):
        ctx = await context_for(
            db_session, "immediate_alert",
            {"alert_channels": ["email", "system"], "recipients": ["security@company.com"]},
            Collaborators(notification=FakeNotification(fail=True), sms=FakeSMS(), identity=FakeIdentity()),
        )
        result = await ImmediateAlertHandler().execute(ctx)
        assert result["succeeded"] == ["system"]
        assert result["failed"] == ["email"]
        assert "connection refused" in result["channels"]["email"]["error"]

    async def test_all_channels_failing_raises(self, db_session):
        ctx = await context_for(
            db_session, "immediate_alert",
            {"alert_channels": ["email", "sms"], "recipients": ["security@company.com"],
             "phone_numbers": ["+15550100"]},
            Collaborators(notification=FakeNotification(fail=True), sms=FakeSMS(fail=True), identity=FakeIdentity()),
        )
        with pytest.raises(ActionError, match="all alert channels failed"):
            await ImmediateAlertHandler().execute(ctx)

    async def test_duplicate_channels_sent_once(self, db_session):
        ctx = await context_for(db_session, "immediate_alert", {
            "alert_channels": ["email", "email"], "recipients": ["security@company.com"],
        })
        await ImmediateAlertHandler().execute(ctx)
        assert len(ctx.collaborators.notification.sent) == 1
