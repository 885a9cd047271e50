"""
escalate_incident: open an incident for the violation.

When the incident store is unavailable the escalation is logged instead of
failing the execution.
"""

import logging
from uuid import uuid4

from sqlalchemy.exc import OperationalError, ProgrammingError

from securewatch.actions.base import ActionContext, ActionHandler, alert_body, alert_subject
from securewatch.exceptions import CollaboratorError
from securewatch.models import Incident
from securewatch.services.capabilities import INCIDENT_STORE, capabilities

logger = logging.getLogger(__name__)


class EscalateIncidentHandler(ActionHandler):
    action_type = "escalate_incident"

    async def execute(self, ctx: ActionContext) -> dict:
        config = self.parse_config(ctx)
        v = ctx.violation
        result = {"escalation_level": config.escalation_level, "priority": config.priority}

        if not capabilities.is_available(INCIDENT_STORE):
            logger.warning(
                "Incident store unavailable; escalation of violation %d (%s) logged only",
                v.id, config.escalation_level,
            )
            result["status"] = "logged_only"
        else:
            incident = Incident(
                incident_id=f"INC-{uuid4().hex[:8].upper()}",
                violation_id=v.id,
                employee_id=v.employee_id,
                policy_id=ctx.policy.id,
                escalation_level=config.escalation_level,
                priority=config.priority,
                summary=f"{v.severity} {v.type} violation escalated by policy '{ctx.policy.name}'",
                details={"risk_score": v.risk_score, "execution_id": ctx.execution_id},
            )
            try:
                async with ctx.session.begin_nested():
                    ctx.session.add(incident)
            except (OperationalError, ProgrammingError) as exc:
                logger.warning("Incident insert failed, escalation logged only: %s", exc)
                result["status"] = "logged_only"
            else:
                result["status"] = "created"
                result["incident_id"] = incident.incident_id
                logger.info("Incident %s opened for violation %d", incident.incident_id, v.id)

        if config.notify_management:
            result["management_notified"] = await self._notify_management(ctx, config)
        return result

    async def _notify_management(self, ctx: ActionContext, config) -> bool:
        recipients = list(config.management_recipients)
        if not recipients and ctx.employee is not None and ctx.employee.manager_email:
            recipients = [ctx.employee.manager_email]
        if not recipients:
            logger.info("No management recipients for violation %d", ctx.violation.id)
            return False
        try:
            await ctx.collaborators.notification.send(
                recipients,
                "[Escalation] " + alert_subject(ctx),
                alert_body(ctx),
            )
            return True
        except CollaboratorError as exc:
            # Best-effort: the incident itself is already recorded
            logger.warning("Management notification failed: %s", exc)
            return False
