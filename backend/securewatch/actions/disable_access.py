"""
disable_access: revoke the employee's access in the identity system.
"""

import logging
from datetime import timedelta

from securewatch.actions.base import ActionContext, ActionHandler
from securewatch.database import utcnow
from securewatch.exceptions import ActionError, CollaboratorError
from securewatch.models import AccessRestriction

logger = logging.getLogger(__name__)


class DisableAccessHandler(ActionHandler):
    action_type = "disable_access"

    async def execute(self, ctx: ActionContext) -> dict:
        config = self.parse_config(ctx)
        v = ctx.violation
        reason = f"Policy '{ctx.policy.name}': {v.severity} {v.type} violation #{v.id}"

        try:
            revoked = await ctx.collaborators.identity.revoke_access(
                v.employee_id, config.access_type, reason, config.duration_hours,
            )
        except CollaboratorError as exc:
            raise ActionError(self.action_type, str(exc)) from exc

        restriction = AccessRestriction(
            employee_id=v.employee_id,
            violation_id=v.id,
            access_type=config.access_type,
            reason=reason,
            external_reference=revoked.get("reference"),
            expires_at=utcnow() + timedelta(hours=config.duration_hours) if config.duration_hours else None,
        )
        ctx.session.add(restriction)
        await ctx.session.flush()
        logger.warning("Access (%s) revoked for employee %d", config.access_type, v.employee_id)

        result = {"access_type": config.access_type, "reference": revoked.get("reference")}
        if config.notify_employee and ctx.employee is not None:
            try:
                await ctx.collaborators.notification.send(
                    [ctx.employee.email],
                    "Your access has been temporarily restricted",
                    "Access to some systems has been restricted pending a security review. "
                    "Please contact the security team.",
                )
                result["employee_notified"] = True
            except CollaboratorError as exc:
                logger.warning("Employee notification failed: %s", exc)
                result["employee_notified"] = False
        return result
