"""
email_alert: send a formatted alert to the configured recipients.
"""

import logging

from securewatch.actions.base import ActionContext, ActionHandler, alert_body, alert_subject
from securewatch.exceptions import ActionError, CollaboratorError

logger = logging.getLogger(__name__)


class EmailAlertHandler(ActionHandler):
    action_type = "email_alert"

    async def execute(self, ctx: ActionContext) -> dict:
        config = self.parse_config(ctx)
        subject = alert_subject(ctx, config.subject)
        body = alert_body(ctx, config.include_details)

        try:
            sent = await ctx.collaborators.notification.send(config.recipients, subject, body)
        except CollaboratorError as exc:
            raise ActionError(self.action_type, str(exc)) from exc

        logger.info("Email alert for violation %d sent to %s", ctx.violation.id, ", ".join(config.recipients))
        return {"message_id": sent["message_id"], "recipients": config.recipients}
