"""
immediate_alert: fan an alert out over several channels.

The action succeeds when at least one channel delivered; it fails only when
every channel failed.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from securewatch.actions.base import ActionContext, ActionHandler, alert_body, alert_subject
from securewatch.exceptions import ActionError, CollaboratorError
from securewatch.models import SystemNotification

logger = logging.getLogger(__name__)


class ImmediateAlertHandler(ActionHandler):
    action_type = "immediate_alert"

    async def execute(self, ctx: ActionContext) -> dict:
        config = self.parse_config(ctx)
        subject = "[URGENT] " + alert_subject(ctx)
        body = alert_body(ctx)
        channels: dict[str, dict] = {}

        for channel in dict.fromkeys(config.alert_channels):
            try:
                if channel == "email":
                    sent = await ctx.collaborators.notification.send(config.recipients, subject, body)
                    channels[channel] = {"ok": True, "message_id": sent["message_id"]}
                elif channel == "sms":
                    sent = await ctx.collaborators.sms.send_sms(config.phone_numbers, f"{subject}\n{ctx.policy.name}")
                    channels[channel] = {"ok": True, "message_id": sent["message_id"]}
                elif channel == "system":
                    notification = SystemNotification(
                        title=subject,
                        message=body,
                        priority=config.priority,
                        category="policy_alert",
                        violation_id=ctx.violation.id,
                    )
                    async with ctx.session.begin_nested():
                        ctx.session.add(notification)
                    channels[channel] = {"ok": True, "notification_id": notification.id}
            except (CollaboratorError, SQLAlchemyError) as exc:
                logger.warning("Immediate alert channel %s failed: %s", channel, exc)
                channels[channel] = {"ok": False, "error": str(exc)}

        succeeded = [c for c, r in channels.items() if r["ok"]]
        if not succeeded:
            raise ActionError(
                self.action_type,
                "all alert channels failed",
                {c: r.get("error") for c, r in channels.items()},
            )
        return {
            "channels": channels,
            "succeeded": succeeded,
            "failed": [c for c, r in channels.items() if not r["ok"]],
        }
