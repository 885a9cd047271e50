"""
increase_monitoring: flag the employee for elevated risk weighting.

The risk classifier multiplies the security score of flagged employees by the
flag's weight until it expires. Repeated triggers extend, never shorten, an
existing flag.
"""

import logging
from datetime import timedelta

from sqlalchemy import select

from securewatch.actions.base import ActionContext, ActionHandler
from securewatch.config import settings
from securewatch.database import utcnow
from securewatch.models import MonitoringFlag

logger = logging.getLogger(__name__)


class IncreaseMonitoringHandler(ActionHandler):
    action_type = "increase_monitoring"

    async def execute(self, ctx: ActionContext) -> dict:
        config = self.parse_config(ctx)
        employee_id = ctx.violation.employee_id
        weight = config.weight or settings.monitoring_weight
        expires_at = utcnow() + timedelta(hours=config.duration_hours)

        flag = (await ctx.session.execute(
            select(MonitoringFlag).where(MonitoringFlag.employee_id == employee_id)
        )).scalar_one_or_none()

        if flag is None:
            flag = MonitoringFlag(
                employee_id=employee_id,
                monitoring_level=config.monitoring_level,
                weight=weight,
                reason=f"Policy '{ctx.policy.name}'",
                source_violation_id=ctx.violation.id,
                expires_at=expires_at,
            )
            ctx.session.add(flag)
        else:
            flag.monitoring_level = config.monitoring_level
            flag.weight = max(flag.weight or 1.0, weight)
            flag.expires_at = max(flag.expires_at, expires_at)
            flag.source_violation_id = ctx.violation.id
        await ctx.session.flush()

        logger.info(
            "Monitoring for employee %d set to %s (x%g) until %s",
            employee_id, flag.monitoring_level, flag.weight, flag.expires_at,
        )
        return {
            "monitoring_level": flag.monitoring_level,
            "weight": flag.weight,
            "expires_at": flag.expires_at.isoformat(),
        }
