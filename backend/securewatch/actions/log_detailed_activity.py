"""
log_detailed_activity: append a detailed, hash-chained audit entry.
"""

from securewatch.actions.base import ActionContext, ActionHandler
from securewatch.services.audit_service import AuditService


class LogDetailedActivityHandler(ActionHandler):
    action_type = "log_detailed_activity"

    async def execute(self, ctx: ActionContext) -> dict:
        config = self.parse_config(ctx)
        v = ctx.violation
        details = {
            "log_level": config.log_level,
            "policy": {"id": ctx.policy.id, "name": ctx.policy.name, "priority": ctx.policy.priority},
            "violation": {
                "id": v.id,
                "type": v.type,
                "severity": v.severity,
                "risk_score": v.risk_score,
                "source_message_id": v.source_message_id,
                "created_at": v.created_at,
            },
            "employee": {
                "id": v.employee_id,
                "department": ctx.employee.department if ctx.employee else None,
                "role": ctx.employee.role if ctx.employee else None,
            },
            "execution_id": ctx.execution_id,
        }
        if config.log_level in ("detailed", "forensic"):
            details["risk_factors"] = (v.details or {}).get("risk_factors", [])
            details["compliance_findings"] = (v.details or {}).get("compliance_findings", {})
        if config.include_content:
            details["description"] = v.description

        entry = await AuditService(ctx.session).log_event(
            event_type="detailed_activity",
            actor=ctx.actor,
            action=f"Detailed activity logged for violation #{v.id} by policy '{ctx.policy.name}'",
            resource_type="violation",
            resource_id=str(v.id),
            details=details,
        )
        return {"audit_event_id": entry.event_id, "hash": entry.current_hash}
