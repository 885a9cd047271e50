"""
Policy Evaluation Engine

Matches a newly recorded Violation against active policies and creates one
pending PolicyExecution per matching (policy, violation) pair. Re-evaluating
the same violation never creates a second execution for a policy.
"""

import logging
from datetime import timedelta

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from securewatch.config import settings
from securewatch.middleware.metrics import policy_executions_created_total
from securewatch.models import Employee, Policy, PolicyAction, PolicyCondition, PolicyExecution, Violation
from securewatch.schemas.schemas import PolicyCreate
from securewatch.services.condition_evaluator import evaluate_conditions

logger = logging.getLogger(__name__)


def policy_applies_to(policy: Policy, employee: Employee | None) -> bool:
    """Global policies apply to everyone; group and user policies to their target only."""
    level = (policy.policy_level or "global").lower()
    if level == "global":
        return True
    if employee is None or not policy.target_id:
        return False

    target = policy.target_id.strip().lower()
    if policy.target_type == "department":
        return (employee.department or "").strip().lower() == target
    if policy.target_type == "role":
        return (employee.role or "").strip().lower() == target
    if policy.target_type == "user":
        return target in (str(employee.id), (employee.email or "").lower())
    return False


def build_policy(body: PolicyCreate, created_by: str = "operator") -> Policy:
    """Turn a validated PolicyCreate into Policy rows. Orders default to list position."""
    conditions = [
        PolicyCondition(
            condition_type=c.condition_type.value,
            operator=c.operator.value,
            value=c.value,
            logical_operator=c.logical_operator.value,
            order=c.order if c.order is not None else i,
        )
        for i, c in enumerate(body.conditions)
    ]
    actions = [
        PolicyAction(
            action_type=a.action_type,
            action_config=a.action_config.model_dump(),
            execution_order=a.execution_order if a.execution_order is not None else i + 1,
            delay_minutes=a.delay_minutes,
            is_enabled=a.is_enabled,
        )
        for i, a in enumerate(body.actions)
    ]
    return Policy(
        name=body.name,
        description=body.description,
        priority=body.priority,
        is_active=body.is_active,
        policy_level=body.policy_level,
        target_type=body.target_type,
        target_id=body.target_id,
        created_by=created_by,
        conditions=conditions,
        actions=actions,
    )


class PolicyEvaluationEngine:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.window = timedelta(hours=settings.detection_window_hours)

    async def load_active_policies(self) -> list[Policy]:
        result = await self.session.execute(
            select(Policy)
            .where(Policy.is_active.is_(True))
            .options(selectinload(Policy.conditions))
            .order_by(Policy.priority.desc(), Policy.created_at.asc(), Policy.id.asc())
        )
        return list(result.scalars())

    async def build_context(self, violation: Violation, employee: Employee | None) -> dict:
        """Flatten a violation, its employee and recent history into the evaluator context."""
        details = violation.details or {}
        since = violation.created_at - self.window

        frequency = await self.session.scalar(
            select(func.count(Violation.id))
            .where(Violation.employee_id == violation.employee_id)
            .where(Violation.created_at >= since)
            .where(Violation.created_at <= violation.created_at)
        )
        same_type = await self.session.scalar(
            select(func.count(Violation.id))
            .where(Violation.employee_id == violation.employee_id)
            .where(Violation.type == violation.type)
            .where(Violation.created_at >= since)
            .where(Violation.created_at <= violation.created_at)
        )

        return {
            "risk_score": details.get("risk_score", 0),
            "security_risk_score": details.get("security_risk_score", 0),
            "compliance_risk_score": details.get("compliance_risk_score", 0),
            "type": violation.type,
            "severity": violation.severity,
            "category_detection_count": same_type or 0,
            "frequency": frequency or 0,
            "regulations": details.get("regulations") or sorted(details.get("compliance_findings") or {}),
            "department": employee.department if employee else None,
            "role": employee.role if employee else None,
            "external_recipients": bool(details.get("external_recipients")),
            "created_at": violation.created_at,
        }

    async def execution_exists(self, policy_id: int, violation_id: int) -> bool:
        result = await self.session.execute(
            select(PolicyExecution.id)
            .where(PolicyExecution.policy_id == policy_id)
            .where(PolicyExecution.violation_id == violation_id)
        )
        return result.scalar_one_or_none() is not None

    async def evaluate_violation(self, violation_id: int, employee_id: int) -> int:
        """Create pending executions for every matching policy. Returns how many were created."""
        violation = await self.session.get(Violation, violation_id)
        if violation is None:
            logger.warning("Violation %d not found; nothing to evaluate", violation_id)
            return 0
        employee = await self.session.get(Employee, employee_id)

        policies = await self.load_active_policies()
        if not policies:
            logger.debug("No active policies for violation %d", violation_id)
            return 0

        context = await self.build_context(violation, employee)
        created = 0

        for policy in policies:
            try:
                if not policy_applies_to(policy, employee):
                    continue
                if not evaluate_conditions(policy.conditions, context):
                    continue
                if await self.execution_exists(policy.id, violation_id):
                    logger.debug("Policy %d already has an execution for violation %d", policy.id, violation_id)
                    continue

                try:
                    async with self.session.begin_nested():
                        self.session.add(PolicyExecution(
                            policy_id=policy.id,
                            violation_id=violation_id,
                            employee_id=employee_id,
                            execution_status="pending",
                        ))
                except IntegrityError:
                    logger.info("Policy %d execution for violation %d created concurrently", policy.id, violation_id)
                    continue

                created += 1
                policy_executions_created_total.inc()
                logger.info("Policy '%s' (%d) triggered for violation %d", policy.name, policy.id, violation_id)
            except Exception:
                logger.exception("Error evaluating policy %d for violation %d", policy.id, violation_id)

        logger.info("Policy evaluation for violation %d: %d execution(s) created", violation_id, created)
        return created
