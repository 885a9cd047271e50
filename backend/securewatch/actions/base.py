"""
Base class for policy action handlers.

Every handler implements `execute()` which receives an ActionContext and
returns a JSON-serialisable result dict, or raises ActionError.
"""

import importlib
import pkgutil
from abc import ABC, abstractmethod
from dataclasses import dataclass

from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from securewatch.exceptions import ActionError
from securewatch.models import Employee, Policy, PolicyAction, Violation
from securewatch.schemas.schemas import ACTION_CONFIG_MODELS
from securewatch.services.collaborators import Collaborators

ACTIONS_PACKAGE = "securewatch.actions"


@dataclass
class ActionContext:
    session: AsyncSession
    policy: Policy
    action: PolicyAction
    violation: Violation
    employee: Employee | None
    collaborators: Collaborators
    execution_id: int | None = None
    actor: str = "executor"

    @property
    def risk_score(self) -> int:
        return self.violation.risk_score


class ActionHandler(ABC):
    """Abstract base class for all action handlers."""

    action_type: str

    def parse_config(self, ctx: ActionContext) -> BaseModel:
        """Validate the stored action_config; rows written before validation existed may be malformed."""
        model = ACTION_CONFIG_MODELS[self.action_type]
        try:
            return model.model_validate(ctx.action.action_config or {})
        except ValidationError as exc:
            raise ActionError(self.action_type, "invalid action_config", {"errors": exc.errors()}) from exc

    @abstractmethod
    async def execute(self, ctx: ActionContext) -> dict:
        """
        Perform the action.

        Returns:
            Result details stored in the execution's execution_result

        Raises:
            ActionError when the action could not be completed
        """
        pass


def alert_subject(ctx: ActionContext, subject: str | None = None) -> str:
    if subject:
        return subject
    v = ctx.violation
    return f"[SecureWatch] {v.severity} {v.type} violation (risk {v.risk_score})"


def alert_body(ctx: ActionContext, include_details: bool = True) -> str:
    v = ctx.violation
    who = f"{ctx.employee.name} <{ctx.employee.email}>" if ctx.employee else f"employee #{v.employee_id}"
    lines = [
        f"Policy '{ctx.policy.name}' was triggered.",
        "",
        f"Employee:  {who}",
        f"Violation: #{v.id} {v.type} ({v.severity})",
        f"Risk:      {v.risk_score}/100",
        f"Detected:  {v.created_at:%Y-%m-%d %H:%M} UTC" if v.created_at else "Detected:  unknown",
    ]
    if include_details:
        details = v.details or {}
        factors = details.get("risk_factors") or []
        if factors:
            lines += ["", "Risk factors:"] + [f"  - {f}" for f in factors[:10]]
        regulations = details.get("regulations") or []
        if regulations:
            lines += ["", f"Regulations: {', '.join(regulations)}"]
        lines += ["", v.description]
    return "\n".join(lines)


def discover_handlers() -> dict[str, ActionHandler]:
    """Find every ActionHandler implementation in the actions package."""
    handlers: dict[str, ActionHandler] = {}
    package = importlib.import_module(ACTIONS_PACKAGE)
    for _importer, modname, _ispkg in pkgutil.iter_modules(package.__path__):
        if modname == "base":
            continue
        module = importlib.import_module(f"{ACTIONS_PACKAGE}.{modname}")
        for attr_name in dir(module):
            attr = getattr(module, attr_name)
            if (
                isinstance(attr, type)
                and issubclass(attr, ActionHandler)
                and attr is not ActionHandler
                and hasattr(attr, "action_type")
            ):
                handlers[attr.action_type] = attr()
    return handlers
