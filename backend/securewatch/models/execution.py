"""
PolicyExecution: one pending unit of enforcement work per (policy, violation).

The persisted status is limited to exactly four values. There is no
"processing" status: a worker holding an execution is recorded in the lease
columns (claimed_by / claimed_at) while the status stays pending.
"""

import enum
import logging
from datetime import datetime

from sqlalchemy import String, DateTime, ForeignKey, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, validates

from securewatch.database import Base, JSONType, utcnow
from securewatch.exceptions import InvalidExecutionStatus, InvalidTransition
from securewatch.middleware.metrics import execution_status_invariant_violations_total

logger = logging.getLogger(__name__)


class ExecutionStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


STATUS_VALUES = tuple(s.value for s in ExecutionStatus)
TERMINAL_STATUSES = frozenset({ExecutionStatus.SUCCESS.value, ExecutionStatus.FAILED.value, ExecutionStatus.SKIPPED.value})


def _reject(exc: InvalidExecutionStatus) -> InvalidExecutionStatus:
    logger.critical("Execution status invariant violated: %s", exc)
    execution_status_invariant_violations_total.inc()
    return exc


class PolicyExecution(Base):
    __tablename__ = "policy_executions"
    __table_args__ = (
        UniqueConstraint("policy_id", "violation_id", name="uq_policy_executions_policy_violation"),
        CheckConstraint(
            "execution_status IN ('pending', 'success', 'failed', 'skipped')",
            name="ck_policy_executions_status",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    policy_id: Mapped[int] = mapped_column(ForeignKey("policies.id"), index=True)
    violation_id: Mapped[int] = mapped_column(ForeignKey("violations.id"), index=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id"), index=True)
    execution_status: Mapped[str] = mapped_column(String(10), default=ExecutionStatus.PENDING.value, index=True)
    execution_result: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    error_message: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    claimed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    # Set while parked on a delayed action; the queue ignores the row until then
    not_before: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    @validates("execution_status")
    def _validate_status(self, key, value):
        if isinstance(value, ExecutionStatus):
            value = value.value
        if value not in STATUS_VALUES:
            raise _reject(InvalidExecutionStatus(value, self.id))
        current = self.__dict__.get("execution_status")
        if current in TERMINAL_STATUSES:
            raise _reject(InvalidTransition(current, value, self.id))
        return value

    @property
    def is_terminal(self) -> bool:
        return self.execution_status in TERMINAL_STATUSES

    def mark_terminal(
        self,
        status: ExecutionStatus | str,
        *,
        result: dict | None = None,
        error: str | None = None,
    ) -> None:
        """Move a pending execution to success, failed or skipped.

        Anything else (a non-terminal target, or a row that already finished)
        raises InvalidExecutionStatus / InvalidTransition.
        """
        value = status.value if isinstance(status, ExecutionStatus) else status
        if value not in TERMINAL_STATUSES:
            current = self.__dict__.get("execution_status")
            if value in STATUS_VALUES:
                raise _reject(InvalidTransition(current, value, self.id))
            raise _reject(InvalidExecutionStatus(value, self.id))

        self.execution_status = value
        self.completed_at = utcnow()
        if result is not None:
            self.execution_result = result
        if error is not None:
            self.error_message = error[:2000]
        self.claimed_by = None
        self.claimed_at = None
