"""The execution status is restricted to pending, success, failed and skipped."""

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from securewatch.exceptions import InvalidExecutionStatus, InvalidTransition
from securewatch.models import ExecutionStatus, PolicyExecution
from securewatch.models.execution import STATUS_VALUES, TERMINAL_STATUSES
from tests.conftest import make_employee, make_execution, make_policy, make_violation

INVARIANT_METRIC = "execution_status_invariant_violations_total"


def invariant_count() -> float:
    return REGISTRY.get_sample_value(INVARIANT_METRIC) or 0.0


class TestStatusValues:
    def test_exactly_four_statuses(self):
        assert set(STATUS_VALUES) == {"pending", "success", "failed", "skipped"}
        assert TERMINAL_STATUSES == {"success", "failed", "skipped"}

    def test_no_processing_status(self):
        assert "processing" not in [s.value for s in ExecutionStatus]


class TestValidator:
    def test_rejects_processing(self):
        execution = PolicyExecution(policy_id=1, violation_id=1, employee_id=1, execution_status="pending")
        before = invariant_count()
        with pytest.raises(InvalidExecutionStatus):
            execution.execution_status = "processing"
        assert invariant_count() == before + 1

    def test_rejects_unknown_on_construction(self):
        with pytest.raises(InvalidExecutionStatus):
            PolicyExecution(policy_id=1, violation_id=1, employee_id=1, execution_status="completed")

    def test_accepts_enum_member(self):
        execution = PolicyExecution(policy_id=1, violation_id=1, employee_id=1,
                                    execution_status=ExecutionStatus.PENDING)
        assert execution.execution_status == "pending"

    @pytest.mark.parametrize("status", ["success", "failed", "skipped"])
    def test_mark_terminal(self, status):
        execution = PolicyExecution(policy_id=1, violation_id=1, employee_id=1, execution_status="pending",
                                    claimed_by="w1")
        execution.mark_terminal(status, result={"ok": True}, error="boom" if status == "failed" else None)

        assert execution.execution_status == status
        assert execution.is_terminal
        assert execution.completed_at is not None
        assert execution.claimed_by is None
        assert execution.execution_result == {"ok": True}

    def test_terminal_is_final(self):
        execution = PolicyExecution(policy_id=1, violation_id=1, employee_id=1, execution_status="pending")
        execution.mark_terminal(ExecutionStatus.FAILED, error="smtp down")
        before = invariant_count()

        with pytest.raises(InvalidTransition):
            execution.mark_terminal(ExecutionStatus.SUCCESS)
        with pytest.raises(InvalidTransition):
            execution.execution_status = "pending"
        assert execution.execution_status == "failed"
        assert invariant_count() == before + 2

    def test_mark_terminal_rejects_pending(self):
        execution = PolicyExecution(policy_id=1, violation_id=1, employee_id=1, execution_status="pending")
        with pytest.raises(InvalidTransition):
            execution.mark_terminal("pending")

    def test_mark_terminal_rejects_unknown(self):
        execution = PolicyExecution(policy_id=1, violation_id=1, employee_id=1, execution_status="pending")
        with pytest.raises(InvalidExecutionStatus):
            execution.mark_terminal("processing")
        assert execution.execution_status == "pending"

    def test_error_message_is_truncated(self):
        execution = PolicyExecution(policy_id=1, violation_id=1, employee_id=1, execution_status="pending")
        execution.mark_terminal("failed", error="x" * 5000)
        assert len(execution.error_message) == 2000


@pytest.mark.asyncio
class TestDatabaseConstraint:
    async def test_check_constraint_rejects_raw_write(self, db_session):
        employee = await make_employee(db_session)
        policy = await make_policy(db_session)
        violation = await make_violation(db_session, employee)
        execution = await make_execution(db_session, policy, violation)
        await db_session.commit()

        # Bypass the ORM validator entirely
        with pytest.raises(IntegrityError):
            await db_session.execute(
                text("UPDATE policy_executions SET execution_status = 'processing' WHERE id = :id"),
                {"id": execution.id},
            )
        await db_session.rollback()

    async def test_unique_policy_violation_pair(self, db_session):
        employee = await make_employee(db_session)
        policy = await make_policy(db_session)
        violation = await make_violation(db_session, employee)
        await make_execution(db_session, policy, violation)

        with pytest.raises(IntegrityError):
            await make_execution(db_session, policy, violation)
        await db_session.rollback()
