"""
Policy Action Executor

Background state machine over PolicyExecution rows:

    pending ──► success | failed | skipped

Each poll cycle claims a batch of pending executions (see ExecutionQueue) and
processes every one in its own session and transaction, so one failure never
rolls back or blocks another. Actions run in execution_order and each one can
fail on its own: a failed action is recorded and the rest still run, and the
execution ends failed if any of them failed. An action whose delay has not
elapsed parks the execution: progress so far is saved in
execution_result["completed_actions"], the lease is released with
`not_before` set to the due time, and the row is picked up again once due.
Failed executions are terminal; operators re-run the failed actions with
replay(), which never touches the execution row.
"""

import asyncio
import logging
import os
import socket
import time
from datetime import timedelta
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from securewatch.actions.base import ActionContext, ActionHandler, discover_handlers
from securewatch.config import settings
from securewatch.database import async_session, utcnow
from securewatch.exceptions import ActionError, InvalidExecutionStatus
from securewatch.middleware.metrics import (
    action_dispatch_duration_seconds,
    action_dispatch_total,
    execution_status_invariant_violations_total,
    policy_executions_finished_total,
)
from securewatch.models import Employee, ExecutionStatus, Policy, PolicyAction, PolicyExecution, Violation
from securewatch.models.execution import STATUS_VALUES
from securewatch.services.audit_service import AuditService
from securewatch.services.collaborators import Collaborators
from securewatch.services.execution_queue import ExecutionQueue

logger = logging.getLogger(__name__)

DEFERRED = "deferred"


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:6]}"


def action_succeeded(entry: dict) -> bool:
    # Entries written before per-action status was recorded only ever held successes
    return entry.get("status", "success") == "success"


class PolicyActionExecutor:
    def __init__(
        self,
        session_factory: async_sessionmaker = async_session,
        collaborators: Collaborators | None = None,
        handlers: dict[str, ActionHandler] | None = None,
        worker_id: str | None = None,
        batch_size: int | None = None,
        poll_interval: float | None = None,
        action_timeout: float | None = None,
        lease_seconds: int | None = None,
    ):
        self.session_factory = session_factory
        self.collaborators = collaborators or Collaborators()
        self.handlers = handlers if handlers is not None else discover_handlers()
        self.worker_id = worker_id or default_worker_id()
        self.batch_size = batch_size or settings.executor_batch_size
        self.poll_interval = settings.executor_poll_interval_seconds if poll_interval is None else poll_interval
        self.action_timeout = settings.action_timeout_seconds if action_timeout is None else action_timeout
        self.queue = ExecutionQueue(session_factory, self.worker_id, lease_seconds)
        self._stop = asyncio.Event()

    # ------------------------------------------------------------------
    # Poll loop
    # ------------------------------------------------------------------

    async def run_forever(self) -> None:
        """Poll until stop() is called. Cycle-level errors are logged, never fatal."""
        logger.info(
            "Policy action executor %s started (interval %.1fs, batch %d)",
            self.worker_id, self.poll_interval, self.batch_size,
        )
        while not self._stop.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("Executor cycle failed; retrying in %.1fs", self.poll_interval)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Policy action executor %s stopped", self.worker_id)

    def stop(self) -> None:
        self._stop.set()

    async def run_once(self) -> dict[str, int]:
        """One poll cycle. Returns a count per outcome."""
        claimed = await self.queue.claim_batch(self.batch_size)
        summary = {"claimed": len(claimed), "success": 0, "failed": 0, "skipped": 0, DEFERRED: 0, "errors": 0}
        for execution_id in claimed:
            try:
                outcome = await self.process_execution(execution_id)
            except Exception:
                # Unexpected (store outage, defect). The lease expires and the row is retried.
                logger.exception("Execution %d could not be processed", execution_id)
                summary["errors"] += 1
                continue
            if outcome in summary:
                summary[outcome] += 1
        if claimed:
            logger.info("Executor cycle: %s", summary)
        return summary

    # ------------------------------------------------------------------
    # One execution
    # ------------------------------------------------------------------

    async def process_execution(self, execution_id: int) -> str | None:
        """Process one claimed execution. Returns the outcome, or None if this worker does not hold it."""
        async with self.session_factory() as session:
            execution = await session.get(PolicyExecution, execution_id)
            if execution is None or execution.execution_status != ExecutionStatus.PENDING.value:
                return None
            if execution.claimed_by != self.worker_id:
                logger.debug("Execution %d is claimed by %s, not us", execution_id, execution.claimed_by)
                return None

            policy = await self._load_policy(session, execution.policy_id)
            if policy is None or not policy.is_active:
                reason = "policy deleted" if policy is None else "policy inactive"
                return await self._finish(session, execution, ExecutionStatus.SKIPPED,
                                          result={"reason": reason}, policy=policy)

            actions = sorted(
                (a for a in policy.actions if a.is_enabled),
                key=lambda a: (a.execution_order, a.id),
            )
            if not actions:
                return await self._finish(session, execution, ExecutionStatus.SKIPPED,
                                          result={"reason": "no enabled actions"}, policy=policy)

            violation = await session.get(Violation, execution.violation_id)
            if violation is None:
                return await self._finish(session, execution, ExecutionStatus.FAILED,
                                          error="violation not found", policy=policy)
            employee = await session.get(Employee, execution.employee_id)

            progress = dict(execution.execution_result or {})
            attempted: list[dict] = list(progress.get("completed_actions", []))
            done = {entry["action_id"] for entry in attempted}

            for action in actions:
                if action.id in done:
                    continue

                due_at = execution.created_at + timedelta(minutes=action.delay_minutes or 0)
                if utcnow() < due_at:
                    execution.execution_result = {
                        "completed_actions": list(attempted),
                        "waiting_for_action": action.id,
                        "due_at": due_at.isoformat(),
                    }
                    self.queue.release(execution, not_before=due_at)
                    await session.commit()
                    logger.debug("Execution %d parked until %s for action %d", execution_id, due_at, action.id)
                    return DEFERRED

                ctx = ActionContext(
                    session=session,
                    policy=policy,
                    action=action,
                    violation=violation,
                    employee=employee,
                    collaborators=self.collaborators,
                    execution_id=execution.id,
                    actor=f"executor:{self.worker_id}",
                )
                entry = {"action_id": action.id, "action_type": action.action_type}
                try:
                    # Handler side effects roll back on failure; earlier progress stays committed
                    async with session.begin_nested():
                        entry["result"] = await self.dispatch(ctx)
                    entry["status"] = "success"
                except ActionError as exc:
                    # Remaining actions still run; the execution fails at the end
                    entry.update(status="failed", error=str(exc))
                    logger.warning("Execution %d: %s", execution_id, exc)

                attempted.append(entry)
                # Persist per-action progress so a crash never re-runs attempted actions
                execution.execution_result = {"completed_actions": list(attempted)}
                await session.commit()

            failures = [entry for entry in attempted if not action_succeeded(entry)]
            result = {"completed_actions": list(attempted), "actions_executed": len(attempted)}
            if failures:
                result["failed_actions"] = [entry["action_id"] for entry in failures]
                return await self._finish(
                    session, execution, ExecutionStatus.FAILED,
                    result=result,
                    error="Some actions failed: " + "; ".join(entry["error"] for entry in failures),
                    policy=policy,
                )
            return await self._finish(session, execution, ExecutionStatus.SUCCESS, result=result, policy=policy)

    async def dispatch(self, ctx: ActionContext) -> dict:
        """Run one handler under the action timeout. Every failure surfaces as ActionError."""
        action_type = ctx.action.action_type
        handler = self.handlers.get(action_type)
        if handler is None:
            action_dispatch_total.labels(action_type=action_type, outcome="unknown").inc()
            raise ActionError(action_type, "unknown action type")

        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(handler.execute(ctx), timeout=self.action_timeout)
        except ActionError:
            action_dispatch_total.labels(action_type=action_type, outcome="failed").inc()
            raise
        except asyncio.TimeoutError as exc:
            action_dispatch_total.labels(action_type=action_type, outcome="timeout").inc()
            raise ActionError(action_type, f"timed out after {self.action_timeout}s") from exc
        except Exception as exc:
            action_dispatch_total.labels(action_type=action_type, outcome="error").inc()
            logger.exception("Handler %s raised unexpectedly", action_type)
            raise ActionError(action_type, f"{type(exc).__name__}: {exc}") from exc
        finally:
            action_dispatch_duration_seconds.labels(action_type=action_type).observe(time.perf_counter() - start)

        action_dispatch_total.labels(action_type=action_type, outcome="success").inc()
        return result or {}

    async def _finish(
        self,
        session: AsyncSession,
        execution: PolicyExecution,
        status: ExecutionStatus,
        *,
        result: dict | None = None,
        error: str | None = None,
        policy: Policy | None = None,
    ) -> str:
        execution.mark_terminal(status, result=result, error=error)
        await AuditService(session).log_execution_finished(
            execution.id, execution.policy_id, status.value,
            actor=f"executor:{self.worker_id}",
            details={"violation_id": execution.violation_id, "error": error},
        )
        await session.commit()
        policy_executions_finished_total.labels(status=status.value).inc()

        log = logger.warning if status == ExecutionStatus.FAILED else logger.info
        log(
            "Execution %d (policy %s, violation %d) → %s%s",
            execution.id,
            policy.name if policy else execution.policy_id,
            execution.violation_id,
            status.value,
            f": {error}" if error else "",
        )
        return status.value

    @staticmethod
    async def _load_policy(session: AsyncSession, policy_id: int) -> Policy | None:
        result = await session.execute(
            select(Policy).where(Policy.id == policy_id).options(selectinload(Policy.actions))
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Operator tools
    # ------------------------------------------------------------------

    async def replay(self, execution_id: int, actor: str = "operator") -> dict:
        """Re-dispatch the actions a failed execution did not complete.

        Actions recorded as succeeded are left alone so their side effects
        (incidents, access restrictions, emails) are not duplicated.

        The execution row stays as it is (terminal rows never change); the
        outcome is recorded in the audit log. Raises LookupError if the
        execution does not exist and ValueError if it is not failed.
        """
        async with self.session_factory() as session:
            execution = await session.get(PolicyExecution, execution_id)
            if execution is None:
                raise LookupError(f"execution {execution_id} not found")
            if execution.execution_status != ExecutionStatus.FAILED.value:
                raise ValueError(f"only failed executions can be replayed (status is {execution.execution_status})")

            policy = await self._load_policy(session, execution.policy_id)
            violation = await session.get(Violation, execution.violation_id)
            if policy is None or violation is None:
                raise ValueError("policy or violation no longer exists")
            employee = await session.get(Employee, execution.employee_id)

            succeeded = {
                entry["action_id"]
                for entry in (execution.execution_result or {}).get("completed_actions", [])
                if action_succeeded(entry)
            }
            outcomes = []
            actions: list[PolicyAction] = sorted(
                (a for a in policy.actions if a.is_enabled and a.id not in succeeded),
                key=lambda a: (a.execution_order, a.id),
            )
            for action in actions:
                ctx = ActionContext(
                    session=session, policy=policy, action=action, violation=violation,
                    employee=employee, collaborators=self.collaborators,
                    execution_id=execution.id, actor=actor,
                )
                try:
                    async with session.begin_nested():
                        result = await self.dispatch(ctx)
                    outcomes.append({"action_id": action.id, "action_type": action.action_type,
                                     "ok": True, "result": result})
                except ActionError as exc:
                    outcomes.append({"action_id": action.id, "action_type": action.action_type,
                                     "ok": False, "error": str(exc)})

            ok = bool(outcomes) and all(o["ok"] for o in outcomes)
            await AuditService(session).log_event(
                event_type="execution_replayed",
                actor=actor,
                action=f"Replayed execution {execution_id}: {'ok' if ok else 'failed'}",
                resource_type="execution",
                resource_id=str(execution_id),
                details={"policy_id": execution.policy_id, "actions": outcomes, "already_succeeded": sorted(succeeded)},
            )
            await session.commit()
            logger.info("Execution %d replayed by %s: ok=%s", execution_id, actor, ok)
            return {"execution_id": execution_id, "ok": ok, "actions": outcomes}

    async def repair_invalid_statuses(self) -> int:
        """Fail rows whose status predates the four-value constraint. Run once at startup."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(PolicyExecution).where(PolicyExecution.execution_status.not_in(STATUS_VALUES))
            )
            rows = list(result.scalars())
            for execution in rows:
                legacy = execution.execution_status
                logger.critical(
                    "Execution %d has invalid legacy status %r; marking failed", execution.id, legacy,
                )
                execution_status_invariant_violations_total.inc()
                try:
                    execution.mark_terminal(
                        ExecutionStatus.FAILED, error=f"invalid legacy status '{legacy}'",
                    )
                except InvalidExecutionStatus:
                    logger.critical("Execution %d could not be repaired", execution.id)
                    continue
                await AuditService(session).log_execution_finished(
                    execution.id, execution.policy_id, "failed", actor="repair",
                    details={"legacy_status": legacy},
                )
            await session.commit()
            return len(rows)
