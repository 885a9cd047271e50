"""
Work queue over the policy_executions table.

A worker claims a pending execution by writing its id into the lease columns
with a conditional UPDATE; only one UPDATE can match, so two workers never
process the same row. The status stays pending while claimed. A lease older
than `lease_seconds` is treated as abandoned (crashed worker) and can be
claimed again. A parked execution carries `not_before` and stays out of every
batch until that time.
"""

import logging
from datetime import timedelta

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from securewatch.config import settings
from securewatch.database import utcnow
from securewatch.models import PolicyExecution

logger = logging.getLogger(__name__)

PENDING = "pending"


class ExecutionQueue:
    def __init__(self, session_factory: async_sessionmaker, worker_id: str,
                 lease_seconds: int | None = None):
        self.session_factory = session_factory
        self.worker_id = worker_id
        self.lease = timedelta(seconds=settings.executor_lease_seconds if lease_seconds is None else lease_seconds)

    def _claimable(self, now):
        return and_(
            PolicyExecution.execution_status == PENDING,
            or_(
                PolicyExecution.claimed_at.is_(None),
                PolicyExecution.claimed_at < now - self.lease,
            ),
            or_(
                PolicyExecution.not_before.is_(None),
                PolicyExecution.not_before <= now,
            ),
        )

    async def claim(self, session: AsyncSession, execution_id: int) -> bool:
        """Atomically take the lease on one execution. True if this worker now owns it."""
        now = utcnow()
        result = await session.execute(
            update(PolicyExecution)
            .where(PolicyExecution.id == execution_id)
            .where(self._claimable(now))
            .values(claimed_by=self.worker_id, claimed_at=now, started_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def claim_batch(self, limit: int) -> list[int]:
        """Claim up to `limit` pending executions, oldest first."""
        now = utcnow()
        async with self.session_factory() as session:
            query = (
                select(PolicyExecution.id)
                .where(self._claimable(now))
                .order_by(PolicyExecution.created_at.asc(), PolicyExecution.id.asc())
                .limit(limit)
            )
            if session.get_bind().dialect.name == "postgresql":
                query = query.with_for_update(skip_locked=True)

            candidates = list((await session.execute(query)).scalars())
            claimed = [eid for eid in candidates if await self.claim(session, eid)]
            await session.commit()

        if len(claimed) < len(candidates):
            logger.debug("Lost %d claim(s) to other workers", len(candidates) - len(claimed))
        return claimed

    @staticmethod
    def release(execution: PolicyExecution, not_before=None) -> None:
        """Give up the lease without finishing.

        With `not_before` the row is not claimable again until then, so parked
        executions never crowd newer work out of a batch.
        """
        execution.claimed_by = None
        execution.claimed_at = None
        execution.not_before = not_before

    async def pending_count(self) -> int:
        async with self.session_factory() as session:
            return await session.scalar(
                select(func.count(PolicyExecution.id)).where(PolicyExecution.execution_status == PENDING)
            ) or 0
