"""
Policy executions API Router: inspection and operator replay.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from securewatch.api.deps import get_collaborators, get_db, get_session_factory
from securewatch.models import PolicyExecution
from securewatch.models.execution import STATUS_VALUES
from securewatch.schemas.schemas import ExecutionListResponse, ExecutionOut, ReplayResponse
from securewatch.services.action_executor import PolicyActionExecutor
from securewatch.services.collaborators import Collaborators

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/executions", tags=["executions"])


@router.get("", response_model=ExecutionListResponse)
async def list_executions(
    status: str | None = Query(None, description="pending, success, failed or skipped"),
    policy_id: int | None = Query(None),
    violation_id: int | None = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    if status is not None and status not in STATUS_VALUES:
        raise HTTPException(status_code=422, detail=f"status must be one of {', '.join(STATUS_VALUES)}")

    filters = []
    if status:
        filters.append(PolicyExecution.execution_status == status)
    if policy_id is not None:
        filters.append(PolicyExecution.policy_id == policy_id)
    if violation_id is not None:
        filters.append(PolicyExecution.violation_id == violation_id)

    total = await db.scalar(select(func.count(PolicyExecution.id)).where(*filters)) or 0
    result = await db.execute(
        select(PolicyExecution)
        .where(*filters)
        .order_by(PolicyExecution.created_at.desc(), PolicyExecution.id.desc())
        .offset((page - 1) * size)
        .limit(size)
    )
    return ExecutionListResponse(
        total=total,
        page=page,
        size=size,
        pages=ExecutionListResponse.page_count(total, size),
        items=[ExecutionOut.model_validate(e) for e in result.scalars()],
    )


@router.get("/{execution_id}", response_model=ExecutionOut)
async def get_execution(execution_id: int, db: AsyncSession = Depends(get_db)):
    execution = await db.get(PolicyExecution, execution_id)
    if execution is None:
        raise HTTPException(status_code=404, detail="Execution not found")
    return ExecutionOut.model_validate(execution)


@router.post("/{execution_id}/replay", response_model=ReplayResponse)
async def replay_execution(
    execution_id: int,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    collaborators: Collaborators = Depends(get_collaborators),
):
    """Re-run a failed execution's enabled actions. The execution row is left unchanged."""
    executor = PolicyActionExecutor(
        session_factory=session_factory,
        collaborators=collaborators,
        worker_id="api-replay",
    )
    try:
        outcome = await executor.replay(execution_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Execution not found")
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return ReplayResponse(**outcome)
