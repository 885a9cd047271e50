"""
Violations API Router
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from securewatch.api.deps import get_db
from securewatch.models import Violation
from securewatch.schemas.schemas import ViolationListResponse, ViolationOut

router = APIRouter(prefix="/api/violations", tags=["violations"])


@router.get("", response_model=ViolationListResponse, response_model_by_alias=True)
async def list_violations(
    employee_id: int | None = Query(None),
    severity: str | None = Query(None, description="Low, Medium, High or Critical"),
    status: str | None = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    query = select(Violation)
    count_query = select(func.count(Violation.id))
    if employee_id is not None:
        query = query.where(Violation.employee_id == employee_id)
        count_query = count_query.where(Violation.employee_id == employee_id)
    if severity:
        query = query.where(Violation.severity == severity)
        count_query = count_query.where(Violation.severity == severity)
    if status:
        query = query.where(Violation.status == status)
        count_query = count_query.where(Violation.status == status)

    total = await db.scalar(count_query) or 0
    result = await db.execute(
        query.order_by(Violation.created_at.desc(), Violation.id.desc())
        .offset((page - 1) * size)
        .limit(size)
    )
    return ViolationListResponse(
        total=total,
        page=page,
        size=size,
        pages=ViolationListResponse.page_count(total, size),
        items=[ViolationOut.model_validate(v) for v in result.scalars()],
    )


@router.get("/{violation_id}", response_model=ViolationOut, response_model_by_alias=True)
async def get_violation(violation_id: int, db: AsyncSession = Depends(get_db)):
    violation = await db.get(Violation, violation_id)
    if violation is None:
        raise HTTPException(status_code=404, detail="Violation not found")
    return ViolationOut.model_validate(violation)
