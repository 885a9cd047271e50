"""
Read-only access to the enforcement audit trail.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from securewatch.api.deps import get_db
from securewatch.schemas.schemas import AuditEntry, AuditListResponse, IntegrityCheckResponse
from securewatch.services.audit_service import AuditService

router = APIRouter(prefix="/api/audit", tags=["audit"])


def get_audit_service(db: AsyncSession = Depends(get_db)) -> AuditService:
    return AuditService(db)


@router.get("", response_model=AuditListResponse)
async def list_audit_entries(
    event_type: str | None = Query(None, description="violation_recorded, execution_finished, policy_changed, ..."),
    resource_type: str | None = Query(None),
    resource_id: str | None = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    audit: AuditService = Depends(get_audit_service),
):
    scope = {"event_type": event_type, "resource_type": resource_type, "resource_id": resource_id}
    total = await audit.get_entry_count(**scope)
    entries = await audit.get_entries(**scope, limit=size, offset=(page - 1) * size)
    return AuditListResponse(
        total=total,
        page=page,
        size=size,
        pages=AuditListResponse.page_count(total, size),
        items=[AuditEntry.model_validate(entry) for entry in entries],
    )


@router.get("/integrity", response_model=IntegrityCheckResponse)
async def check_integrity(audit: AuditService = Depends(get_audit_service)):
    return IntegrityCheckResponse(**await audit.verify_chain_integrity())
