"""
Policies API Router: create, list, and toggle policies and their actions.

Conditions and actions are validated on write (condition enums and the
action_type discriminated union), so the executor only ever sees known
action types with well-formed configs.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from securewatch.api.deps import get_db
from securewatch.models import Policy, PolicyAction
from securewatch.schemas.schemas import (
    ActionOut,
    ActionStatusUpdate,
    PolicyCreate,
    PolicyOut,
    PolicyStatusUpdate,
)
from securewatch.services.audit_service import AuditService
from securewatch.services.policy_engine import build_policy

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/policies", tags=["policies"])


async def _load(db: AsyncSession, policy_id: int) -> Policy:
    result = await db.execute(
        select(Policy)
        .where(Policy.id == policy_id)
        .options(selectinload(Policy.conditions), selectinload(Policy.actions))
    )
    policy = result.scalar_one_or_none()
    if policy is None:
        raise HTTPException(status_code=404, detail="Policy not found")
    return policy


@router.post("", response_model=PolicyOut, status_code=201)
async def create_policy(body: PolicyCreate, db: AsyncSession = Depends(get_db)):
    policy = build_policy(body)
    db.add(policy)
    await db.flush()

    await AuditService(db).log_policy_changed(
        policy.id,
        {"created": True, "name": policy.name, "actions": [a.action_type for a in policy.actions]},
    )
    logger.info("Policy '%s' (%d) created with %d action(s)", policy.name, policy.id, len(policy.actions))
    return PolicyOut.model_validate(policy)


@router.get("", response_model=list[PolicyOut])
async def list_policies(
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    query = (
        select(Policy)
        .options(selectinload(Policy.conditions), selectinload(Policy.actions))
        .order_by(Policy.priority.desc(), Policy.created_at.asc(), Policy.id.asc())
    )
    if active_only:
        query = query.where(Policy.is_active.is_(True))
    result = await db.execute(query)
    return [PolicyOut.model_validate(p) for p in result.scalars()]


@router.get("/{policy_id}", response_model=PolicyOut)
async def get_policy(policy_id: int, db: AsyncSession = Depends(get_db)):
    return PolicyOut.model_validate(await _load(db, policy_id))


@router.patch("/{policy_id}/status", response_model=PolicyOut)
async def set_policy_status(policy_id: int, body: PolicyStatusUpdate, db: AsyncSession = Depends(get_db)):
    """Activate or deactivate a policy. Pending executions see the change at dispatch time."""
    policy = await _load(db, policy_id)
    if policy.is_active != body.is_active:
        policy.is_active = body.is_active
        await AuditService(db).log_policy_changed(policy.id, {"is_active": body.is_active})
        logger.info("Policy %d %s", policy.id, "activated" if body.is_active else "deactivated")
    return PolicyOut.model_validate(policy)


@router.patch("/{policy_id}/actions/{action_id}/status", response_model=ActionOut)
async def set_action_status(
    policy_id: int,
    action_id: int,
    body: ActionStatusUpdate,
    db: AsyncSession = Depends(get_db),
):
    action = await db.get(PolicyAction, action_id)
    if action is None or action.policy_id != policy_id:
        raise HTTPException(status_code=404, detail="Action not found")
    if action.is_enabled != body.is_enabled:
        action.is_enabled = body.is_enabled
        await AuditService(db).log_policy_changed(
            policy_id, {"action_id": action_id, "is_enabled": body.is_enabled},
        )
    return ActionOut.model_validate(action)
