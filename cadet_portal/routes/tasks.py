"""
cadet_portal/routes/tasks.py
Task catalog and cadet self-service routes (claim / submit / abandon)
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from cadet_portal.config.settings import settings
from cadet_portal.database import get_db
from cadet_portal.errors import BadRequestError, ErrorCode
from cadet_portal.rate_limit import limiter
from cadet_portal.rbac import get_current_principal, get_permission_oracle, get_cache
from cadet_portal.schemas.tasks import (
    TaskCreate, TaskUpdate, TaskResponse, TaskListResponse, CadetActionRequest, SubmitRequest,
    ClaimResult, SubmitResult, AbandonResult
)
from cadet_portal.services import task_catalog, submission_service
from cadet_portal.services.cache import TTLCache
from cadet_portal.services.permission_oracle import PermissionOracle, Principal

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/tasks", tags=["Tasks"])


def resolve_cadet_id(principal: Principal, cadet_id: Optional[int]) -> int:
    """Explicit cadet id from the body, else the caller's own cadet record"""
    if cadet_id is not None:
        return cadet_id
    if principal.cadet_id is None:
        raise BadRequestError(
            "cadet_id is required when the caller has no cadet record",
            code=ErrorCode.MISSING_FIELD,
            details={"field": "cadet_id"}
        )
    return principal.cadet_id


# ================= CATALOG =================

@router.get("", response_model=TaskListResponse)
async def list_tasks(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    cache: TTLCache = Depends(get_cache)
):
    """Active tasks, soonest deadline first."""
    tasks = await task_catalog.list_active_tasks(db, cache, ttl=settings.CACHE_TTL_TASKS)
    return TaskListResponse(tasks=tasks)


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    task = await task_catalog.get_task(db, task_id)
    return TaskResponse.model_validate(task)


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    data: TaskCreate,
    principal: Principal = Depends(get_current_principal),
    oracle: PermissionOracle = Depends(get_permission_oracle),
    db: AsyncSession = Depends(get_db),
    cache: TTLCache = Depends(get_cache)
):
    return await task_catalog.create_task(db, oracle, principal, data, cache)


@router.patch("/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: int,
    updates: TaskUpdate,
    principal: Principal = Depends(get_current_principal),
    oracle: PermissionOracle = Depends(get_permission_oracle),
    db: AsyncSession = Depends(get_db),
    cache: TTLCache = Depends(get_cache)
):
    return await task_catalog.update_task(db, oracle, principal, task_id, updates, cache)


@router.delete("/{task_id}")
async def delete_task(
    task_id: int,
    principal: Principal = Depends(get_current_principal),
    oracle: PermissionOracle = Depends(get_permission_oracle),
    db: AsyncSession = Depends(get_db),
    cache: TTLCache = Depends(get_cache)
):
    title = await task_catalog.delete_task(db, oracle, principal, task_id, cache)
    return {
        "success": True,
        "message": f"Task '{title}' deleted",
        "task_id": task_id
    }


# ================= LIFECYCLE =================

@router.post("/{task_id}/claim", response_model=ClaimResult)
@limiter.limit(settings.RATE_LIMIT_CLAIMS)
async def claim_task(
    request: Request,  # Required by slowapi
    task_id: int,
    data: Optional[CadetActionRequest] = None,
    principal: Principal = Depends(get_current_principal),
    oracle: PermissionOracle = Depends(get_permission_oracle),
    db: AsyncSession = Depends(get_db),
    cache: TTLCache = Depends(get_cache)
):
    cadet_id = resolve_cadet_id(principal, data.cadet_id if data else None)
    return await submission_service.claim(db, oracle, principal, task_id, cadet_id, cache)


@router.post("/{task_id}/submit", response_model=SubmitResult)
async def submit_task(
    task_id: int,
    data: SubmitRequest,
    principal: Principal = Depends(get_current_principal),
    oracle: PermissionOracle = Depends(get_permission_oracle),
    db: AsyncSession = Depends(get_db)
):
    cadet_id = resolve_cadet_id(principal, data.cadet_id)
    return await submission_service.submit(db, oracle, principal, task_id, cadet_id, data.submission_text)


@router.post("/{task_id}/abandon", response_model=AbandonResult)
async def abandon_task(
    task_id: int,
    data: Optional[CadetActionRequest] = None,
    principal: Principal = Depends(get_current_principal),
    oracle: PermissionOracle = Depends(get_permission_oracle),
    db: AsyncSession = Depends(get_db),
    cache: TTLCache = Depends(get_cache)
):
    cadet_id = resolve_cadet_id(principal, data.cadet_id if data else None)
    return await submission_service.abandon(db, oracle, principal, task_id, cadet_id, cache)
