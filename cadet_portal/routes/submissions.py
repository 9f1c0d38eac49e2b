"""
cadet_portal/routes/submissions.py
Submission listings, the review queue and reviewer decisions
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from cadet_portal.database import get_db
from cadet_portal.orm.task import SubmissionStatus
from cadet_portal.rbac import get_current_principal, get_permission_oracle, get_cache
from cadet_portal.schemas.tasks import ReviewRequest, ReviewResult
from cadet_portal.services import submission_service, task_catalog
from cadet_portal.services.cache import TTLCache
from cadet_portal.services.permission_oracle import PermissionOracle, Principal, Capability

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Submissions"])


@router.get("/submissions")
async def all_submissions(
    status: Optional[SubmissionStatus] = Query(None, description="Only rows in this state"),
    principal: Principal = Depends(get_current_principal),
    oracle: PermissionOracle = Depends(get_permission_oracle),
    db: AsyncSession = Depends(get_db)
):
    """Every submission with its task and cadet, newest first. Task managers only."""
    await oracle.require(principal, Capability.MANAGE_TASKS)
    submissions = await submission_service.list_all_submissions(db, status)
    return {
        "success": True,
        "count": len(submissions),
        "submissions": [s.model_dump(mode="json") for s in submissions]
    }


@router.get("/submissions/review-queue")
async def review_queue(
    principal: Principal = Depends(get_current_principal),
    oracle: PermissionOracle = Depends(get_permission_oracle),
    db: AsyncSession = Depends(get_db)
):
    """Submissions awaiting a decision, oldest first. Task managers only."""
    await oracle.require(principal, Capability.MANAGE_TASKS)
    queue = await submission_service.list_review_queue(db)
    return {
        "success": True,
        "count": len(queue),
        "submissions": [s.model_dump(mode="json") for s in queue]
    }


@router.post("/submissions/{submission_id}/review", response_model=ReviewResult)
async def review_submission(
    submission_id: int,
    data: ReviewRequest,
    principal: Principal = Depends(get_current_principal),
    oracle: PermissionOracle = Depends(get_permission_oracle),
    db: AsyncSession = Depends(get_db),
    cache: TTLCache = Depends(get_cache)
):
    return await submission_service.review(
        db, oracle, principal, submission_id,
        decision=data.decision,
        feedback=data.feedback,
        points_awarded=data.points_awarded,
        cache=cache
    )


@router.get("/cadets/{cadet_id}/submissions")
async def cadet_submissions(
    cadet_id: int,
    principal: Principal = Depends(get_current_principal),
    oracle: PermissionOracle = Depends(get_permission_oracle),
    db: AsyncSession = Depends(get_db)
):
    await oracle.require_cadet_access(principal, cadet_id)
    submissions = await submission_service.list_cadet_submissions(db, cadet_id)
    return {
        "success": True,
        "cadet_id": cadet_id,
        "submissions": [s.model_dump(mode="json") for s in submissions]
    }


@router.get("/tasks/{task_id}/submissions")
async def task_submissions(
    task_id: int,
    principal: Principal = Depends(get_current_principal),
    oracle: PermissionOracle = Depends(get_permission_oracle),
    db: AsyncSession = Depends(get_db)
):
    await oracle.require(principal, Capability.MANAGE_TASKS)
    await task_catalog.get_task(db, task_id)
    submissions = await submission_service.list_task_submissions(db, task_id)
    return {
        "success": True,
        "task_id": task_id,
        "submissions": [s.model_dump(mode="json") for s in submissions]
    }
