"""
cadet_portal/services/task_catalog.py
Task Catalog: task definitions, cached reads and admin CRUD

The active-task list is served through the process cache. Every mutation
commits, then evicts CacheKeys.TASKS before returning, so the next read
after a successful create/update/delete is always fresh.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cadet_portal.errors import BadRequestError, NotFoundError, ErrorCode, store_unavailable
from cadet_portal.orm.task import Task
from cadet_portal.schemas.tasks import TaskCreate, TaskUpdate, TaskResponse
from cadet_portal.services.cache import TTLCache, CacheKeys, CacheDuration
from cadet_portal.services.permission_oracle import PermissionOracle, Principal, Capability

logger = logging.getLogger(__name__)


async def get_task(db: AsyncSession, task_id: int) -> Task:
    """Load a task or raise NotFoundError."""
    try:
        task = await db.get(Task, task_id, populate_existing=True)
    except SQLAlchemyError as e:
        await db.rollback()
        raise store_unavailable(e, "get_task")
    if task is None:
        raise NotFoundError("Task", task_id, code=ErrorCode.TASK_NOT_FOUND)
    return task


async def list_active_tasks(
    db: AsyncSession,
    cache: Optional[TTLCache] = None,
    ttl: int = CacheDuration.SHORT
) -> List[TaskResponse]:
    """Active tasks ordered by deadline (soonest first)."""
    if cache is not None:
        cached = cache.get(CacheKeys.TASKS)
        if cached is not None:
            return cached

    try:
        result = await db.execute(
            select(Task)
            .where(Task.is_active == True)
            .order_by(Task.deadline.asc(), Task.id.asc())
        )
    except SQLAlchemyError as e:
        await db.rollback()
        raise store_unavailable(e, "list_active_tasks")

    tasks = [TaskResponse.model_validate(t) for t in result.scalars().all()]
    if cache is not None:
        cache.set(CacheKeys.TASKS, tasks, ttl)
    return tasks


async def create_task(
    db: AsyncSession,
    oracle: PermissionOracle,
    principal: Principal,
    data: TaskCreate,
    cache: Optional[TTLCache] = None
) -> TaskResponse:
    await oracle.require(principal, Capability.MANAGE_TASKS)

    task = Task(
        title=data.title.strip(),
        description=data.description,
        category=data.category,
        difficulty=data.difficulty,
        points=data.points,
        deadline=data.deadline,
        max_participants=data.max_participants,
        current_participants=0,
        abandon_penalty=data.abandon_penalty,
        status=data.status,
        is_active=data.is_active,
        created_by=principal.user_id
    )
    try:
        db.add(task)
        await db.commit()
        await db.refresh(task)
    except SQLAlchemyError as e:
        await db.rollback()
        raise store_unavailable(e, "create_task")

    if cache is not None:
        cache.invalidate(CacheKeys.TASKS)

    logger.info(f"[CATALOG] task {task.id} created by user {principal.user_id}: {task.title!r}")
    return TaskResponse.model_validate(task)


async def update_task(
    db: AsyncSession,
    oracle: PermissionOracle,
    principal: Principal,
    task_id: int,
    updates: TaskUpdate,
    cache: Optional[TTLCache] = None
) -> TaskResponse:
    """
    Partial update. Lowering max_participants below the number of open
    claims is refused; the check is part of the UPDATE itself so it cannot
    race with a concurrent claim.
    """
    changes = updates.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise BadRequestError("No fields to update", code=ErrorCode.MISSING_FIELD)
    if "title" in changes:
        changes["title"] = changes["title"].strip()

    await oracle.require(principal, Capability.MANAGE_TASKS)

    stmt = update(Task).where(Task.id == task_id)
    new_max = changes.get("max_participants")
    if new_max:
        stmt = stmt.where(Task.current_participants <= new_max)
    changes["updated_at"] = datetime.utcnow()

    try:
        result = await db.execute(
            stmt.values(**changes).execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.rollback()
            task = await get_task(db, task_id)
            raise BadRequestError(
                "max_participants cannot be lower than the current number of participants",
                details={
                    "max_participants": new_max,
                    "current_participants": task.current_participants
                }
            )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise store_unavailable(e, "update_task")

    if cache is not None:
        cache.invalidate(CacheKeys.TASKS)

    task = await get_task(db, task_id)
    logger.info(f"[CATALOG] task {task_id} updated by user {principal.user_id}: {sorted(changes)}")
    return TaskResponse.model_validate(task)


async def delete_task(
    db: AsyncSession,
    oracle: PermissionOracle,
    principal: Principal,
    task_id: int,
    cache: Optional[TTLCache] = None
) -> str:
    """Delete a task and, by cascade, its submissions. Returns the deleted title."""
    await oracle.require(principal, Capability.MANAGE_TASKS)

    task = await get_task(db, task_id)
    title = task.title
    try:
        await db.delete(task)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise store_unavailable(e, "delete_task")

    if cache is not None:
        cache.invalidate(CacheKeys.TASKS)

    logger.info(f"[CATALOG] task {task_id} deleted by user {principal.user_id}: {title!r}")
    return title
