"""
cadet_portal/services/submission_service.py
Submission lifecycle: claim, submit, abandon, review

Every transition is a conditional UPDATE/DELETE whose WHERE clause carries
the source state taken from SubmissionStateMachine, so two requests racing on
the same row cannot both apply. Zero affected rows is re-read and classified
into a typed error.

Ordering rules across tables:
- claim: capacity increment and submission insert share one transaction
- abandon: the penalty history entry commits with the row delete, so a
  lost race leaves no penalty; a ledger failure is logged for
  reconciliation and does not block
- review: the decision is committed before the ledger is called; a ledger
  failure is reported in the result and the decision is never rolled back
"""
import logging
from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy import select, update, delete, case
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cadet_portal.errors import (
    APIError, ConflictError, NotFoundError, InvalidStateError, NotClaimedError,
    AlreadyClaimedError, CapacityExceededError, TaskInactiveError, ErrorCode,
    store_unavailable, validate_positive_int, validate_non_negative_int,
    validate_not_empty, validate_enum
)
from cadet_portal.orm.cadet import Cadet
from cadet_portal.orm.task import Task, TaskSubmission, TaskStatus, SubmissionStatus
from cadet_portal.schemas.tasks import (
    SubmissionResponse, SubmissionWithCadet, SubmissionWithTask,
    ClaimResult, SubmitResult, AbandonResult, ReviewResult
)
from cadet_portal.services.cache import TTLCache, CacheKeys
from cadet_portal.services.permission_oracle import PermissionOracle, Principal, Capability
from cadet_portal.services.scoring_ledger import apply_delta, apply_aggregate, record_history
from cadet_portal.services.task_catalog import get_task
from cadet_portal.state_machines.task_submission import SubmissionStateMachine

logger = logging.getLogger(__name__)


async def _participant_count(db: AsyncSession, task_id: int) -> int:
    result = await db.execute(select(Task.current_participants).where(Task.id == task_id))
    return result.scalar_one_or_none() or 0


async def _load_submission(
    db: AsyncSession,
    submission_id: int,
    with_task: bool = False
) -> Optional[TaskSubmission]:
    stmt = (
        select(TaskSubmission)
        .where(TaskSubmission.id == submission_id)
        .execution_options(populate_existing=True)
    )
    if with_task:
        stmt = stmt.options(selectinload(TaskSubmission.task))
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _find_submission(db: AsyncSession, task_id: int, cadet_id: int) -> Optional[TaskSubmission]:
    result = await db.execute(
        select(TaskSubmission)
        .where(TaskSubmission.task_id == task_id, TaskSubmission.cadet_id == cadet_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


# ================= CLAIM =================

async def claim(
    db: AsyncSession,
    oracle: PermissionOracle,
    principal: Principal,
    task_id: int,
    cadet_id: int,
    cache: Optional[TTLCache] = None
) -> ClaimResult:
    """
    Take a slot on a task for a cadet.

    Raises:
        NotFoundError: task or cadet missing
        TaskInactiveError: task closed for new claims
        AlreadyClaimedError: the cadet already has a row for this task
        CapacityExceededError: every slot is taken
    """
    validate_positive_int(task_id, "task_id")
    validate_positive_int(cadet_id, "cadet_id")
    await oracle.require_cadet_access(principal, cadet_id)

    logger.info(f"[CLAIM] task={task_id} cadet={cadet_id} by user={principal.user_id}")

    try:
        cadet = await db.get(Cadet, cadet_id)
        if cadet is None:
            raise NotFoundError("Cadet", cadet_id, code=ErrorCode.CADET_NOT_FOUND)

        existing = await _find_submission(db, task_id, cadet_id)
        if existing is not None:
            logger.warning(f"[CLAIM BLOCKED] task={task_id} cadet={cadet_id}: already claimed")
            raise AlreadyClaimedError(task_id, cadet_id)

        # Check-and-increment in one statement; the loser of a race matches no row
        result = await db.execute(
            update(Task)
            .where(
                Task.id == task_id,
                Task.status == TaskStatus.ACTIVE,
                Task.is_active == True,
                (Task.max_participants == 0) | (Task.current_participants < Task.max_participants)
            )
            .values(current_participants=Task.current_participants + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.rollback()
            task = await get_task(db, task_id)
            if not task.is_open():
                logger.warning(f"[CLAIM BLOCKED] task={task_id} cadet={cadet_id}: inactive")
                raise TaskInactiveError(task_id)
            logger.warning(
                f"[CLAIM BLOCKED] task={task_id} cadet={cadet_id}: "
                f"capacity {task.current_participants}/{task.max_participants}"
            )
            raise CapacityExceededError(task_id, task.max_participants)

        submission = TaskSubmission(
            task_id=task_id,
            cadet_id=cadet_id,
            status=SubmissionStatus.TAKEN,
            submission_text="",
            points_awarded=0
        )
        db.add(submission)
        try:
            await db.flush()
        except IntegrityError:
            # Concurrent claim for the same pair won; the increment is rolled back with it
            await db.rollback()
            logger.warning(f"[CLAIM BLOCKED] task={task_id} cadet={cadet_id}: duplicate insert")
            raise AlreadyClaimedError(task_id, cadet_id)

        await db.commit()
        await db.refresh(submission)
        current = await _participant_count(db, task_id)
    except SQLAlchemyError as e:
        await db.rollback()
        raise store_unavailable(e, "claim")

    if cache is not None:
        cache.invalidate(CacheKeys.TASKS)

    logger.info(f"[CLAIM] ✓ task={task_id} cadet={cadet_id} submission={submission.id} participants={current}")
    return ClaimResult(
        message="Task claimed successfully",
        submission=SubmissionResponse.model_validate(submission),
        current_participants=current
    )


# ================= SUBMIT =================

async def submit(
    db: AsyncSession,
    oracle: PermissionOracle,
    principal: Principal,
    task_id: int,
    cadet_id: int,
    submission_text: str
) -> SubmitResult:
    """Turn in work for an open claim. NotClaimedError if there is no taken row."""
    validate_not_empty(submission_text, "submission_text")
    validate_positive_int(task_id, "task_id")
    validate_positive_int(cadet_id, "cadet_id")
    await oracle.require_cadet_access(principal, cadet_id)

    source = SubmissionStateMachine.source_state(SubmissionStatus.SUBMITTED)
    now = datetime.utcnow()

    try:
        result = await db.execute(
            update(TaskSubmission)
            .where(
                TaskSubmission.task_id == task_id,
                TaskSubmission.cadet_id == cadet_id,
                TaskSubmission.status == source
            )
            .values(
                status=SubmissionStatus.SUBMITTED,
                submission_text=submission_text,
                submitted_at=now,
                updated_at=now
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.rollback()
            logger.warning(f"[SUBMIT BLOCKED] task={task_id} cadet={cadet_id}: no open claim")
            raise NotClaimedError(task_id, cadet_id)

        await db.commit()
        submission = await _find_submission(db, task_id, cadet_id)
    except SQLAlchemyError as e:
        await db.rollback()
        raise store_unavailable(e, "submit")

    logger.info(f"[SUBMIT] ✓ task={task_id} cadet={cadet_id} submission={submission.id}")
    return SubmitResult(
        message="Task submitted for review",
        submission=SubmissionResponse.model_validate(submission)
    )


# ================= ABANDON =================

async def _release_claim(db: AsyncSession, submission_id: int, task_id: int, source: SubmissionStatus) -> bool:
    """Delete the row if it is still in source and free its slot. Caller commits."""
    result = await db.execute(
        delete(TaskSubmission)
        .where(TaskSubmission.id == submission_id, TaskSubmission.status == source)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return False

    await db.execute(
        update(Task)
        .where(Task.id == task_id)
        .values(
            current_participants=case(
                (Task.current_participants > 0, Task.current_participants - 1),
                else_=0
            )
        )
        .execution_options(synchronize_session=False)
    )
    return True


async def abandon(
    db: AsyncSession,
    oracle: PermissionOracle,
    principal: Principal,
    task_id: int,
    cadet_id: int,
    cache: Optional[TTLCache] = None
) -> AbandonResult:
    """
    Give up an open claim.

    The penalty history entry, the row delete and the slot release commit
    together, so a request that loses the row to a concurrent submit or
    abandon leaves no penalty behind. The aggregate moves after the commit.
    """
    validate_positive_int(task_id, "task_id")
    validate_positive_int(cadet_id, "cadet_id")
    await oracle.require_cadet_access(principal, cadet_id)

    source = SubmissionStateMachine.source_state(SubmissionStatus.ABANDONED)

    try:
        submission = await _find_submission(db, task_id, cadet_id)
    except SQLAlchemyError as e:
        await db.rollback()
        raise store_unavailable(e, "abandon.load")
    if submission is None or submission.status != source:
        logger.warning(f"[ABANDON BLOCKED] task={task_id} cadet={cadet_id}: no taken submission")
        raise NotFoundError("Open claim", f"{task_id}/{cadet_id}", code=ErrorCode.SUBMISSION_NOT_FOUND)

    submission_id = submission.id
    task = await get_task(db, task_id)
    penalty = task.abandon_penalty
    category = task.category
    title = task.title

    history_id = None
    penalty_recorded = True
    try:
        if penalty > 0:
            try:
                entry = await record_history(
                    db, cadet_id, category, -penalty,
                    f"Abandoned task: {title}",
                    awarded_by=None
                )
                history_id = entry.id
            except (APIError, SQLAlchemyError) as e:
                await db.rollback()
                penalty_recorded = False
                logger.error(
                    f"[RECONCILE] abandon penalty {-penalty} ({category.value}) for cadet {cadet_id} "
                    f"on task {task_id} was not recorded: {e}"
                )

        if not await _release_claim(db, submission_id, task_id, source):
            await db.rollback()
            logger.warning(
                f"[ABANDON BLOCKED] submission={submission_id} changed state concurrently, penalty discarded"
            )
            raise ConflictError(
                "The submission changed while it was being abandoned",
                details={"submission_id": submission_id}
            )

        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise store_unavailable(e, "abandon")

    if cache is not None:
        cache.invalidate(CacheKeys.TASKS)

    ledger = None
    if history_id is not None:
        try:
            ledger = await apply_aggregate(db, cadet_id, category, -penalty, history_id, cache)
        except APIError as e:
            logger.warning(f"[ABANDON] task={task_id} cadet={cadet_id} aggregate pending: {e.message}")

    try:
        current = await _participant_count(db, task_id)
    except SQLAlchemyError as e:
        raise store_unavailable(e, "abandon.reload")

    logger.info(
        f"[ABANDON] ✓ task={task_id} cadet={cadet_id} penalty={penalty} "
        f"recorded={penalty_recorded} participants={current}"
    )
    return AbandonResult(
        message="Task abandoned",
        penalty_applied=penalty if penalty_recorded else 0,
        penalty_recorded=penalty_recorded,
        ledger=ledger,
        current_participants=current
    )


# ================= REVIEW =================

async def review(
    db: AsyncSession,
    oracle: PermissionOracle,
    principal: Principal,
    submission_id: int,
    decision: Union[SubmissionStatus, str],
    feedback: Optional[str] = None,
    points_awarded: int = 0,
    cache: Optional[TTLCache] = None
) -> ReviewResult:
    """
    Record a reviewer's decision on a submitted task.

    Only rows in the submitted state can be reviewed. Rejections store zero
    points. When a completion carries points they are added through the
    ledger after the decision is committed.
    """
    validate_enum(
        decision.value if isinstance(decision, SubmissionStatus) else decision,
        [d.value for d in SubmissionStateMachine.REVIEW_DECISIONS],
        "decision"
    )
    decision = SubmissionStatus(decision)
    validate_positive_int(submission_id, "submission_id")
    validate_non_negative_int(points_awarded, "points_awarded")

    await oracle.require(principal, Capability.MANAGE_TASKS)

    source = SubmissionStateMachine.source_state(decision)
    points = points_awarded if decision == SubmissionStatus.COMPLETED else 0
    now = datetime.utcnow()

    try:
        result = await db.execute(
            update(TaskSubmission)
            .where(TaskSubmission.id == submission_id, TaskSubmission.status == source)
            .values(
                status=decision,
                feedback=feedback,
                points_awarded=points,
                reviewed_by=principal.user_id,
                reviewed_at=now,
                updated_at=now
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.rollback()
            current = await _load_submission(db, submission_id)
            if current is None:
                raise NotFoundError("Submission", submission_id, code=ErrorCode.SUBMISSION_NOT_FOUND)
            logger.warning(
                f"[REVIEW BLOCKED] submission={submission_id} is {current.status.value}, "
                f"cannot become {decision.value}"
            )
            raise InvalidStateError(
                current.status.value,
                decision.value,
                SubmissionStateMachine.allowed_from(current.status)
            )

        await db.commit()
        submission = await _load_submission(db, submission_id, with_task=True)
    except SQLAlchemyError as e:
        await db.rollback()
        raise store_unavailable(e, "review")

    logger.info(
        f"[REVIEW] ✓ submission={submission_id} {source.value} -> {decision.value} "
        f"points={points} by user={principal.user_id}"
    )

    cadet_id = submission.cadet_id
    response = SubmissionResponse.model_validate(submission)
    category = submission.task.category
    title = submission.task.title

    ledger = None
    score_applied = False
    score_error = None
    if decision == SubmissionStatus.COMPLETED and points > 0:
        try:
            ledger = await apply_delta(
                db, cadet_id, category, points,
                f"Task completed: {title}",
                awarded_by=principal.user_id, cache=cache
            )
            score_applied = True
        except (APIError, SQLAlchemyError) as e:
            score_error = e.message if isinstance(e, APIError) else str(e)
            logger.error(
                f"[RECONCILE] review of submission {submission_id} recorded as completed "
                f"but {points} {category.value} points for cadet {cadet_id} were not applied: {score_error}"
            )

    message = "Submission approved" if decision == SubmissionStatus.COMPLETED else "Submission rejected"
    return ReviewResult(
        message=message,
        submission=response,
        score_applied=score_applied,
        score_error=score_error,
        ledger=ledger
    )


# ================= READ PATHS =================

async def list_cadet_submissions(db: AsyncSession, cadet_id: int) -> List[SubmissionWithTask]:
    """A cadet's submissions with their tasks, newest first."""
    result = await db.execute(
        select(TaskSubmission)
        .options(selectinload(TaskSubmission.task), selectinload(TaskSubmission.cadet))
        .where(TaskSubmission.cadet_id == cadet_id)
        .order_by(TaskSubmission.created_at.desc(), TaskSubmission.id.desc())
        .execution_options(populate_existing=True)
    )
    return [SubmissionWithTask.model_validate(s) for s in result.scalars().all()]


async def list_task_submissions(db: AsyncSession, task_id: int) -> List[SubmissionWithCadet]:
    result = await db.execute(
        select(TaskSubmission)
        .options(selectinload(TaskSubmission.cadet))
        .where(TaskSubmission.task_id == task_id)
        .order_by(TaskSubmission.created_at.asc(), TaskSubmission.id.asc())
        .execution_options(populate_existing=True)
    )
    return [SubmissionWithCadet.model_validate(s) for s in result.scalars().all()]


async def list_all_submissions(
    db: AsyncSession,
    status: Optional[Union[SubmissionStatus, str]] = None
) -> List[SubmissionWithTask]:
    """Every submission with its task and cadet, newest first. Optionally one status only."""
    stmt = (
        select(TaskSubmission)
        .options(selectinload(TaskSubmission.task), selectinload(TaskSubmission.cadet))
        .order_by(TaskSubmission.created_at.desc(), TaskSubmission.id.desc())
        .execution_options(populate_existing=True)
    )
    if status is not None:
        validate_enum(
            status.value if isinstance(status, SubmissionStatus) else status,
            [s.value for s in SubmissionStatus],
            "status"
        )
        stmt = stmt.where(TaskSubmission.status == SubmissionStatus(status))
    result = await db.execute(stmt)
    return [SubmissionWithTask.model_validate(s) for s in result.scalars().all()]


async def list_review_queue(db: AsyncSession) -> List[SubmissionWithTask]:
    """Everything waiting for a reviewer, oldest submission first."""
    result = await db.execute(
        select(TaskSubmission)
        .options(selectinload(TaskSubmission.task), selectinload(TaskSubmission.cadet))
        .where(TaskSubmission.status == SubmissionStatus.SUBMITTED)
        .order_by(TaskSubmission.submitted_at.asc(), TaskSubmission.id.asc())
        .execution_options(populate_existing=True)
    )
    return [SubmissionWithTask.model_validate(s) for s in result.scalars().all()]


async def is_task_taken(db: AsyncSession, task_id: int, cadet_id: int) -> bool:
    """True while the cadet holds an open (taken or submitted) row for the task."""
    result = await db.execute(
        select(TaskSubmission.id)
        .where(
            TaskSubmission.task_id == task_id,
            TaskSubmission.cadet_id == cadet_id,
            TaskSubmission.status.in_([SubmissionStatus.TAKEN, SubmissionStatus.SUBMITTED])
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None
