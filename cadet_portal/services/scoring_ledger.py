"""
cadet_portal/services/scoring_ledger.py
Scoring Ledger: the only sanctioned path that moves a cadet's points

apply_delta() rules:
- The ScoreHistory row is committed first. It is the source of truth and
  must survive even if the aggregate update below fails.
- The category column is moved with one conditional UPDATE that floors the
  result at zero, so concurrent deltas never lose an update.
- Cadet.total_score is re-derived from the Scores row and every cadet's rank
  is recomputed in the same transaction.

record_history() and apply_aggregate() are the two halves of apply_delta(),
exposed so a caller can commit the history entry together with its own
state change (abandon does this with the row it deletes).

Clamping is intentional: a large penalty can only zero a category. The
signed history keeps the full record; the aggregate alone cannot
reconstruct past penalties.
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Union

from sqlalchemy import select, update, func, case
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from cadet_portal.errors import (
    BadRequestError, NotFoundError, ErrorCode, store_unavailable, validate_not_empty, validate_enum
)
from cadet_portal.orm.cadet import Cadet, Scores, ScoreHistory, ScoreCategory, CATEGORY_COLUMNS
from cadet_portal.schemas.scores import (
    LedgerResult, ScoreHistoryEntry, LeaderboardEntry, CategoryAverages, ScoreAnalytics
)
from cadet_portal.services.cache import TTLCache, CacheKeys
from cadet_portal.services.permission_oracle import PermissionOracle, Principal

logger = logging.getLogger(__name__)

LEADERBOARD_LIMIT = 100


def parse_category(category: Union[ScoreCategory, str]) -> ScoreCategory:
    if isinstance(category, ScoreCategory):
        return category
    allowed = [c.value for c in ScoreCategory]
    validate_enum(category, allowed, "category")
    return ScoreCategory(category)


def _round_half_up(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


async def record_history(
    db: AsyncSession,
    cadet_id: int,
    category: Union[ScoreCategory, str],
    delta: int,
    description: str,
    awarded_by: Optional[int]
) -> ScoreHistory:
    """
    Validate a delta and stage its history entry in the open transaction.

    The entry is flushed, not committed, so a caller can bind it to other
    writes and roll everything back together. Store errors propagate as
    SQLAlchemyError; the caller owns the rollback.
    """
    category = parse_category(category)
    validate_not_empty(description, "description")
    if not isinstance(delta, int) or isinstance(delta, bool):
        raise BadRequestError("delta must be an integer", details={"field": "delta", "value": delta})

    cadet_exists = await db.execute(select(Cadet.id).where(Cadet.id == cadet_id))
    if cadet_exists.scalar_one_or_none() is None:
        raise NotFoundError("Cadet", cadet_id, code=ErrorCode.CADET_NOT_FOUND)

    entry = ScoreHistory(
        cadet_id=cadet_id,
        category=category,
        points=delta,
        description=description.strip(),
        awarded_by=awarded_by
    )
    db.add(entry)
    await db.flush()
    return entry


async def apply_aggregate(
    db: AsyncSession,
    cadet_id: int,
    category: Union[ScoreCategory, str],
    delta: int,
    history_id: int,
    cache: Optional[TTLCache] = None
) -> LedgerResult:
    """
    Move the aggregate for a history entry that is already committed.

    Raises:
        StoreUnavailableError: the update failed; the history entry stays
            and the gap is logged with [RECONCILE]
    """
    category = parse_category(category)
    try:
        scores = await _update_aggregate(db, cadet_id, category, delta)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(
            f"[RECONCILE] score history {history_id} recorded for cadet {cadet_id} "
            f"({category.value} {delta:+d}) but the aggregate update failed: {e}"
        )
        raise store_unavailable(e, "apply_aggregate")

    try:
        result = await db.execute(
            select(Cadet.total_score, Cadet.rank).where(Cadet.id == cadet_id)
        )
        total_score, rank = result.one()
    except SQLAlchemyError as e:
        raise store_unavailable(e, "apply_aggregate.reload_cadet")

    if cache is not None:
        cache.invalidate(CacheKeys.SCORES)
        cache.invalidate(CacheKeys.ANALYTICS)

    logger.info(
        f"[LEDGER] cadet={cadet_id} study={scores.study_score} discipline={scores.discipline_score} "
        f"events={scores.events_score} total={total_score} rank={rank}"
    )

    return LedgerResult(
        cadet_id=cadet_id,
        category=category,
        delta=delta,
        history_id=history_id,
        study_score=scores.study_score,
        discipline_score=scores.discipline_score,
        events_score=scores.events_score,
        total_score=total_score,
        rank=rank
    )


async def apply_delta(
    db: AsyncSession,
    cadet_id: int,
    category: Union[ScoreCategory, str],
    delta: int,
    description: str,
    awarded_by: Optional[int],
    cache: Optional[TTLCache] = None
) -> LedgerResult:
    """
    Append a history entry and move the cadet's category score by delta.

    Raises:
        BadRequestError: unknown category, empty description, non-integer delta
        NotFoundError: cadet does not exist
        StoreUnavailableError: the store failed; if it failed after the
            history commit the entry stays and is logged for reconciliation
    """
    # 1. Audit record first
    try:
        entry = await record_history(db, cadet_id, category, delta, description, awarded_by)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise store_unavailable(e, "apply_delta.history")

    history_id = entry.id
    category = entry.category
    logger.info(
        f"[LEDGER] history={history_id} cadet={cadet_id} {category.value} {delta:+d} by={awarded_by}"
    )

    # 2-5. Aggregate
    return await apply_aggregate(db, cadet_id, category, delta, history_id, cache)


async def _update_aggregate(
    db: AsyncSession,
    cadet_id: int,
    category: ScoreCategory,
    delta: int
) -> Scores:
    """Clamp-and-add on the Scores row, then re-derive total and ranks. Caller commits."""
    await _ensure_scores_row(db, cadet_id)

    column = getattr(Scores, CATEGORY_COLUMNS[category])
    await db.execute(
        update(Scores)
        .where(Scores.cadet_id == cadet_id)
        .values({
            CATEGORY_COLUMNS[category]: case((column + delta < 0, 0), else_=column + delta),
            "updated_at": datetime.utcnow()
        })
        .execution_options(synchronize_session=False)
    )

    result = await db.execute(
        select(Scores)
        .where(Scores.cadet_id == cadet_id)
        .execution_options(populate_existing=True)
    )
    scores = result.scalar_one()

    await db.execute(
        update(Cadet)
        .where(Cadet.id == cadet_id)
        .values(total_score=scores.total(), updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    await recompute_ranks(db)
    return scores


async def _ensure_scores_row(db: AsyncSession, cadet_id: int) -> None:
    """Insert an all-zero Scores row if the cadet has none yet."""
    result = await db.execute(select(Scores.id).where(Scores.cadet_id == cadet_id))
    if result.scalar_one_or_none() is not None:
        return

    db.add(Scores(cadet_id=cadet_id, study_score=0, discipline_score=0, events_score=0))
    try:
        await db.flush()
    except IntegrityError:
        # A concurrent request created it first; nothing else is pending in this transaction
        await db.rollback()


async def recompute_ranks(db: AsyncSession) -> None:
    """Competition ranking: 1 + number of cadets with a strictly higher total."""
    higher = aliased(Cadet)
    above = (
        select(func.count(higher.id))
        .where(higher.total_score > Cadet.total_score)
        .correlate(Cadet)
        .scalar_subquery()
    )
    await db.execute(
        update(Cadet)
        .values(rank=above + 1)
        .execution_options(synchronize_session=False)
    )


async def award_points(
    db: AsyncSession,
    oracle: PermissionOracle,
    principal: Principal,
    cadet_id: int,
    category: Union[ScoreCategory, str],
    points: int,
    description: str,
    cache: Optional[TTLCache] = None
) -> LedgerResult:
    """Manual admin award (or deduction when points is negative)."""
    category = parse_category(category)
    validate_not_empty(description, "description")
    if points == 0:
        raise BadRequestError("points must be non-zero", details={"field": "points", "value": points})

    await oracle.require_score_category(principal, category)

    logger.info(
        f"[AWARD] user={principal.user_id} cadet={cadet_id} {category.value} {points:+d}"
    )
    return await apply_delta(
        db, cadet_id, category, points, description,
        awarded_by=principal.user_id, cache=cache
    )


# ================= READ PATHS =================

async def get_score_history(
    db: AsyncSession,
    cadet_id: int,
    limit: int = 50
) -> List[ScoreHistoryEntry]:
    """History entries for a cadet, newest first."""
    result = await db.execute(
        select(ScoreHistory)
        .where(ScoreHistory.cadet_id == cadet_id)
        .order_by(ScoreHistory.created_at.desc(), ScoreHistory.id.desc())
        .limit(limit)
    )
    return [ScoreHistoryEntry.model_validate(row) for row in result.scalars().all()]


async def get_daily_change(
    db: AsyncSession,
    cadet_id: int,
    now: Optional[datetime] = None
) -> int:
    """Signed sum of a cadet's point movements over the last 24 hours."""
    since = (now or datetime.utcnow()) - timedelta(days=1)
    result = await db.execute(
        select(func.coalesce(func.sum(ScoreHistory.points), 0))
        .where(ScoreHistory.cadet_id == cadet_id, ScoreHistory.created_at >= since)
    )
    return int(result.scalar_one())


async def get_all_daily_changes(
    db: AsyncSession,
    now: Optional[datetime] = None
) -> Dict[int, int]:
    since = (now or datetime.utcnow()) - timedelta(days=1)
    result = await db.execute(
        select(ScoreHistory.cadet_id, func.sum(ScoreHistory.points))
        .where(ScoreHistory.created_at >= since)
        .group_by(ScoreHistory.cadet_id)
    )
    return {cadet_id: int(total) for cadet_id, total in result.all()}


async def get_average_total_score(db: AsyncSession) -> int:
    result = await db.execute(select(func.avg(Cadet.total_score)))
    average = result.scalar_one()
    return _round_half_up(float(average)) if average is not None else 0


async def get_category_averages(db: AsyncSession) -> CategoryAverages:
    result = await db.execute(
        select(
            func.avg(Scores.study_score),
            func.avg(Scores.discipline_score),
            func.avg(Scores.events_score)
        )
    )
    study, discipline, events = result.one()
    if study is None:
        return CategoryAverages()
    return CategoryAverages(
        study=_round_half_up(float(study)),
        discipline=_round_half_up(float(discipline)),
        events=_round_half_up(float(events))
    )


async def get_score_analytics(
    db: AsyncSession,
    cache: Optional[TTLCache] = None,
    ttl: int = 300
) -> ScoreAnalytics:
    if cache is not None:
        cached = cache.get(CacheKeys.ANALYTICS)
        if cached is not None:
            return cached

    analytics = ScoreAnalytics(
        average_total_score=await get_average_total_score(db),
        category_averages=await get_category_averages(db),
        daily_changes=await get_all_daily_changes(db)
    )
    if cache is not None:
        cache.set(CacheKeys.ANALYTICS, analytics, ttl)
    return analytics


async def get_leaderboard(
    db: AsyncSession,
    cache: Optional[TTLCache] = None,
    ttl: int = 300,
    limit: int = LEADERBOARD_LIMIT
) -> List[LeaderboardEntry]:
    """Cadets by rank then name. Served from cache until a ledger mutation evicts it."""
    if cache is not None:
        cached = cache.get(CacheKeys.SCORES)
        if cached is not None:
            return cached[:limit]

    result = await db.execute(
        select(Cadet)
        .order_by(Cadet.rank.asc(), Cadet.name.asc(), Cadet.id.asc())
        .limit(LEADERBOARD_LIMIT)
    )
    board = [LeaderboardEntry.model_validate(c) for c in result.scalars().all()]

    if cache is not None:
        cache.set(CacheKeys.SCORES, board, ttl)
    return board[:limit]
