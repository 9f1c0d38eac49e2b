"""
Scoring ledger tests

Covers the apply_delta ordering (history before aggregate), clamping at
zero, total/rank recomputation, cache eviction, the manual award gate and
the analytics reads.
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError

from cadet_portal.errors import BadRequestError, ForbiddenError, NotFoundError, StoreUnavailableError
from cadet_portal.orm.cadet import Cadet, Scores, ScoreHistory, ScoreCategory
from cadet_portal.services import scoring_ledger
from cadet_portal.services.cache import CacheKeys
from cadet_portal.services.scoring_ledger import (
    apply_delta, award_points, get_score_history, get_daily_change, get_all_daily_changes,
    get_average_total_score, get_category_averages, get_leaderboard, get_score_analytics
)


async def scores_of(db, cadet_id):
    result = await db.execute(
        select(Scores).where(Scores.cadet_id == cadet_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def cadet_row(db, cadet_id):
    result = await db.execute(
        select(Cadet).where(Cadet.id == cadet_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def history_of(db, cadet_id):
    result = await db.execute(
        select(ScoreHistory).where(ScoreHistory.cadet_id == cadet_id).order_by(ScoreHistory.id)
    )
    return result.scalars().all()


# ==========================================
# apply_delta
# ==========================================

async def test_positive_delta_creates_scores_row(db, cadet_c):
    result = await apply_delta(db, cadet_c.id, ScoreCategory.STUDY, 8, "Task completed: Essay", awarded_by=None)

    assert result.study_score == 8
    assert result.total_score == 8
    assert result.rank == 1

    scores = await scores_of(db, cadet_c.id)
    assert (scores.study_score, scores.discipline_score, scores.events_score) == (8, 0, 0)

    history = await history_of(db, cadet_c.id)
    assert len(history) == 1
    assert history[0].points == 8
    assert history[0].category == ScoreCategory.STUDY
    assert history[0].id == result.history_id


async def test_category_given_as_string(db, cadet_c):
    result = await apply_delta(db, cadet_c.id, "events", 4, "Parade", awarded_by=None)

    assert result.category == ScoreCategory.EVENTS
    assert result.events_score == 4


async def test_negative_delta_clamps_at_zero_but_history_keeps_full_value(db, cadet_c):
    await apply_delta(db, cadet_c.id, ScoreCategory.STUDY, 3, "Quiz", awarded_by=None)
    result = await apply_delta(db, cadet_c.id, ScoreCategory.STUDY, -10, "Penalty", awarded_by=None)

    assert result.study_score == 0
    assert result.total_score == 0

    history = await history_of(db, cadet_c.id)
    assert [h.points for h in history] == [3, -10]


async def test_total_is_sum_of_categories(db, cadet_c):
    await apply_delta(db, cadet_c.id, ScoreCategory.STUDY, 5, "a", awarded_by=None)
    await apply_delta(db, cadet_c.id, ScoreCategory.DISCIPLINE, 7, "b", awarded_by=None)
    result = await apply_delta(db, cadet_c.id, ScoreCategory.EVENTS, 2, "c", awarded_by=None)

    assert result.total_score == 14
    cadet = await cadet_row(db, cadet_c.id)
    assert cadet.total_score == 14


async def test_ranks_are_competition_ranks(db, cadet_factory):
    alpha = await cadet_factory("Alpha")
    bravo = await cadet_factory("Bravo")
    charlie = await cadet_factory("Charlie")

    await apply_delta(db, alpha.id, ScoreCategory.STUDY, 10, "a", awarded_by=None)
    await apply_delta(db, bravo.id, ScoreCategory.STUDY, 10, "b", awarded_by=None)
    await apply_delta(db, charlie.id, ScoreCategory.STUDY, 5, "c", awarded_by=None)

    ranks = {c.id: (await cadet_row(db, c.id)).rank for c in (alpha, bravo, charlie)}
    assert ranks == {alpha.id: 1, bravo.id: 1, charlie.id: 3}


async def test_validation_happens_before_store_access(db, cadet_c):
    with pytest.raises(BadRequestError):
        await apply_delta(db, cadet_c.id, "leadership", 5, "x", awarded_by=None)
    with pytest.raises(BadRequestError):
        await apply_delta(db, cadet_c.id, ScoreCategory.STUDY, 5, "   ", awarded_by=None)

    count = await db.execute(select(func.count(ScoreHistory.id)))
    assert count.scalar_one() == 0


async def test_unknown_cadet_is_not_found(db):
    with pytest.raises(NotFoundError):
        await apply_delta(db, 9999, ScoreCategory.STUDY, 5, "x", awarded_by=None)


async def test_history_survives_aggregate_failure(db, cadet_c, monkeypatch):
    cadet_id = cadet_c.id

    async def broken_aggregate(*args, **kwargs):
        raise OperationalError("UPDATE scores", {}, Exception("database is locked"))

    monkeypatch.setattr(scoring_ledger, "_update_aggregate", broken_aggregate)

    with pytest.raises(StoreUnavailableError) as exc:
        await apply_delta(db, cadet_id, ScoreCategory.STUDY, 6, "Quiz", awarded_by=None)

    assert exc.value.status_code == 503
    history = await history_of(db, cadet_id)
    assert [h.points for h in history] == [6]
    assert await scores_of(db, cadet_id) is None


async def test_ledger_mutation_evicts_score_caches(db, cache, cadet_c):
    cache.set(CacheKeys.SCORES, ["stale"], 300)
    cache.set(CacheKeys.ANALYTICS, "stale", 300)
    cache.set(CacheKeys.TASKS, ["untouched"], 300)

    await apply_delta(db, cadet_c.id, ScoreCategory.STUDY, 1, "x", awarded_by=None, cache=cache)

    assert cache.get(CacheKeys.SCORES) is None
    assert cache.get(CacheKeys.ANALYTICS) is None
    assert cache.get(CacheKeys.TASKS) == ["untouched"]


# ==========================================
# award_points
# ==========================================

async def test_award_records_awarding_user(db, oracle, study_admin, cadet_c):
    result = await award_points(db, oracle, study_admin, cadet_c.id, "study", 4, "Top of class")

    assert result.study_score == 4
    history = await history_of(db, cadet_c.id)
    assert history[0].awarded_by == study_admin.user_id


async def test_award_deduction(db, oracle, super_admin, cadet_c):
    await award_points(db, oracle, super_admin, cadet_c.id, ScoreCategory.DISCIPLINE, 5, "Good conduct")
    result = await award_points(db, oracle, super_admin, cadet_c.id, ScoreCategory.DISCIPLINE, -2, "Late")

    assert result.discipline_score == 3


async def test_award_outside_granted_category_is_forbidden(db, oracle, study_admin, cadet_c):
    with pytest.raises(ForbiddenError):
        await award_points(db, oracle, study_admin, cadet_c.id, ScoreCategory.EVENTS, 4, "Parade")

    assert await history_of(db, cadet_c.id) == []


async def test_cadet_cannot_award_points(db, oracle, principal_c, cadet_c):
    with pytest.raises(ForbiddenError):
        await award_points(db, oracle, principal_c, cadet_c.id, ScoreCategory.STUDY, 100, "Self award")


async def test_zero_award_rejected(db, oracle, super_admin, cadet_c):
    with pytest.raises(BadRequestError):
        await award_points(db, oracle, super_admin, cadet_c.id, ScoreCategory.STUDY, 0, "Nothing")


# ==========================================
# Reads
# ==========================================

async def test_score_history_newest_first(db, cadet_c):
    for points in (1, 2, 3):
        await apply_delta(db, cadet_c.id, ScoreCategory.STUDY, points, f"entry {points}", awarded_by=None)

    history = await get_score_history(db, cadet_c.id, limit=2)
    assert [h.points for h in history] == [3, 2]


async def test_daily_change_window(db, cadet_c, cadet_d):
    await apply_delta(db, cadet_c.id, ScoreCategory.STUDY, 5, "a", awarded_by=None)
    await apply_delta(db, cadet_c.id, ScoreCategory.EVENTS, -2, "b", awarded_by=None)
    await apply_delta(db, cadet_d.id, ScoreCategory.EVENTS, 4, "c", awarded_by=None)

    assert await get_daily_change(db, cadet_c.id) == 3
    assert await get_all_daily_changes(db) == {cadet_c.id: 3, cadet_d.id: 4}

    later = datetime.utcnow() + timedelta(days=2)
    assert await get_daily_change(db, cadet_c.id, now=later) == 0
    assert await get_all_daily_changes(db, now=later) == {}


async def test_averages_are_rounded(db, cadet_c, cadet_d):
    await apply_delta(db, cadet_c.id, ScoreCategory.STUDY, 5, "a", awarded_by=None)
    await apply_delta(db, cadet_d.id, ScoreCategory.STUDY, 2, "b", awarded_by=None)

    # (5 + 2) / 2 = 3.5
    assert await get_average_total_score(db) == 4
    averages = await get_category_averages(db)
    assert averages.study == 4
    assert averages.discipline == 0


async def test_averages_empty_store(db):
    assert await get_average_total_score(db) == 0
    averages = await get_category_averages(db)
    assert (averages.study, averages.discipline, averages.events) == (0, 0, 0)


async def test_leaderboard_served_from_cache_until_ledger_mutation(db, cache, cadet_c, cadet_d):
    await apply_delta(db, cadet_c.id, ScoreCategory.STUDY, 5, "a", awarded_by=None, cache=cache)

    board = await get_leaderboard(db, cache)
    assert [e.id for e in board] == [cadet_c.id, cadet_d.id]
    assert cache.get(CacheKeys.SCORES) is not None

    await apply_delta(db, cadet_d.id, ScoreCategory.STUDY, 9, "b", awarded_by=None, cache=cache)

    board = await get_leaderboard(db, cache)
    assert [e.id for e in board] == [cadet_d.id, cadet_c.id]
    assert [e.rank for e in board] == [1, 2]


async def test_leaderboard_limit(db, cache, cadet_c, cadet_d):
    board = await get_leaderboard(db, cache, limit=1)

    assert len(board) == 1


async def test_analytics_cached(db, cache, cadet_c):
    await apply_delta(db, cadet_c.id, ScoreCategory.STUDY, 6, "a", awarded_by=None, cache=cache)

    analytics = await get_score_analytics(db, cache)
    assert analytics.average_total_score == 6
    assert analytics.daily_changes == {cadet_c.id: 6}
    assert cache.get(CacheKeys.ANALYTICS) is analytics
