"""
cadet_portal/routes/scores.py
Manual awards, leaderboard, score history and analytics
"""
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from cadet_portal.config.settings import settings
from cadet_portal.database import get_db
from cadet_portal.rbac import get_current_principal, get_permission_oracle, get_cache
from cadet_portal.schemas.scores import ScoreAwardRequest, LedgerResult, LeaderboardResponse, ScoreAnalytics
from cadet_portal.services import scoring_ledger
from cadet_portal.services.cache import TTLCache
from cadet_portal.services.permission_oracle import PermissionOracle, Principal

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Scores"])


@router.post("/scores/award", response_model=LedgerResult)
async def award_points(
    data: ScoreAwardRequest,
    principal: Principal = Depends(get_current_principal),
    oracle: PermissionOracle = Depends(get_permission_oracle),
    db: AsyncSession = Depends(get_db),
    cache: TTLCache = Depends(get_cache)
):
    """Add (or, with negative points, deduct) points in one category."""
    return await scoring_ledger.award_points(
        db, oracle, principal,
        cadet_id=data.cadet_id,
        category=data.category,
        points=data.points,
        description=data.description,
        cache=cache
    )


@router.get("/scores/leaderboard", response_model=LeaderboardResponse)
async def leaderboard(
    limit: int = Query(scoring_ledger.LEADERBOARD_LIMIT, ge=1, le=scoring_ledger.LEADERBOARD_LIMIT),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    cache: TTLCache = Depends(get_cache)
):
    cadets = await scoring_ledger.get_leaderboard(db, cache, ttl=settings.CACHE_TTL_SCORES, limit=limit)
    return LeaderboardResponse(cadets=cadets)


@router.get("/scores/analytics", response_model=ScoreAnalytics)
async def analytics(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    cache: TTLCache = Depends(get_cache)
):
    return await scoring_ledger.get_score_analytics(db, cache, ttl=settings.CACHE_TTL_SCORES)


@router.get("/cadets/{cadet_id}/score-history")
async def score_history(
    cadet_id: int,
    limit: int = Query(50, ge=1, le=500),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    history = await scoring_ledger.get_score_history(db, cadet_id, limit=limit)
    daily_change = await scoring_ledger.get_daily_change(db, cadet_id)
    return {
        "success": True,
        "cadet_id": cadet_id,
        "daily_change": daily_change,
        "history": [h.model_dump(mode="json") for h in history]
    }
