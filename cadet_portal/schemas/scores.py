"""
cadet_portal/schemas/scores.py
Pydantic schemas for the scoring ledger endpoints
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from cadet_portal.orm.cadet import ScoreCategory


class ScoreAwardRequest(BaseModel):
    """Manual award or deduction by an admin"""
    cadet_id: int = Field(..., gt=0)
    category: ScoreCategory
    points: int = Field(..., description="Signed delta; negative values deduct")
    description: str = Field(..., min_length=1, max_length=1000)

    class Config:
        json_schema_extra = {
            "example": {
                "cadet_id": 12,
                "category": "discipline",
                "points": -3,
                "description": "Late for formation"
            }
        }


class LedgerResult(BaseModel):
    """Aggregate state after a ledger mutation"""
    cadet_id: int
    category: ScoreCategory
    delta: int
    history_id: int
    study_score: int
    discipline_score: int
    events_score: int
    total_score: int
    rank: int


class ScoreHistoryEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    cadet_id: int
    category: ScoreCategory
    points: int
    description: str
    awarded_by: Optional[int] = None
    created_at: datetime


class LeaderboardEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    platoon: Optional[str] = None
    squad: Optional[int] = None
    avatar_url: Optional[str] = None
    total_score: int
    rank: int


class CategoryAverages(BaseModel):
    study: int = 0
    discipline: int = 0
    events: int = 0


class ScoreAnalytics(BaseModel):
    average_total_score: int
    category_averages: CategoryAverages
    daily_changes: Dict[int, int] = Field(default_factory=dict)


class LeaderboardResponse(BaseModel):
    success: bool = True
    cadets: List[LeaderboardEntry]
