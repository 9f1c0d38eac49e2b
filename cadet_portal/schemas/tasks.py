"""
cadet_portal/schemas/tasks.py
Pydantic schemas for the task catalog and the submission lifecycle
"""
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from cadet_portal.orm.cadet import ScoreCategory
from cadet_portal.orm.task import TaskDifficulty, TaskStatus, SubmissionStatus
from cadet_portal.schemas.scores import LedgerResult


# ================= CATALOG =================

class TaskCreate(BaseModel):
    """Schema for creating a task"""
    title: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    category: ScoreCategory
    difficulty: TaskDifficulty = TaskDifficulty.MEDIUM
    points: int = Field(default=0, ge=0)
    deadline: date
    max_participants: int = Field(default=0, ge=0, description="0 = unlimited")
    abandon_penalty: int = Field(default=0, ge=0)
    status: TaskStatus = TaskStatus.ACTIVE
    is_active: bool = True

    class Config:
        json_schema_extra = {
            "example": {
                "title": "Write an essay",
                "description": "500 words on the history of the corps",
                "category": "study",
                "difficulty": "medium",
                "points": 10,
                "deadline": "2026-11-01",
                "max_participants": 1,
                "abandon_penalty": 5
            }
        }


class TaskUpdate(BaseModel):
    """Schema for updating a task; omitted fields are left unchanged"""
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[ScoreCategory] = None
    difficulty: Optional[TaskDifficulty] = None
    points: Optional[int] = Field(default=None, ge=0)
    deadline: Optional[date] = None
    max_participants: Optional[int] = Field(default=None, ge=0)
    abandon_penalty: Optional[int] = Field(default=None, ge=0)
    status: Optional[TaskStatus] = None
    is_active: Optional[bool] = None


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str
    category: ScoreCategory
    difficulty: TaskDifficulty
    points: int
    deadline: date
    max_participants: int
    current_participants: int
    abandon_penalty: int
    status: TaskStatus
    is_active: bool
    created_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime


# ================= SUBMISSIONS =================

class SubmitRequest(BaseModel):
    submission_text: str = Field(..., min_length=1)
    cadet_id: Optional[int] = Field(default=None, gt=0)


class ReviewRequest(BaseModel):
    decision: SubmissionStatus = Field(..., description="completed or rejected")
    feedback: str = ""
    points_awarded: int = Field(default=0, ge=0)


class CadetActionRequest(BaseModel):
    """Body for claim and abandon. Task managers may act for a cadet; cadets omit cadet_id"""
    cadet_id: Optional[int] = Field(default=None, gt=0)


class SubmissionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    task_id: int
    cadet_id: int
    status: SubmissionStatus
    submission_text: str
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[int] = None
    feedback: Optional[str] = None
    points_awarded: int
    created_at: datetime
    updated_at: datetime


class CadetSummary(BaseModel):
    """The cadet fields shown next to a submission in admin listings"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    avatar_url: Optional[str] = None
    platoon: Optional[str] = None
    squad: Optional[int] = None
    email: Optional[str] = None


class SubmissionWithCadet(SubmissionResponse):
    cadet: Optional[CadetSummary] = None


class SubmissionWithTask(SubmissionWithCadet):
    task: Optional[TaskResponse] = None


# ================= OPERATION RESULTS =================

class ClaimResult(BaseModel):
    success: bool = True
    message: str
    submission: SubmissionResponse
    current_participants: int


class SubmitResult(BaseModel):
    success: bool = True
    message: str
    submission: SubmissionResponse


class AbandonResult(BaseModel):
    success: bool = True
    message: str
    penalty_applied: int = 0
    penalty_recorded: bool = True
    ledger: Optional[LedgerResult] = None
    current_participants: int


class ReviewResult(BaseModel):
    """
    score_applied is False when the ledger update failed after the review was
    recorded; score_error then carries the reason for manual reconciliation.
    """
    success: bool = True
    message: str
    submission: SubmissionResponse
    score_applied: bool = False
    score_error: Optional[str] = None
    ledger: Optional[LedgerResult] = None


class TaskListResponse(BaseModel):
    success: bool = True
    tasks: List[TaskResponse]
