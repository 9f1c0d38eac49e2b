"""
cadet_portal/orm/task.py
Task catalog and per-cadet task submissions
"""
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DateTime, Text, ForeignKey,
    UniqueConstraint, CheckConstraint, Enum as SQLEnum
)
from sqlalchemy.orm import relationship

from cadet_portal.orm.base import BaseModel
from cadet_portal.orm.cadet import ScoreCategory


class TaskDifficulty(str, PyEnum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class TaskStatus(str, PyEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class SubmissionStatus(str, PyEnum):
    """Submission lifecycle status"""
    TAKEN = "taken"            # Claimed by the cadet, work in progress
    SUBMITTED = "submitted"    # Work turned in, awaiting review
    COMPLETED = "completed"    # Accepted by a reviewer (terminal)
    REJECTED = "rejected"      # Rejected by a reviewer (terminal)
    ABANDONED = "abandoned"    # Given up; the row is deleted


class Task(BaseModel):
    """
    Task definition.

    current_participants is a cached count of open submissions and is only
    moved by the submission service's conditional updates.
    """
    __tablename__ = "tasks"
    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_task_points_non_negative"),
        CheckConstraint("max_participants >= 0", name="ck_task_max_participants_non_negative"),
        CheckConstraint("abandon_penalty >= 0", name="ck_task_abandon_penalty_non_negative"),
        CheckConstraint("current_participants >= 0", name="ck_task_current_participants_non_negative"),
    )

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(SQLEnum(ScoreCategory), nullable=False, index=True)
    difficulty = Column(SQLEnum(TaskDifficulty), nullable=False, default=TaskDifficulty.MEDIUM)
    points = Column(Integer, nullable=False, default=0)
    deadline = Column(Date, nullable=False)

    max_participants = Column(Integer, nullable=False, default=0)  # 0 = unlimited
    current_participants = Column(Integer, nullable=False, default=0)
    abandon_penalty = Column(Integer, nullable=False, default=0)

    status = Column(SQLEnum(TaskStatus), nullable=False, default=TaskStatus.ACTIVE)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    submissions = relationship(
        "TaskSubmission",
        back_populates="task",
        cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Task(id={self.id}, title={self.title!r}, {self.current_participants}/{self.max_participants})>"

    def is_open(self) -> bool:
        return self.status == TaskStatus.ACTIVE and bool(self.is_active)


class TaskSubmission(BaseModel):
    """
    A cadet's claim on a task and the work turned in for it.
    At most one row exists per (task, cadet).
    """
    __tablename__ = "task_submissions"
    __table_args__ = (
        UniqueConstraint("task_id", "cadet_id", name="uq_task_submission_task_cadet"),
        CheckConstraint("points_awarded >= 0", name="ck_submission_points_non_negative"),
    )

    task_id = Column(
        Integer,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    cadet_id = Column(
        Integer,
        ForeignKey("cadets.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    status = Column(SQLEnum(SubmissionStatus), nullable=False, default=SubmissionStatus.TAKEN, index=True)

    submission_text = Column(Text, nullable=False, default="")
    submitted_at = Column(DateTime, nullable=True)

    reviewed_at = Column(DateTime, nullable=True)
    reviewed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    feedback = Column(Text, nullable=True)
    points_awarded = Column(Integer, nullable=False, default=0)

    task = relationship("Task", back_populates="submissions")
    cadet = relationship("Cadet")

    def __repr__(self):
        return f"<TaskSubmission(id={self.id}, task={self.task_id}, cadet={self.cadet_id}, status={self.status})>"
