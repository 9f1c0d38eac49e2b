"""
cadet_portal/orm/cadet.py
Cadets and the score ledger (running scores + append-only history)
"""
from datetime import date
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, Date, Text, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship

from cadet_portal.orm.base import BaseModel


class ScoreCategory(str, PyEnum):
    """The three scoring buckets"""
    STUDY = "study"
    DISCIPLINE = "discipline"
    EVENTS = "events"


# Scores column holding each category's running total
CATEGORY_COLUMNS = {
    ScoreCategory.STUDY: "study_score",
    ScoreCategory.DISCIPLINE: "discipline_score",
    ScoreCategory.EVENTS: "events_score",
}


class Cadet(BaseModel):
    """
    Cadet record.

    total_score and rank are owned by the scoring ledger and are never
    edited anywhere else.
    """
    __tablename__ = "cadets"

    auth_user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
        index=True
    )
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=True)
    platoon = Column(String(20), nullable=True)
    squad = Column(Integer, nullable=True)
    avatar_url = Column(String(500), nullable=True)
    join_date = Column(Date, default=date.today, nullable=False)

    total_score = Column(Integer, default=0, nullable=False, index=True)
    rank = Column(Integer, default=1, nullable=False)

    user = relationship("User", back_populates="cadet")
    scores = relationship("Scores", back_populates="cadet", uselist=False, cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Cadet(id={self.id}, name={self.name}, total={self.total_score}, rank={self.rank})>"


class Scores(BaseModel):
    """One row per cadet; every category is clamped at zero."""
    __tablename__ = "scores"

    cadet_id = Column(
        Integer,
        ForeignKey("cadets.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True
    )
    study_score = Column(Integer, default=0, nullable=False)
    discipline_score = Column(Integer, default=0, nullable=False)
    events_score = Column(Integer, default=0, nullable=False)

    cadet = relationship("Cadet", back_populates="scores")

    def total(self) -> int:
        return (self.study_score or 0) + (self.discipline_score or 0) + (self.events_score or 0)


class ScoreHistory(BaseModel):
    """
    Append-only audit trail of every point movement.

    points is signed: rewards are positive, penalties negative.
    awarded_by is NULL for system-applied penalties.
    """
    __tablename__ = "score_history"

    cadet_id = Column(
        Integer,
        ForeignKey("cadets.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    category = Column(SQLEnum(ScoreCategory), nullable=False)
    points = Column(Integer, nullable=False)
    description = Column(Text, nullable=False)
    awarded_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    def __repr__(self):
        return f"<ScoreHistory(cadet={self.cadet_id}, {self.category}: {self.points:+d})>"
