"""
cadet_portal/orm/base.py
Declarative base and the columns every portal table shares

Users, cadets, tasks, submissions, scores and score history all carry an
integer id plus created_at/updated_at in naive UTC. Submission listings
order on created_at with id as the tie-break, so both are populated on
insert. The permission and role tables in orm/user.py are insert-only and
sit on Base directly with their own id and grant timestamp.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class BaseModel(Base):
    """Abstract parent of the portal's record tables."""
    __abstract__ = True

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Conditional UPDATEs in the services also set this explicitly
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
