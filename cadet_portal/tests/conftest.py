"""
cadet_portal/tests/conftest.py
Shared fixtures: in-memory store, seeded users/cadets/permissions, fake clock
"""
from datetime import date, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from cadet_portal.orm import (
    Base, User, UserRole, AdminPermission, AdminRole, RolePermission, UserPermission,
    UserRoleAssignment, Cadet, Task, ScoreCategory, TaskStatus
)
from cadet_portal.services.cache import TTLCache
from cadet_portal.services.permission_oracle import PermissionOracle, Principal, Capability


class FakeClock:
    """Manually advanced monotonic clock for cache expiry tests"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Store
# =============================================================================

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> TTLCache:
    return TTLCache(clock=clock)


@pytest.fixture
def oracle(db) -> PermissionOracle:
    return PermissionOracle(db)


# =============================================================================
# Seed data
# =============================================================================

async def make_cadet(db: AsyncSession, name: str, email: str) -> Cadet:
    """Cadet record with a linked cadet-role user account"""
    user = User(email=email, name=name, role=UserRole.cadet)
    db.add(user)
    await db.flush()
    cadet = Cadet(auth_user_id=user.id, name=name, email=email, platoon="1", squad=1)
    db.add(cadet)
    await db.commit()
    return cadet


async def make_task(db: AsyncSession, **overrides) -> Task:
    values = dict(
        title="Write an essay",
        description="500 words on the history of the corps",
        category=ScoreCategory.STUDY,
        points=10,
        deadline=date.today() + timedelta(days=7),
        max_participants=1,
        current_participants=0,
        abandon_penalty=5,
        status=TaskStatus.ACTIVE,
        is_active=True,
    )
    values.update(overrides)
    task = Task(**values)
    db.add(task)
    await db.commit()
    return task


@pytest_asyncio.fixture
async def permissions(db) -> dict:
    """Every capability the engine knows, keyed by name"""
    names = [
        Capability.MANAGE_TASKS,
        Capability.MANAGE_SCORES,
        Capability.MANAGE_SCORES_STUDY,
        Capability.MANAGE_SCORES_DISCIPLINE,
        Capability.MANAGE_SCORES_EVENTS,
        Capability.AWARD_ACHIEVEMENTS,
    ]
    rows = {name: AdminPermission(name=name, display_name=name.replace("_", " ").title()) for name in names}
    db.add_all(rows.values())
    await db.commit()
    return rows


@pytest_asyncio.fixture
async def task_admin(db, permissions) -> Principal:
    """Admin with a direct manage_tasks grant"""
    user = User(email="tasks@portal.test", name="Task Admin", role=UserRole.admin)
    db.add(user)
    await db.flush()
    db.add(UserPermission(user_id=user.id, permission_id=permissions[Capability.MANAGE_TASKS].id))
    await db.commit()
    return Principal(user_id=user.id, role=UserRole.admin)


@pytest_asyncio.fixture
async def study_admin(db, permissions) -> Principal:
    """Admin holding manage_scores_study through a role"""
    user = User(email="study@portal.test", name="Study Officer", role=UserRole.admin)
    role = AdminRole(name="study_officer", display_name="Study Officer")
    db.add_all([user, role])
    await db.flush()
    db.add(RolePermission(role_id=role.id, permission_id=permissions[Capability.MANAGE_SCORES_STUDY].id))
    db.add(UserRoleAssignment(user_id=user.id, role_id=role.id))
    await db.commit()
    return Principal(user_id=user.id, role=UserRole.admin)


@pytest_asyncio.fixture
async def plain_admin(db, permissions) -> Principal:
    """Admin account without any grant"""
    user = User(email="nobody@portal.test", name="Plain Admin", role=UserRole.admin)
    db.add(user)
    await db.commit()
    return Principal(user_id=user.id, role=UserRole.admin)


@pytest_asyncio.fixture
async def super_admin(db) -> Principal:
    user = User(email="root@portal.test", name="Root", role=UserRole.super_admin)
    db.add(user)
    await db.commit()
    return Principal(user_id=user.id, role=UserRole.super_admin)


@pytest_asyncio.fixture
async def cadet_c(db) -> Cadet:
    return await make_cadet(db, "Cadet C", "c@portal.test")


@pytest_asyncio.fixture
async def cadet_d(db) -> Cadet:
    return await make_cadet(db, "Cadet D", "d@portal.test")


@pytest.fixture
def principal_c(cadet_c) -> Principal:
    return Principal(user_id=cadet_c.auth_user_id, role=UserRole.cadet, cadet_id=cadet_c.id)


@pytest.fixture
def principal_d(cadet_d) -> Principal:
    return Principal(user_id=cadet_d.auth_user_id, role=UserRole.cadet, cadet_id=cadet_d.id)


@pytest_asyncio.fixture
async def essay_task(db) -> Task:
    """study / 10 points / abandon penalty 5 / one slot"""
    return await make_task(db)


@pytest.fixture
def task_factory(db):
    async def _make(**overrides) -> Task:
        return await make_task(db, **overrides)
    return _make


@pytest.fixture
def cadet_factory(db):
    async def _make(name: str) -> Cadet:
        slug = name.lower().replace(" ", ".")
        return await make_cadet(db, name, f"{slug}@portal.test")
    return _make
