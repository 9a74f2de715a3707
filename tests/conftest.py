"""Shared fixtures for kidsafe tests.

Uses SQLite (aiosqlite) by default, no PostgreSQL required.
Set TEST_DATABASE_URL to override (e.g. for CI with real PostgreSQL).

Carryover passes commit, so rows outlive a single test. Tests therefore
create their own family/children and work on dates no other test uses.
"""

import itertools
import os
import uuid
from datetime import date, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite://")

# Ensure settings can be loaded without .env
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-unit-tests")
os.environ.setdefault("OPERATOR_API_KEY", "test-operator-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from kidsafe.database import Base  # noqa: E402

OPERATOR_HEADERS = {"X-Operator-Key": os.environ["OPERATOR_API_KEY"]}

# ---------------------------------------------------------------------------
# Engine: SQLite in-memory with StaticPool (shared across connections)
# ---------------------------------------------------------------------------

_engine_kwargs = {}
if TEST_DATABASE_URL.startswith("sqlite"):
    _engine_kwargs = {
        "connect_args": {"check_same_thread": False},
        "poolclass": StaticPool,
    }

_engine = create_async_engine(TEST_DATABASE_URL, echo=False, **_engine_kwargs)
_TestSession = async_sessionmaker(
    bind=_engine, class_=AsyncSession, expire_on_commit=False,
)


# ---------------------------------------------------------------------------
# Unique calendar days
# ---------------------------------------------------------------------------

_day_counter = itertools.count()


def fresh_day() -> date:
    """Return a day far away from every other test's days."""
    return date(2040, 1, 1) + timedelta(days=30 * next(_day_counter))


# ---------------------------------------------------------------------------
# Session-scoped: create / drop tables
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(scope="session", autouse=True)
async def _setup_tables():
    import kidsafe.models  # noqa: F401  populate Base.metadata

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await _engine.dispose()


# ---------------------------------------------------------------------------
# Reset rate-limiter counters before every test
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _reset_rate_limits():
    """Clear in-memory rate-limit counters so tests never block each other."""
    from kidsafe.core.rate_limit import limiter

    storage = getattr(limiter, "_storage", None)
    if storage is not None and hasattr(storage, "reset"):
        storage.reset()


# ---------------------------------------------------------------------------
# Per-test session with rollback
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def db_session():
    async with _TestSession() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# HTTP test client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def client(db_session: AsyncSession):
    from kidsafe.database import get_db
    from kidsafe.main import app

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Convenience: registered guardian with tokens + family_id
# ---------------------------------------------------------------------------

async def register_parent(client: AsyncClient, db_session: AsyncSession) -> dict:
    """Register a guardian through the API and return a context dict.

    Keys: headers, user_id, family_id, email, tokens
    """
    from kidsafe.core.security import decode_token
    from kidsafe.models.user import User

    suffix = uuid.uuid4().hex[:8]
    email = f"parent-{suffix}@example.com"
    resp = await client.post("/api/v1/auth/register", json={
        "email": email,
        "password": "testpassword123",
        "name": "Test Guardian",
        "family_name": f"Family {suffix}",
    })
    assert resp.status_code == 200, resp.text
    tokens = resp.json()
    headers = {"Authorization": f"Bearer {tokens['access_token']}"}

    payload = decode_token(tokens["access_token"])
    user_id = uuid.UUID(payload["sub"])

    result = await db_session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one()

    return {
        "headers": headers,
        "user_id": str(user.id),
        "family_id": str(user.family_id),
        "email": email,
        "tokens": tokens,
    }


@pytest_asyncio.fixture()
async def registered_parent(client: AsyncClient, db_session: AsyncSession):
    return await register_parent(client, db_session)


# ---------------------------------------------------------------------------
# Direct-to-database builders for service tests
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def family(db_session: AsyncSession):
    """A family with one guardian, without going through the API."""
    from kidsafe.models.family import Family
    from kidsafe.models.user import User

    fam = Family(name=f"Family {uuid.uuid4().hex[:8]}")
    db_session.add(fam)
    await db_session.flush()

    guardian = User(family_id=fam.id, name="Guardian", role="parent")
    db_session.add(guardian)
    await db_session.flush()
    return {"family": fam, "guardian": guardian}


async def create_child(db, family_id, name="Test Child"):
    from kidsafe.models.user import User

    child = User(family_id=family_id, name=name, role="child")
    db.add(child)
    await db.flush()
    return child


async def create_video(db, child_id, title=None):
    from kidsafe.models.approved_video import ApprovedVideo

    suffix = uuid.uuid4().hex[:11]
    video = ApprovedVideo(
        child_id=child_id,
        youtube_id=suffix,
        title=title or f"Video {suffix}",
        thumbnail=f"https://i.ytimg.com/vi/{suffix}/hqdefault.jpg",
        channel_name="Test Channel",
        duration="4:20",
        summary="A calm video about animals.",
    )
    db.add(video)
    await db.flush()
    return video


async def create_schedule(db, child_id, video_id, day, **kwargs):
    from kidsafe.models.scheduled_video import ScheduledVideo

    schedule = ScheduledVideo(
        child_id=child_id,
        approved_video_id=video_id,
        scheduled_date=day,
        original_date=kwargs.pop("original_date", day),
        **kwargs,
    )
    db.add(schedule)
    await db.flush()
    return schedule


async def fetch_schedules(db, child_id, video_id=None):
    """Reload a child's schedules from the database, oldest day first."""
    from kidsafe.models.scheduled_video import ScheduledVideo

    query = (
        select(ScheduledVideo)
        .where(ScheduledVideo.child_id == child_id)
        .order_by(ScheduledVideo.scheduled_date, ScheduledVideo.created_at)
        .execution_options(populate_existing=True)
    )
    if video_id is not None:
        query = query.where(ScheduledVideo.approved_video_id == video_id)
    return list((await db.execute(query)).scalars().all())
