"""
Shared fixtures: in-memory SQLite database, authenticated API client and seed rows.
"""
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from onyx_api.core.database import Base, get_db
from onyx_api.core.security import AuthenticatedUser, get_current_user
from onyx_api.main import create_app
from onyx_api.models import AppUser, Folder, Task

TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture
async def engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(engine):
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def current_user():
    """Identity the API sees; tests may change ``issuer`` to act as someone else."""
    return AuthenticatedUser(issuer="user-1", email="test@example.com")


@pytest.fixture
async def client(db_session: AsyncSession, current_user: AuthenticatedUser):
    app = create_app()

    async def override_get_db():
        try:
            yield db_session
        except Exception:
            await db_session.rollback()
            raise

    async def override_get_current_user():
        return current_user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_user(db_session: AsyncSession):
    """Factory creating an app user with the given tier."""

    async def _make_user(user_id: str, subscription: str = "free") -> AppUser:
        user = AppUser(user_id=user_id, email=f"{user_id}@example.com", subscription=subscription)
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
async def test_user(make_user):
    """Free-tier user matching the authenticated identity."""
    return await make_user("user-1")


@pytest.fixture
async def other_user(make_user):
    return await make_user("user-2")


@pytest.fixture
async def test_folder(db_session: AsyncSession, test_user: AppUser):
    folder = Folder(user_id=test_user.user_id, name="Work")
    db_session.add(folder)
    await db_session.commit()
    await db_session.refresh(folder)
    return folder


@pytest.fixture
async def test_task(db_session: AsyncSession, test_user: AppUser, test_folder: Folder):
    task = Task(
        user_id=test_user.user_id,
        folder_id=test_folder.id,
        title="Complete quarterly report",
        description="Finish Q4 financial report and submit to management",
    )
    db_session.add(task)
    await db_session.commit()
    await db_session.refresh(task)
    return task
