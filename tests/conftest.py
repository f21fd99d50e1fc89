import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.database import create_database_engine, drop_db, init_db

# Test database URL (SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"


@pytest_asyncio.fixture
async def test_engine():
    """SQLite engine with the save-flow tables created."""
    engine = create_database_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
    await init_db(engine)

    yield engine

    await drop_db(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def test_db(test_engine):
    """Create test database and tables."""
    async_session = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session
