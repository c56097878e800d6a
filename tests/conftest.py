"""
Test configuration: environment first, then a fresh in-memory database per test.
"""
import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ["DB_TYPE"] = "sqlite"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shop.core.db import Base, configure_sqlite


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    configure_sqlite(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    session_factory = sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        yield session
