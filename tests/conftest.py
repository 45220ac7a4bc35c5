"""
Incentive Engine - Test Configuration

Pytest fixtures and configuration.
"""

from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.database import Base, build_engine, build_session_factory, init_db
from app.schemas.incentive import DateRange
from app.services.store import InMemoryIncentiveStore, SQLAlchemyIncentiveStore
from tests.fixtures.incentive_factories import EngineHarness, make_harness, make_plan


@pytest.fixture
def plan():
    """Active two-level plan with the standard slab table."""
    return make_plan()


@pytest.fixture
def june_2024() -> DateRange:
    return DateRange.for_month(2024, 6)


@pytest.fixture
def employee_id():
    return uuid4()


@pytest_asyncio.fixture
async def harness(plan) -> EngineHarness:
    """In-memory engine with the standard plan already saved."""
    h = make_harness()
    await h.store.save_plan(plan)
    h.plan = plan
    return h


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine with every table created."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'incentive_test.db'}")
    await init_db(engine)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(db_engine)


@pytest.fixture
def sql_store(session_factory) -> SQLAlchemyIncentiveStore:
    return SQLAlchemyIncentiveStore(session_factory)


@pytest.fixture
def memory_store() -> InMemoryIncentiveStore:
    return InMemoryIncentiveStore()
