from __future__ import annotations

import os

# Settings are read at import time; keep them deterministic for tests.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SLA_RECONCILE_INTERVAL", "0")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from helpdesk_sla.infrastructure.database import Base
from helpdesk_sla.sla.domain import BusinessHoursConfig, SLAConfig
import helpdesk_sla.sla.infrastructure.models  # noqa: F401

from fakes import StaticConfigProvider


@pytest.fixture
def sla_config() -> SLAConfig:
    # Pin business hours to UTC so results do not depend on the host zone.
    return SLAConfig(business_hours=BusinessHoursConfig(timezone="UTC"))


@pytest.fixture
def config_provider(sla_config: SLAConfig) -> StaticConfigProvider:
    return StaticConfigProvider(sla_config)


@pytest.fixture
async def session_maker():
    # One shared in-memory connection so every session sees the same tables.
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session
