"""
Condo Compliance - Shared Test Fixtures
Provides reusable fixtures for actors, database and seeded records.
"""

import asyncio
import json
import os
import uuid
from datetime import datetime
from typing import AsyncGenerator, Optional

import httpx
import pytest
from httpx import AsyncClient, ASGITransport

# Configure test environment BEFORE importing app
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_compliance.db"
os.environ["DISPATCH_WEBHOOK_URL"] = ""
os.environ["LOG_LEVEL"] = "WARNING"

from app.main import app
from app.core.config import get_settings
from app.core.event_bus import event_bus
from app.core.user_context import ActorContext, ActorRole
from app.core.utc import utc_now


# =============================================================================
# Core Fixtures
# =============================================================================

@pytest.fixture
def anyio_backend():
    """Use asyncio for async tests."""
    return "asyncio"


@pytest.fixture(scope="function", autouse=True)
async def setup_test_database():
    """Create database tables before each test and clean up after."""
    from app.core.database import get_engine, Base
    from app.models import models  # noqa: F401  Import all models to register them

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(autouse=True)
async def clear_event_history():
    event_bus.clear_history()
    yield
    await event_bus.drain()
    event_bus.clear_history()


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Create async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def settings():
    """Get test settings."""
    return get_settings()


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
async def db_session():
    """Create a test database session."""
    from app.core.database import get_db_session
    async with get_db_session() as session:
        yield session


@pytest.fixture(autouse=True)
async def cleanup_test_db():
    """Clean up test database after tests."""
    yield
    for db_file in ["test_compliance.db", "test_compliance.db-shm", "test_compliance.db-wal"]:
        if os.path.exists(db_file):
            try:
                os.remove(db_file)
            except PermissionError:
                pass


# =============================================================================
# Actors
# =============================================================================

CONDO_ID = "condo-1"
RESIDENT_ID = "resident-1"


@pytest.fixture
def condo_id() -> str:
    return CONDO_ID


@pytest.fixture
def manager() -> ActorContext:
    return ActorContext(actor_id="manager-1", role=ActorRole.MANAGER)


@pytest.fixture
def resident() -> ActorContext:
    return ActorContext(actor_id=RESIDENT_ID, role=ActorRole.RESIDENT)


@pytest.fixture
def system_actor() -> ActorContext:
    return ActorContext(actor_id="dispatcher", role=ActorRole.SYSTEM)


def headers_for(actor: ActorContext) -> dict[str, str]:
    """Identity gateway headers for an actor."""
    return {"X-Actor-Id": actor.actor_id, "X-Actor-Role": actor.role.value}


# =============================================================================
# Seed Data
# =============================================================================

@pytest.fixture
def make_subscription(db_session):
    """Insert (or replace) a condominium's subscription period."""
    from app.models.models import SubscriptionPeriod
    from app.services.compliance.quota_guard import get_subscription

    async def _make(
        condominium_id: str = CONDO_ID,
        notifications_limit: int = 10,
        warnings_limit: int = 10,
        fines_limit: int = 10,
        active: bool = True,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
        plan: str = "professional",
    ) -> SubscriptionPeriod:
        subscription = await get_subscription(db_session, condominium_id)
        if subscription is None:
            subscription = SubscriptionPeriod(id=str(uuid.uuid4()), condominium_id=condominium_id)
            db_session.add(subscription)
        subscription.plan = plan
        subscription.active = active
        subscription.period_start = period_start
        subscription.period_end = period_end
        subscription.notifications_limit = notifications_limit
        subscription.warnings_limit = warnings_limit
        subscription.fines_limit = fines_limit
        await db_session.commit()
        return subscription

    return _make


@pytest.fixture
def make_case(db_session):
    """Insert a case row directly, bypassing the quota gate."""
    from app.models.models import Case

    async def _make(
        condominium_id: str = CONDO_ID,
        case_type: str = "warning",
        status: str = "registered",
        resident_id: Optional[str] = RESIDENT_ID,
        created_at: Optional[datetime] = None,
        title: str = "Noise after 22h",
    ) -> Case:
        now = created_at or utc_now()
        case = Case(
            id=str(uuid.uuid4()),
            condominium_id=condominium_id,
            apartment_id="apt-101",
            resident_id=resident_id,
            registered_by="manager-1",
            type=case_type,
            status=status,
            title=title,
            description="Loud music reported by neighbours",
            occurred_at=now,
            created_at=now,
            updated_at=now,
        )
        db_session.add(case)
        await db_session.commit()
        return case

    return _make


@pytest.fixture
def case_payload():
    """Valid POST /api/cases body."""
    return {
        "condominium_id": CONDO_ID,
        "type": "warning",
        "title": "Noise after 22h",
        "description": "Loud music reported by neighbours in block A",
        "occurred_at": "2026-10-01T23:15:00Z",
        "apartment_id": "apt-101",
        "resident_id": RESIDENT_ID,
        "convention_article": "Art. 12",
    }


# =============================================================================
# Outbound webhook
# =============================================================================

def slow_transport(calls: list, delay: float) -> httpx.MockTransport:
    """Webhook that records each posted body after `delay` seconds."""
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(delay)
        calls.append(json.loads(request.content))
        return httpx.Response(202)
    return httpx.MockTransport(handler)
