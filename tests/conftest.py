"""
conftest.py — Shared Test Fixtures for the RFQ race engine

Provides an in-memory SQLite database, a controllable race clock, a
FastAPI TestClient wired to both, and factory fixtures for suppliers
(Provider) and RFQs.

Business Rules:
- All tests run against an isolated in-memory DB
- Race timing never reads the wall clock: tests drive `clock` explicitly
- Rate limiting and startup migrations are off under TESTING

Called by: all test files via pytest autodiscovery
Depends on: rfq_race.models (Base), rfq_race.database (get_db), rfq_race.dependencies
"""

import os

os.environ["TESTING"] = "1"  # Must be set before importing rfq_race modules
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["NOTIFY_WEBHOOK_URL"] = ""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from rfq_race.constants import STATUS_BIDDING, STATUS_OPEN
from rfq_race.models import Base, Provider, Rfq, RfqBroadcast

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@event.listens_for(engine, "connect")
def _enable_fk(dbapi_conn, _):
    """SQLite ignores FKs by default — turn them on."""
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# Wednesday 2026-03-04 12:00 UTC
T0 = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)

BUYER_ID = 501
FOUNDRY_ID = 77


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, **kwargs)
        return self.now


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def db_session():
    """Create all tables, yield a session, then tear down."""
    Base.metadata.create_all(bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(T0)


@pytest.fixture()
def make_provider(db_session: Session):
    """Factory: make_provider(name="...", tier="approved", timezone="UTC", **cols)."""
    counter = {"n": 0}

    def _make(name: str | None = None, **kwargs) -> Provider:
        counter["n"] += 1
        fields = {
            "name": name or f"Supplier {counter['n']}",
            "timezone": "UTC",
            "tier": "approved",
            "is_active": True,
            "created_at": T0,
        }
        fields.update(kwargs)
        provider = Provider(**fields)
        db_session.add(provider)
        db_session.commit()
        db_session.refresh(provider)
        return provider

    return _make


@pytest.fixture()
def make_rfq(db_session: Session):
    """Factory: an RFQ row with race_opens_at already in the past by default."""

    def _make(rfq_type: str = "commodity", **kwargs) -> Rfq:
        fields = {
            "buyer_id": BUYER_ID,
            "foundry_id": FOUNDRY_ID,
            "rfq_type": rfq_type,
            "title": f"Test {rfq_type} RFQ",
            "specifications": {},
            "urgency": "urgent",
            "status": STATUS_OPEN,
            "race_opens_at": T0 - timedelta(minutes=5),
            "created_at": T0 - timedelta(minutes=10),
            "updated_at": T0 - timedelta(minutes=10),
        }
        fields.update(kwargs)
        rfq = Rfq(**fields)
        db_session.add(rfq)
        db_session.commit()
        db_session.refresh(rfq)
        return rfq

    return _make


@pytest.fixture()
def make_broadcast(db_session: Session):
    def _make(rfq: Rfq, provider: Provider, scheduled_at: datetime, **kwargs) -> RfqBroadcast:
        broadcast = RfqBroadcast(
            rfq_id=rfq.id,
            provider_id=provider.id,
            scheduled_at=scheduled_at,
            created_at=T0,
            **kwargs,
        )
        db_session.add(broadcast)
        db_session.commit()
        return broadcast

    return _make


@pytest.fixture()
def bidding_rfq(make_rfq) -> Rfq:
    """A broadcast commodity RFQ whose race is already open."""
    return make_rfq("commodity", status=STATUS_BIDDING)


@pytest.fixture()
def client(db_session: Session, clock: FakeClock) -> TestClient:
    """FastAPI TestClient using the test session and the fake clock."""
    from rfq_race.database import get_db
    from rfq_race.dependencies import get_clock
    from rfq_race.main import app

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_clock] = lambda: clock

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()

