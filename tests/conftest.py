"""
Pytest configuration and fixtures for testing.

This file provides reusable test fixtures for:
- Database setup/teardown
- FastAPI test client
- Redis (fakeredis) for the rate limiter
- Recording queued emails instead of talking to Celery
- Petition and signature factories
"""

from datetime import datetime, timezone

import fakeredis
import pytest
from fastapi.testclient import TestClient
from starlette.middleware.sessions import Session
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from petitions.core.database import Base, get_db
from petitions.core.deps import get_constituency_resolver, get_rate_limiter
from petitions.core.duplicates import canonical_email, normalize_email
from petitions.core.rate_limiter import RateLimiter, RateLimitPolicy
from petitions.core.session_store import SignatureSessionStore
from petitions.core.tokens import generate_token
from petitions.core.workflow import RequestContext
from petitions.models import Petition, PetitionState, RateLimit, Signature, SignatureState
from main import app


# Use in-memory SQLite for testing (fast, isolated)
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

NOW = datetime(2019, 4, 18, 6, 1, 0, tzinfo=timezone.utc)


class StubConstituencyResolver:
    """Postcode lookup without the network"""

    def __init__(self, constituencies=None):
        self.constituencies = constituencies or {"SW1A1AA": "3415"}
        self.calls = []

    def lookup(self, postcode):
        self.calls.append(postcode)
        return self.constituencies.get(postcode)


@pytest.fixture
def db_session():
    """
    Create a fresh database session for each test.
    Tables are dropped after the test completes.
    """
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def redis_client():
    server = fakeredis.FakeServer()
    return fakeredis.FakeRedis(server=server, decode_responses=True)


@pytest.fixture
def limiter(redis_client):
    return RateLimiter(redis_client=redis_client, fingerprint="ip", fail_open=False)


@pytest.fixture
def policy():
    """Thresholds used by the acceptance environment"""
    return RateLimitPolicy(burst_rate=10, burst_period=60, sustained_rate=20, sustained_period=300)


@pytest.fixture
def resolver():
    return StubConstituencyResolver()


@pytest.fixture
def sent_emails(monkeypatch):
    """
    Record queued emails instead of sending them through Celery.

    Each entry is the keyword arguments the task was queued with.
    """
    sent = []

    def fake_queue(task, *args, **kwargs):
        sent.append(kwargs)
        return True

    monkeypatch.setattr("petitions.core.celery_utils.queue_task_safely", fake_queue)
    return sent


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def context():
    return RequestContext(ip_address="0.0.0.0", now=NOW)


@pytest.fixture
def store():
    """Store over the session type SessionMiddleware hands to requests"""
    return SignatureSessionStore(session=Session(), cookies={})


@pytest.fixture
def client(db_session, limiter, resolver, sent_emails):
    """
    FastAPI test client with overridden database, Redis and lookup dependencies.

    Uses https so the secure session cookie round-trips.
    """
    db_session.add(RateLimit(
        burst_rate=10, burst_period=60,
        sustained_rate=20, sustained_period=300,
        allowed_domains="", allowed_ips=""
    ))
    db_session.commit()

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_constituency_resolver] = lambda: resolver

    test_client = TestClient(app, base_url="https://testserver")
    yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def make_petition(db_session):
    def _make(state=PetitionState.OPEN, closed_at=None, action="Do something about it", **attrs):
        petition = Petition(action=action, state=state, closed_at=closed_at, **attrs)
        db_session.add(petition)
        db_session.commit()
        db_session.refresh(petition)
        return petition
    return _make


@pytest.fixture
def make_signature(db_session):
    def _make(petition, email="ted@example.com", state=SignatureState.PENDING, issued_at=None, **attrs):
        now = issued_at or NOW
        values = dict(
            petition_id=petition.id,
            name="Ted Berry",
            email=email,
            normalized_email=normalize_email(email),
            canonical_email=canonical_email(email),
            postcode="SW1A1AA",
            location_code="GB",
            uk_citizenship="1",
            ip_address="0.0.0.0",
            state=state,
            perishable_token=generate_token(),
            perishable_token_issued_at=now,
            unsubscribe_token=generate_token(),
            created_at=now,
        )
        if state == SignatureState.VALIDATED:
            values.update(validated_at=now, signed_token=generate_token())
        values.update(attrs)

        signature = Signature(**values)
        db_session.add(signature)
        db_session.commit()
        db_session.refresh(signature)
        return signature
    return _make


@pytest.fixture
def signature_params():
    return {
        "name": "Ted Berry",
        "email": "ted@example.com",
        "uk_citizenship": "1",
        "postcode": "SW1A 1AA",
        "location_code": "GB",
    }
