"""Pytest configuration and shared fixtures."""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from contractflow.api.dependencies import get_queue, get_rate_limiter
from contractflow.config import Settings, get_settings
from contractflow.database import Base, get_db
from contractflow.main import create_app
from contractflow.models import audit  # noqa: F401 - registers AuditEvent with Base
from contractflow.models.domain import Document, Membership, Organization
from contractflow.models.enums import MembershipRole
from contractflow.queue.memory import InMemoryQueue
from contractflow.services.permissions import Actor
from contractflow.services.rate_limit import InMemoryCounterStore, RateLimiter
from contractflow.services.workflow import DocumentWorkflow
from contractflow.worker import DraftWorker


class FakeClock:
    """Manual clock. `sleep` advances time instead of blocking."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def session_factory():
    """In-memory database shared by every session, so worker sessions see test data."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        DATABASE_URL="sqlite:///:memory:",
        REDIS_URL="",
        RATE_LIMIT_GENERATE_DRAFT_MAX=5,
        RATE_LIMIT_GENERATE_DRAFT_WINDOW_MS=60_000,
        DRAFT_JOB_ATTEMPTS=3,
        DRAFT_JOB_BACKOFF_MS=1000,
        MAX_MANUAL_RETRIES=5,
        GENERATION_TIMEOUT_SECONDS=5,
    )


@pytest.fixture
def queue(clock):
    return InMemoryQueue(clock=clock, sleep=clock.sleep)


@pytest.fixture
def limiter(clock):
    return RateLimiter(InMemoryCounterStore(clock=clock), clock=clock)


@pytest.fixture
def organization(db_session):
    """Organization with one member per role."""
    org = Organization(name="Acme Agency")
    db_session.add(org)
    db_session.flush()
    for user_id, role in [
        ("owner_1", MembershipRole.OWNER),
        ("admin_1", MembershipRole.ADMIN),
        ("member_1", MembershipRole.MEMBER),
        ("viewer_1", MembershipRole.VIEWER),
    ]:
        db_session.add(Membership(organization_id=org.id, user_id=user_id, role=role))
    db_session.commit()
    db_session.refresh(org)
    return org


@pytest.fixture
def other_organization(db_session):
    org = Organization(name="Other Co")
    db_session.add(org)
    db_session.flush()
    db_session.add(Membership(organization_id=org.id, user_id="outsider_1", role=MembershipRole.OWNER))
    db_session.commit()
    db_session.refresh(org)
    return org


@pytest.fixture
def sample_document(db_session, organization):
    """A fresh proposal: approval DRAFT, generation IDLE, version 1, no sections."""
    document = Document(
        organization_id=organization.id,
        created_by_id="member_1",
        title="Website redesign proposal",
    )
    db_session.add(document)
    db_session.commit()
    db_session.refresh(document)
    return document


@pytest.fixture
def make_workflow(db_session, queue, limiter, settings, organization):
    def _make(user_id="admin_1", role=MembershipRole.ADMIN, organization_id=None):
        actor = Actor(user_id=user_id, organization_id=organization_id or organization.id, role=role)
        return DocumentWorkflow(db_session, queue, limiter, settings, actor)
    return _make


@pytest.fixture
def worker(session_factory):
    return DraftWorker(session_factory, timeout_seconds=5)


@pytest.fixture
def client(session_factory, queue, limiter, settings):
    app = create_app()

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_queue] = lambda: queue
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_settings] = lambda: settings
    # Not used as a context manager: lifespan (tables on disk, worker thread) stays off
    return TestClient(app)


@pytest.fixture
def auth_headers(organization):
    def _headers(user_id="admin_1", role="ADMIN", organization_id=None):
        return {
            "X-User-Id": user_id,
            "X-Organization-Id": organization_id or organization.id,
            "X-User-Role": role,
        }
    return _headers
