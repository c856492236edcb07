"""
Pytest configuration and shared fixtures for testing.
"""
import os

# Settings are read at import time; configure the environment first
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-tryout-engine")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENV", "test")
os.environ.setdefault("EXPIRY_WATCHER_ENABLED", "false")
os.environ.setdefault("DATABASE_CREATE_TABLES", "false")

from contextlib import asynccontextmanager  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from tryout.api.v1._dependencies import get_clock, get_session_factory  # noqa: E402
from tryout.core.engine.controller import SessionController  # noqa: E402
from tryout.core.retry import RetryConfig, reset_retry_metrics  # noqa: E402
from tryout.core.security import create_access_token  # noqa: E402
from tryout.main import app  # noqa: E402
from tryout.models import (  # noqa: E402
    Base,
    Question,
    QuestionKind,
    TryoutPackage,
    TryoutSection,
    get_db,
)
from tryout.models.base import create_db_engine  # noqa: E402

T0 = datetime(2026, 3, 1, 8, 0, 0, tzinfo=timezone.utc)

TEST_USER_ID = "user-123"
OTHER_USER_ID = "user-456"


class FakeClock:
    """Manually advanced clock; call it to read the current time."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@asynccontextmanager
async def _test_lifespan(app):
    """No-op lifespan for tests.

    Skips Sentry, metrics and the expiry watcher.
    """
    yield


# Neutralize the production lifespan on the singleton app.
app.router.lifespan_context = _test_lifespan


@pytest.fixture(autouse=True)
def _reset_retry_metrics():
    reset_retry_metrics()
    yield
    reset_retry_metrics()


@pytest.fixture
def db_engine(tmp_path):
    """
    File-backed SQLite database per test so threads share one database.
    """
    engine = create_db_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    """
    Create a fresh database session for each test.
    """
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def no_retry():
    """Retry policy that fails fast."""
    return RetryConfig(max_retries=0, base_delay=0.0, max_delay=0.0)


@pytest.fixture
def controller(db_session, clock, no_retry):
    return SessionController(
        db_session,
        clock=clock,
        persistence_retry=no_retry,
        submission_retry=no_retry,
    )


@pytest.fixture
def make_package(db_session):
    """
    Factory for packages with sectioned single-choice questions.

    Each question's correct option is "A" and it is worth one point.
    """

    def _make(
        duration_minutes: int = 30,
        sections=(("Verbal", 3), ("Quantitative", 2)),
        passing_grade=3.0,
        title: str = "Tryout Package",
    ) -> TryoutPackage:
        package = TryoutPackage(
            title=title,
            duration_minutes=duration_minutes,
            passing_grade=passing_grade,
            is_active=True,
        )
        db_session.add(package)
        db_session.flush()

        number = 1
        for order, (name, count) in enumerate(sections):
            section = TryoutSection(package_id=package.id, name=name, section_order=order)
            db_session.add(section)
            db_session.flush()
            for _ in range(count):
                db_session.add(
                    Question(
                        package_id=package.id,
                        section_id=section.id,
                        question_number=number,
                        question_text=f"Question {number}",
                        question_kind=QuestionKind.SINGLE_CHOICE,
                        options={"A": "first", "B": "second", "C": "third", "D": "fourth"},
                        correct_option_key="A",
                        point_value=1.0,
                        is_active=True,
                    )
                )
                number += 1
        db_session.commit()
        db_session.refresh(package)
        return package

    return _make


@pytest.fixture
def package(make_package):
    """A 30-minute package with five questions in two sections."""
    return make_package()


@pytest.fixture
def question_ids(db_session, package):
    """Question IDs of ``package`` in presentation order."""
    rows = (
        db_session.query(Question)
        .filter(Question.package_id == package.id)
        .order_by(Question.question_number)
        .all()
    )
    return [q.id for q in rows]


@pytest.fixture
def client(session_factory, clock):
    """
    Create a test client with database, clock and session factory overrides.
    """

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """
    Create authentication headers for the test user.
    """
    return {"Authorization": f"Bearer {create_access_token(TEST_USER_ID)}"}


@pytest.fixture
def other_auth_headers():
    return {"Authorization": f"Bearer {create_access_token(OTHER_USER_ID)}"}
