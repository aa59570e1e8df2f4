"""Pytest fixtures for audit retention tests.

Provides reusable test fixtures for:
- In-memory SQLite audit store (one per test)
- Retention settings with a temporary archive directory
- A cleanup engine wired to the test database
- Seeding audit records at a given age
- An admin-authenticated TestClient

Usage:
    def test_cleanup(cleanup_engine, seed_records):
        seed_records("BOOK_VIEWED", age_days=40)
        report = cleanup_engine.run_cleanup()
"""

import os
import sys
from datetime import timedelta
from pathlib import Path
from typing import Callable, Generator, List, Optional

# Set environment variables BEFORE any imports to ensure they take effect
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-key-256-bits-minimum-length-required-for-security")
os.environ.setdefault("AUDIT_CLEANUP_ENABLED", "false")
os.environ.setdefault("LOG_JSON", "false")

backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from audit_retention.auth.jwt import create_access_token
from audit_retention.models import AuditLog, Base, utcnow
from audit_retention.retention.concurrency import CleanupGuard
from audit_retention.retention.lifecycle import ArchiveLifecycleManager
from audit_retention.retention.scheduler import CleanupScheduler
from audit_retention.retention.schemas import RetentionSettings
from audit_retention.retention.service import CleanupEngine


@pytest.fixture
def db_engine() -> Generator[Engine, None, None]:
    """Fresh in-memory SQLite database shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine: Engine) -> sessionmaker:
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def archive_dir(tmp_path: Path) -> Path:
    return tmp_path / "archives"


@pytest.fixture
def retention_settings(archive_dir: Path) -> RetentionSettings:
    """Small policy table with archiving off and the scheduler disabled."""
    return RetentionSettings(
        retention_policies={
            "BOOK_VIEWED": 30,
            "LOGIN_SUCCESS": 90,
            "DEFAULT": 180,
        },
        cleanup_enabled=False,
        archive_path=str(archive_dir),
        batch_size=1000,
    )


@pytest.fixture
def cleanup_guard() -> CleanupGuard:
    return CleanupGuard(max_concurrent=1)


@pytest.fixture
def cleanup_engine(
    session_factory: sessionmaker,
    retention_settings: RetentionSettings,
    cleanup_guard: CleanupGuard,
) -> CleanupEngine:
    return CleanupEngine(
        session_factory=session_factory,
        settings=retention_settings,
        guard=cleanup_guard,
    )


@pytest.fixture
def seed_records(db_session: Session) -> Callable[..., List[AuditLog]]:
    """Insert audit records created `age_days` ago.

    Example:
        seed_records("BOOK_VIEWED", age_days=40, count=3, user_id="u1")
    """

    def _seed(
        action: str,
        age_days: float,
        count: int = 1,
        user_id: Optional[str] = "user-1",
        message: str = "test event",
        ip_address: Optional[str] = "10.0.0.1",
    ) -> List[AuditLog]:
        created_at = utcnow() - timedelta(days=age_days)
        records = [
            AuditLog(
                user_id=user_id,
                action=action,
                message=message,
                created_at=created_at,
                ip_address=ip_address,
            )
            for _ in range(count)
        ]
        db_session.add_all(records)
        db_session.commit()
        return records

    return _seed


@pytest.fixture
def count_records(db_session: Session) -> Callable[..., int]:
    """Number of audit records, optionally for one action."""

    def _count(action: Optional[str] = None) -> int:
        db_session.expire_all()
        query = db_session.query(AuditLog)
        if action is not None:
            query = query.filter(AuditLog.action == action)
        return query.count()

    return _count


@pytest.fixture
def admin_token() -> str:
    return create_access_token(user_id="admin-1", role="ADMIN", email="admin@library.test")


@pytest.fixture
def user_token() -> str:
    return create_access_token(user_id="user-1", role="USER", email="reader@library.test")


@pytest.fixture
def app(cleanup_engine: CleanupEngine, session_factory: sessionmaker, archive_dir: Path):
    """FastAPI app wired to the test database and archive directory.

    The lifespan is not run, so no background scheduler thread is started.
    """
    from audit_retention.database import get_db
    from audit_retention.main import app as fastapi_app

    lifecycle = ArchiveLifecycleManager(archive_dir)
    fastapi_app.state.cleanup_engine = cleanup_engine
    fastapi_app.state.archive_lifecycle = lifecycle
    fastapi_app.state.cleanup_scheduler = CleanupScheduler(cleanup_engine, lifecycle=lifecycle)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    fastapi_app.dependency_overrides[get_db] = override_get_db

    yield fastapi_app

    fastapi_app.dependency_overrides.clear()
    for name in ("cleanup_engine", "archive_lifecycle", "cleanup_scheduler"):
        delattr(fastapi_app.state, name)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def admin_headers(admin_token: str) -> dict:
    return {"Authorization": f"Bearer {admin_token}"}
