from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from memo_tracker.config import get_settings
from memo_tracker.db.models import Base, Memo, MemoAssignment, Notification, Project, Role, User
from memo_tracker.db.session import get_engine, get_sessionmaker
from memo_tracker.main import create_app


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{tmp_path / 'memo.db'}")
    monkeypatch.setenv("DB_CONNECT_ATTEMPTS", "1")
    monkeypatch.setenv("DB_CONNECT_RETRY_SECONDS", "0")
    get_settings.cache_clear()

    engine = get_engine()
    Base.metadata.create_all(engine)

    yield

    Base.metadata.drop_all(engine)
    engine.dispose()
    get_settings.cache_clear()


@pytest.fixture
def seeded_db() -> dict[str, int]:
    """Sample data mirroring the production seed script.

    Two sent memos created now, a draft from three days ago and an archived
    memo from ten days ago.
    """
    now = datetime.now(timezone.utc)
    SessionLocal = get_sessionmaker()
    with SessionLocal() as db:
        db.add_all([Role(role_name="admin", description="System administrator"), Role(role_name="staff")])
        admin = User(username="admin", email="admin@memo.com", password_hash="x", full_name="System Administrator")
        john = User(username="john_doe", email="john@memo.com", password_hash="x", full_name="John Doe")
        jane = User(username="jane_smith", email="jane@memo.com", password_hash="x", full_name="Jane Smith")
        db.add_all([admin, john, jane])
        db.flush()

        project = Project(project_name="Q1 2025 Planning", description="First quarter planning", created_by=admin.id)
        db.add(project)
        db.flush()

        welcome = Memo(
            title="Welcome Memo",
            content="Welcome to the new memo system.",
            project_id=project.id,
            created_by=admin.id,
            priority="high",
            status="sent",
            created_at=now - timedelta(seconds=2),
        )
        report = Memo(
            title="Monthly Report Due",
            content="Please submit your monthly reports.",
            project_id=project.id,
            created_by=admin.id,
            status="sent",
            created_at=now - timedelta(seconds=1),
        )
        draft = Memo(title="Draft", content="Not sent yet.", created_by=admin.id, created_at=now - timedelta(days=3))
        old = Memo(
            title="Old news",
            content="Archived.",
            created_by=admin.id,
            status="archived",
            created_at=now - timedelta(days=10),
        )
        db.add_all([welcome, report, draft, old])
        db.flush()

        db.add_all(
            [
                MemoAssignment(memo_id=welcome.id, assigned_to=john.id, assigned_by=admin.id),
                MemoAssignment(memo_id=welcome.id, assigned_to=jane.id, assigned_by=admin.id, status="accepted"),
                MemoAssignment(memo_id=report.id, assigned_to=john.id, assigned_by=admin.id),
                MemoAssignment(memo_id=report.id, assigned_to=jane.id, assigned_by=admin.id),
            ]
        )
        for user in (john, jane):
            for memo in (welcome, report):
                db.add(
                    Notification(
                        user_id=user.id,
                        memo_id=memo.id,
                        title="New Memo Assigned",
                        message=f"You have been assigned a new memo: {memo.title}",
                    )
                )
        db.commit()

        return {
            "admin": admin.id,
            "john": john.id,
            "jane": jane.id,
            "project": project.id,
            "welcome": welcome.id,
            "report": report.id,
        }


@pytest.fixture
def app() -> FastAPI:
    return create_app()


@pytest.fixture
async def api_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
