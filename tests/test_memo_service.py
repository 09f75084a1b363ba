from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from memo_tracker.config import get_settings
from memo_tracker.db.models import ActivityLog, Base
from memo_tracker.db.session import get_engine, get_sessionmaker, wait_for_database
from memo_tracker.services.memo_service import (
    DataAccessError,
    accept_assignment,
    count_active_memos,
    get_memo_stats,
    list_memos,
    load_active_memo_count,
)


def test_count_active_memos_by_status(seeded_db) -> None:
    with get_sessionmaker()() as db:
        assert count_active_memos(db, "sent") == 2
        assert count_active_memos(db, "archived") == 1
        assert count_active_memos(db, "nope") == 0


def test_load_active_memo_count_uses_configured_status(seeded_db, monkeypatch) -> None:
    assert load_active_memo_count() == 2
    assert load_active_memo_count("draft") == 1

    monkeypatch.setenv("ACTIVE_MEMO_STATUS", "archived")
    get_settings.cache_clear()
    assert load_active_memo_count() == 1


def test_load_active_memo_count_raises_data_access_error_without_schema(seeded_db) -> None:
    Base.metadata.drop_all(get_engine())
    with pytest.raises(DataAccessError):
        load_active_memo_count()


def test_memo_stats_window_is_relative_to_now(seeded_db) -> None:
    later = datetime.now(timezone.utc) + timedelta(days=5)
    with get_sessionmaker()() as db:
        stats = get_memo_stats(db, active_status="sent", now=later)

    assert stats.today_memos == 0
    assert stats.total_memos == 2
    # The draft from three days ago has aged out of the window.
    assert sum(point.count for point in stats.weekly_trend) == 2


def test_list_memos_is_newest_first(seeded_db) -> None:
    with get_sessionmaker()() as db:
        memos = list_memos(db)
    created = [m.created_at for m in memos]
    assert created == sorted(created, reverse=True)


def test_accept_assignment_writes_activity_log(seeded_db) -> None:
    with get_sessionmaker()() as db:
        assert accept_assignment(db, 1) is True
        assert accept_assignment(db, 424242) is False
        logs = db.query(ActivityLog).filter(ActivityLog.action == "ACCEPT_MEMO").all()

    assert [log.record_id for log in logs] == [1]
    assert logs[0].new_values == {"status": "accepted"}


async def test_wait_for_database_reports_success() -> None:
    assert await wait_for_database(attempts=1, delay_seconds=0) is True


async def test_wait_for_database_gives_up_without_raising(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{tmp_path / 'missing' / 'dir' / 'memo.db'}")
    get_settings.cache_clear()

    assert await wait_for_database(attempts=2, delay_seconds=0) is False
