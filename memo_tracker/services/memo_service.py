from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, time, timedelta, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased, sessionmaker

from memo_tracker.config import get_settings
from memo_tracker.db.models import ActivityLog, Memo, MemoAssignment, Notification, Project, User
from memo_tracker.db.session import get_sessionmaker
from memo_tracker.models.schemas import AssignmentOut, MemoCreate, MemoOut, MemoStats, NotificationOut, TrendPoint

logger = logging.getLogger(__name__)

NOTIFICATION_LIMIT = 20
TREND_DAYS = 7


class DataAccessError(Exception):
    """The database could not be reached or a query failed."""


@contextmanager
def _data_access(db: Session, operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("db.query_failed", extra={"operation": operation, "error": str(exc)})
        raise DataAccessError(f"{operation} failed") from exc


def count_active_memos(db: Session, status: str) -> int:
    with _data_access(db, "count_active_memos"):
        return int(db.execute(select(func.count(Memo.id)).where(Memo.status == status)).scalar_one())


def load_active_memo_count(
    status: str | None = None,
    session_factory: sessionmaker[Session] | None = None,
) -> int:
    """
    Refresher entrypoint: open a short-lived session and count active memos.
    """
    SessionLocal = session_factory or get_sessionmaker()
    try:
        with SessionLocal() as db:
            return count_active_memos(db, status or get_settings().active_memo_status)
    except SQLAlchemyError as exc:
        # Failures while opening/closing the session itself.
        raise DataAccessError("count_active_memos failed") from exc


def get_memo_stats(db: Session, active_status: str, now: datetime | None = None) -> MemoStats:
    now = now or datetime.now(timezone.utc)
    start_of_today = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
    trend_start = now - timedelta(days=TREND_DAYS)
    day = func.date(Memo.created_at)

    with _data_access(db, "get_memo_stats"):
        today = db.execute(select(func.count(Memo.id)).where(Memo.created_at >= start_of_today)).scalar_one()
        total = db.execute(select(func.count(Memo.id)).where(Memo.status == active_status)).scalar_one()
        trend_rows = db.execute(
            select(day.label("date"), func.count(Memo.id).label("count"))
            .where(Memo.created_at >= trend_start)
            .group_by(day)
            .order_by(day)
        ).all()

    return MemoStats(
        today_memos=int(today),
        total_memos=int(total),
        weekly_trend=[TrendPoint(date=day_value, count=int(count)) for day_value, count in trend_rows],
    )


def list_memos(db: Session) -> list[MemoOut]:
    creator = aliased(User)
    stmt = (
        select(Memo, creator.full_name, Project.project_name)
        .outerjoin(creator, Memo.created_by == creator.id)
        .outerjoin(Project, Memo.project_id == Project.id)
        .order_by(Memo.created_at.desc(), Memo.id.desc())
    )
    with _data_access(db, "list_memos"):
        rows = db.execute(stmt).all()

    return [_to_memo_out(memo, created_by_name=name, project_name=project) for memo, name, project in rows]


def create_memo(db: Session, payload: MemoCreate) -> MemoOut:
    with _data_access(db, "create_memo"):
        memo = Memo(
            title=payload.title,
            content=payload.content,
            project_id=payload.project_id,
            created_by=payload.created_by,
            priority=payload.priority,
            status=payload.status,
            deadline=payload.deadline,
        )
        db.add(memo)
        db.flush()

        # dict.fromkeys drops duplicate assignees but keeps their order.
        for assignee in dict.fromkeys(payload.assign_to):
            db.add(MemoAssignment(memo_id=memo.id, assigned_to=assignee, assigned_by=payload.created_by))
            db.add(
                Notification(
                    user_id=assignee,
                    memo_id=memo.id,
                    notification_type="memo_assigned",
                    title="New Memo Assigned",
                    message=f"You have been assigned a new memo: {memo.title}",
                )
            )
        db.add(
            ActivityLog(
                user_id=payload.created_by,
                action="CREATE_MEMO",
                table_name="memos",
                record_id=memo.id,
                new_values={"title": memo.title, "priority": memo.priority},
            )
        )
        db.commit()
        db.refresh(memo)

    logger.info("memo.created", extra={"memo_id": memo.id, "assignees": len(payload.assign_to)})
    return _to_memo_out(memo)


def list_assignments(db: Session, user_id: int) -> list[AssignmentOut]:
    assigner = aliased(User)
    stmt = (
        select(MemoAssignment, Memo, assigner.full_name)
        .join(Memo, MemoAssignment.memo_id == Memo.id)
        .join(assigner, MemoAssignment.assigned_by == assigner.id)
        .where(MemoAssignment.assigned_to == user_id)
        .order_by(MemoAssignment.assigned_at.desc(), MemoAssignment.id.desc())
    )
    with _data_access(db, "list_assignments"):
        rows = db.execute(stmt).all()

    return [
        AssignmentOut(
            id=a.id,
            memo_id=a.memo_id,
            assigned_to=a.assigned_to,
            assigned_by=a.assigned_by,
            assigned_at=a.assigned_at,
            status=a.status,
            accepted_at=a.accepted_at,
            completed_at=a.completed_at,
            notes=a.notes,
            title=memo.title,
            content=memo.content,
            deadline=memo.deadline,
            priority=memo.priority,
            assigned_by_name=assigned_by_name,
        )
        for a, memo, assigned_by_name in rows
    ]


def accept_assignment(db: Session, assignment_id: int) -> bool:
    """Mark an assignment accepted. Returns False if it does not exist."""
    with _data_access(db, "accept_assignment"):
        assignment = db.get(MemoAssignment, assignment_id)
        if assignment is None:
            return False

        db.execute(
            update(MemoAssignment)
            .where(MemoAssignment.id == assignment_id)
            .values(status="accepted", accepted_at=datetime.now(timezone.utc))
        )
        db.add(
            ActivityLog(
                user_id=assignment.assigned_to,
                action="ACCEPT_MEMO",
                table_name="memo_assignments",
                record_id=assignment_id,
                new_values={"status": "accepted"},
            )
        )
        db.commit()

    logger.info("assignment.accepted", extra={"assignment_id": assignment_id})
    return True


def list_notifications(db: Session, user_id: int) -> list[NotificationOut]:
    stmt = (
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(NOTIFICATION_LIMIT)
    )
    with _data_access(db, "list_notifications"):
        rows = db.execute(stmt).scalars().all()
    return [NotificationOut.model_validate(n) for n in rows]


def _to_memo_out(memo: Memo, created_by_name: str | None = None, project_name: str | None = None) -> MemoOut:
    return MemoOut(
        id=memo.id,
        title=memo.title,
        content=memo.content,
        project_id=memo.project_id,
        created_by=memo.created_by,
        created_at=memo.created_at,
        updated_at=memo.updated_at,
        priority=memo.priority,
        status=memo.status,
        deadline=memo.deadline,
        created_by_name=created_by_name,
        project_name=project_name,
    )
