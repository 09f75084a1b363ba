from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session

from memo_tracker.api.deps import get_app_metrics, get_app_settings, get_refresher
from memo_tracker.config import Settings
from memo_tracker.db.session import get_db
from memo_tracker.models.schemas import AssignmentOut, MemoCreate, MemoOut, MemoStats, MessageResponse, NotificationOut
from memo_tracker.observability.app_metrics import AppMetrics, track_memo_operation
from memo_tracker.observability.refresher import PeriodicRefresher
from memo_tracker.services.memo_service import (
    DataAccessError,
    accept_assignment,
    create_memo,
    get_memo_stats,
    list_assignments,
    list_memos,
    list_notifications,
)

router = APIRouter(prefix="/api", tags=["memos"])


@router.get("/memo-stats", response_model=MemoStats)
def memo_stats(
    db: Session = Depends(get_db),
    metrics: AppMetrics = Depends(get_app_metrics),
    settings: Settings = Depends(get_app_settings),
) -> MemoStats:
    with track_memo_operation(metrics, "get_stats"):
        try:
            return get_memo_stats(db=db, active_status=settings.active_memo_status)
        except DataAccessError as exc:
            raise HTTPException(status_code=500, detail="Database error") from exc


@router.get("/memos", response_model=list[MemoOut])
def get_memos(
    db: Session = Depends(get_db),
    metrics: AppMetrics = Depends(get_app_metrics),
) -> list[MemoOut]:
    with track_memo_operation(metrics, "get_all"):
        try:
            return list_memos(db=db)
        except DataAccessError as exc:
            raise HTTPException(status_code=500, detail="Internal server error") from exc


@router.post("/memos", response_model=MemoOut, status_code=201)
def post_memo(
    payload: MemoCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    metrics: AppMetrics = Depends(get_app_metrics),
    refresher: PeriodicRefresher = Depends(get_refresher),
) -> MemoOut:
    with track_memo_operation(metrics, "create_memo"):
        try:
            memo = create_memo(db=db, payload=payload)
        except DataAccessError as exc:
            raise HTTPException(status_code=500, detail="Internal server error") from exc

    background_tasks.add_task(refresher.trigger)
    return memo


@router.get("/users/{user_id}/assignments", response_model=list[AssignmentOut])
def get_assignments(
    user_id: int,
    db: Session = Depends(get_db),
    metrics: AppMetrics = Depends(get_app_metrics),
) -> list[AssignmentOut]:
    with track_memo_operation(metrics, "get_assignments"):
        try:
            return list_assignments(db=db, user_id=user_id)
        except DataAccessError as exc:
            raise HTTPException(status_code=500, detail="Internal server error") from exc


@router.put("/assignments/{assignment_id}/accept", response_model=MessageResponse)
def accept_memo(
    assignment_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    metrics: AppMetrics = Depends(get_app_metrics),
    refresher: PeriodicRefresher = Depends(get_refresher),
) -> MessageResponse:
    with track_memo_operation(metrics, "accept_memo") as outcome:
        try:
            accepted = accept_assignment(db=db, assignment_id=assignment_id)
        except DataAccessError as exc:
            raise HTTPException(status_code=500, detail="Internal server error") from exc
        if not accepted:
            outcome.status = "not_found"

    if not accepted:
        raise HTTPException(status_code=404, detail="Assignment not found")

    background_tasks.add_task(refresher.trigger)
    return MessageResponse(message="Memo accepted successfully")


@router.get("/users/{user_id}/notifications", response_model=list[NotificationOut])
def get_notifications(
    user_id: int,
    db: Session = Depends(get_db),
    metrics: AppMetrics = Depends(get_app_metrics),
) -> list[NotificationOut]:
    with track_memo_operation(metrics, "get_notifications"):
        try:
            return list_notifications(db=db, user_id=user_id)
        except DataAccessError as exc:
            raise HTTPException(status_code=500, detail="Internal server error") from exc
