from __future__ import annotations

import datetime as dt
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


MemoPriority = Literal["low", "medium", "high", "urgent"]
MemoStatus = Literal["draft", "sent", "archived"]


class HealthResponse(BaseModel):
    status: str
    timestamp: dt.datetime


class TrendPoint(BaseModel):
    date: dt.date
    count: int


class MemoStats(BaseModel):
    # Wire names match the dashboard JavaScript.
    model_config = ConfigDict(populate_by_name=True)

    today_memos: int = Field(alias="todayMemos")
    total_memos: int = Field(alias="totalMemos")
    weekly_trend: list[TrendPoint] = Field(alias="weeklyTrend")


class MemoOut(BaseModel):
    id: int
    title: str
    content: str
    project_id: int | None = None
    created_by: int
    created_at: dt.datetime
    updated_at: dt.datetime
    priority: str
    status: str
    deadline: dt.date | None = None
    created_by_name: str | None = None
    project_name: str | None = None


class MemoCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)
    created_by: int
    project_id: int | None = None
    priority: MemoPriority = "medium"
    status: MemoStatus = "draft"
    deadline: dt.date | None = None
    assign_to: list[int] = Field(default_factory=list)


class AssignmentOut(BaseModel):
    id: int
    memo_id: int
    assigned_to: int
    assigned_by: int
    assigned_at: dt.datetime
    status: str
    accepted_at: dt.datetime | None = None
    completed_at: dt.datetime | None = None
    notes: str | None = None
    title: str
    content: str
    deadline: dt.date | None = None
    priority: str
    assigned_by_name: str | None = None


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    memo_id: int | None = None
    notification_type: str
    title: str
    message: str
    is_read: bool
    created_at: dt.datetime
    read_at: dt.datetime | None = None


class MessageResponse(BaseModel):
    message: str
