from __future__ import annotations

from fastapi import Request

from memo_tracker.config import Settings
from memo_tracker.observability.app_metrics import AppMetrics
from memo_tracker.observability.refresher import PeriodicRefresher


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_app_metrics(request: Request) -> AppMetrics:
    return request.app.state.metrics


def get_refresher(request: Request) -> PeriodicRefresher:
    return request.app.state.refresher
