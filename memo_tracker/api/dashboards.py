from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from memo_tracker.api.deps import get_app_metrics, get_app_settings
from memo_tracker.config import Settings
from memo_tracker.observability.app_metrics import AppMetrics

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))

router = APIRouter(tags=["dashboards"])


@router.get("/", response_class=HTMLResponse)
async def index(request: Request, settings: Settings = Depends(get_app_settings)) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "grafana_url": settings.grafana_url,
            "prometheus_url": settings.prometheus_url,
            "sample_user_id": settings.staff_dashboard_default_user_id,
        },
    )


@router.get("/admin/dashboard", response_class=HTMLResponse)
async def admin_dashboard(
    request: Request,
    metrics: AppMetrics = Depends(get_app_metrics),
    settings: Settings = Depends(get_app_settings),
) -> HTMLResponse:
    metrics.dashboard_views.labels(dashboard_type="admin").increment()
    return templates.TemplateResponse(request, "admin_dashboard.html", {"grafana_url": settings.grafana_url})


@router.get("/staff/dashboard", response_class=HTMLResponse)
async def staff_dashboard(
    request: Request,
    user_id: int | None = Query(default=None, ge=1),
    metrics: AppMetrics = Depends(get_app_metrics),
    settings: Settings = Depends(get_app_settings),
) -> HTMLResponse:
    metrics.dashboard_views.labels(dashboard_type="staff").increment()
    return templates.TemplateResponse(
        request,
        "staff_dashboard.html",
        {"user_id": user_id or settings.staff_dashboard_default_user_id},
    )
