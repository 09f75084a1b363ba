from __future__ import annotations

from fastapi import APIRouter, Request, Response

from memo_tracker.observability.metrics import CONTENT_TYPE_LATEST


router = APIRouter(tags=["metrics"])


@router.get("/metrics", include_in_schema=False)
async def metrics(request: Request) -> Response:
    state = request.app.state
    if state.process_metrics is not None:
        state.process_metrics.collect()
    return Response(content=state.registry.render_exposition(), media_type=CONTENT_TYPE_LATEST)
