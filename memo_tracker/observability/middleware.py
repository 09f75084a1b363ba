from __future__ import annotations

import uuid
from time import perf_counter
from typing import Any, Callable

import structlog
from starlette.datastructures import MutableHeaders

from memo_tracker.observability.metrics import Histogram


class RequestTimingMiddleware:
    """Adds request_id context, access logs, and per-route request latency."""

    def __init__(
        self,
        app: Callable[..., Any],
        histogram: Histogram,
        unmatched_route_label: str = "unmatched",
    ) -> None:
        self.app = app
        self._histogram = histogram
        # Empty means "label unmatched requests with their raw path".
        self._unmatched_route_label = unmatched_route_label

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = str(uuid.uuid4())
        path = scope.get("path")
        method = scope.get("method")

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            path=path,
            method=method,
        )

        start = perf_counter()
        status_code: int = 500

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code

            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))
                headers = MutableHeaders(scope=message)
                headers["X-Request-ID"] = request_id

            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            elapsed = perf_counter() - start
            route = self.route_label(scope)

            # Record before logging so metrics update even if logging misbehaves.
            self._observe(method, route, status_code, elapsed)

            structlog.get_logger("access").info(
                "http_request",
                route=route,
                status_code=status_code,
                elapsed_ms=round(elapsed * 1000.0, 2),
            )

            structlog.contextvars.clear_contextvars()

    def route_label(self, scope: dict[str, Any]) -> str:
        # The router stores the matched route on the shared scope during dispatch.
        route = scope.get("route")
        pattern = getattr(route, "path", None)
        if pattern:
            return str(pattern)
        return self._unmatched_route_label or str(scope.get("path") or "")

    def _observe(self, method: Any, route: str, status_code: int, elapsed: float) -> None:
        try:
            self._histogram.observe(
                {"method": method, "route": route, "status_code": status_code},
                elapsed,
            )
        except Exception:  # noqa: BLE001
            structlog.get_logger("metrics").exception(
                "request_observation_failed",
                route=route,
                status_code=status_code,
            )
