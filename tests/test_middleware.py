from __future__ import annotations

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from memo_tracker.observability.metrics import Registry
from memo_tracker.observability.middleware import RequestTimingMiddleware


def _build_app(histogram, unmatched_route_label: str = "unmatched") -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestTimingMiddleware, histogram=histogram, unmatched_route_label=unmatched_route_label)

    @app.get("/items/{item_id}")
    async def get_item(item_id: int) -> dict[str, int]:
        return {"id": item_id}

    @app.get("/boom")
    async def boom() -> dict[str, str]:
        raise RuntimeError("boom")

    return app


def _series(histogram) -> dict[tuple[str, str, str], int]:
    return {
        (s.labels["method"], s.labels["route"], s.labels["status_code"]): s.value.count
        for s in histogram.collect()
    }


def _histogram():
    return Registry().histogram(
        "http_request_duration_seconds",
        "Duration of HTTP requests in seconds",
        ("method", "route", "status_code"),
    )


async def test_requests_are_recorded_under_route_pattern() -> None:
    histogram = _histogram()
    transport = ASGITransport(app=_build_app(histogram))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        assert (await client.get("/items/1")).status_code == 200
        assert (await client.get("/items/2")).status_code == 200
        assert (await client.get("/items/abc")).status_code == 422

    assert _series(histogram) == {
        ("GET", "/items/{item_id}", "200"): 2,
        ("GET", "/items/{item_id}", "422"): 1,
    }


async def test_unmatched_requests_share_one_label() -> None:
    histogram = _histogram()
    transport = ASGITransport(app=_build_app(histogram))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await client.get("/nope/1")
        await client.get("/nope/2")

    assert _series(histogram) == {("GET", "unmatched", "404"): 2}


async def test_raw_path_is_used_when_unmatched_label_is_empty() -> None:
    histogram = _histogram()
    transport = ASGITransport(app=_build_app(histogram, unmatched_route_label=""))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await client.get("/nope/1")

    assert _series(histogram) == {("GET", "/nope/1", "404"): 1}


async def test_unhandled_errors_are_recorded_as_500() -> None:
    histogram = _histogram()
    transport = ASGITransport(app=_build_app(histogram), raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/boom")

    assert resp.status_code == 500
    assert _series(histogram) == {("GET", "/boom", "500"): 1}


async def test_observation_failures_do_not_break_requests() -> None:
    class BrokenHistogram:
        def observe(self, labels, value) -> None:
            raise RuntimeError("metrics backend exploded")

    transport = ASGITransport(app=_build_app(BrokenHistogram()))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/items/7")

    assert resp.status_code == 200
    assert resp.json() == {"id": 7}
    assert resp.headers.get("x-request-id")
