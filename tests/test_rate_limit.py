import sys
import time
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

pytest.importorskip("httpx", reason="TestClient needs httpx")

from fastapi import FastAPI
from fastapi.testclient import TestClient

from main import RateLimitMiddleware


def _limited_app(requests_per_minute=5):
    app = FastAPI()

    @app.get("/ping")
    async def ping():
        return {"ok": True}

    app.add_middleware(RateLimitMiddleware, requests_per_minute=requests_per_minute)
    return app


def _limiter(client):
    # build the middleware stack, then walk to our instance
    client.get("/ping")
    layer = client.app.middleware_stack
    while not isinstance(layer, RateLimitMiddleware):
        layer = layer.app
    return layer


def test_idle_clients_are_evicted():
    limiter = RateLimitMiddleware(FastAPI(), requests_per_minute=5)
    now = time.time()
    limiter._requests["10.0.0.1"] = [now - 300, now - 120]
    limiter._requests["10.0.0.2"] = []
    limiter._requests["10.0.0.3"] = [now - 120, now - 5]

    limiter._evict_idle(now)

    assert set(limiter._requests) == {"10.0.0.3"}
    assert limiter._last_sweep == now


def test_requests_sweep_stale_clients_once_a_window():
    client = TestClient(_limited_app())
    limiter = _limiter(client)
    stale = time.time() - 3600
    for n in range(100):
        limiter._requests[f"198.51.100.{n}"] = [stale]
    limiter._last_sweep = stale

    response = client.get("/ping")

    assert response.status_code == 200
    assert set(limiter._requests) == {"testclient"}


def test_limit_still_applies_within_the_window():
    client = TestClient(_limited_app(requests_per_minute=2))

    codes = [client.get("/ping").status_code for _ in range(3)]

    assert codes == [200, 200, 429]
