import time

from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from marketplace.utils.rate_limit import optional_rate_limit, rate_limit_health_info


def _make_app(times=2, seconds=60):
    app = FastAPI()

    @app.post("/checkout", dependencies=[Depends(optional_rate_limit(times, seconds))])
    def checkout():
        return {"ok": True}

    @app.post("/checkoutB", dependencies=[Depends(optional_rate_limit(times, seconds))])
    def checkout_b():
        return {"ok": True}

    @app.get("/rl_info")
    def rl_info(request: Request):
        return rate_limit_health_info(request)

    return app


def test_rate_limit_fallback_blocks_after_limit(monkeypatch):
    app = _make_app(times=2, seconds=60)
    client = TestClient(app)
    monkeypatch.setenv("LOCAL_RATE_LIMIT_FALLBACK", "1")

    assert client.post("/checkout").status_code == 200
    assert client.post("/checkout").status_code == 200
    assert client.post("/checkout").status_code == 429


def test_rate_limit_is_per_path_and_token(monkeypatch):
    app = _make_app(times=2, seconds=60)
    client = TestClient(app)
    monkeypatch.setenv("LOCAL_RATE_LIMIT_FALLBACK", "1")
    headers_a = {"Authorization": "Bearer token-a"}
    headers_b = {"Authorization": "Bearer token-b"}

    assert client.post("/checkout", headers=headers_a).status_code == 200
    assert client.post("/checkout", headers=headers_a).status_code == 200
    assert client.post("/checkout", headers=headers_a).status_code == 429
    # Autre utilisateur et autre chemin: compteurs indépendants
    assert client.post("/checkout", headers=headers_b).status_code == 200
    assert client.post("/checkoutB", headers=headers_a).status_code == 200


def test_rate_limit_resets_after_window_sleep(monkeypatch):
    app = _make_app(times=1, seconds=1)
    client = TestClient(app)
    monkeypatch.setenv("LOCAL_RATE_LIMIT_FALLBACK", "1")

    assert client.post("/checkout").status_code == 200
    assert client.post("/checkout").status_code == 429
    time.sleep(1.1)
    assert client.post("/checkout").status_code == 200


def test_rate_limit_disabled_flag_bypasses_limit(monkeypatch):
    monkeypatch.delenv("LOCAL_RATE_LIMIT_FALLBACK", raising=False)
    app = _make_app(times=1, seconds=60)
    client = TestClient(app)
    app.state.rate_limit_enabled = False

    for _ in range(3):
        assert client.post("/checkout").status_code == 200


def test_rate_limit_health_info_without_redis():
    app = _make_app()
    client = TestClient(app)
    app.state.rate_limit_enabled = True

    info = client.get("/rl_info").json()
    assert info["enabled"] is True
    assert info["ready"] is False
    assert info["backend"] is None
