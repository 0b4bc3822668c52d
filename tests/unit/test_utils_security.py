from types import SimpleNamespace
from unittest.mock import MagicMock

from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from marketplace.utils import security as security_mod
from marketplace.utils.security import (
    COOKIE_NAME,
    RequestContext,
    determine_role,
    require_supplier_or_admin,
    require_user,
)


def _make_app():
    app = FastAPI()

    @app.get("/me")
    def me(ctx: RequestContext = Depends(require_user)):
        return {"user_id": ctx.user_id, "role": ctx.role, "token": ctx.token}

    @app.get("/supplier")
    def supplier(ctx: RequestContext = Depends(require_supplier_or_admin)):
        return {"ok": True}

    return app


def _fake_supabase(monkeypatch, user):
    client = MagicMock()
    client.auth.get_user.return_value = SimpleNamespace(user=user)
    monkeypatch.setattr("marketplace.infra.supabase_client.get_supabase", lambda: client)
    return client


def test_determine_role():
    assert determine_role({"role": "ADMIN"}) == "admin"
    assert determine_role({"role": "supplier"}) == "supplier"
    assert determine_role({"role": "scanner"}) == "customer"
    assert determine_role(None) == "customer"


def test_missing_token_is_401():
    client = TestClient(_make_app())
    assert client.get("/me").status_code == 401


def test_bearer_token_resolves_context(monkeypatch):
    supa = _fake_supabase(monkeypatch, {"id": "u1", "email": "u1@example.com", "user_metadata": {"role": "supplier"}})
    client = TestClient(_make_app())

    res = client.get("/me", headers={"Authorization": "Bearer jwt-1"})
    assert res.status_code == 200
    assert res.json() == {"user_id": "u1", "role": "supplier", "token": "jwt-1"}
    supa.auth.get_user.assert_called_once_with("jwt-1")
    assert client.get("/supplier", headers={"Authorization": "Bearer jwt-1"}).status_code == 200


def test_customer_cannot_reach_supplier_route(monkeypatch):
    _fake_supabase(monkeypatch, {"id": "u4", "user_metadata": {}})
    client = TestClient(_make_app())
    res = client.get("/supplier", headers={"Authorization": "Bearer jwt-4"})
    assert res.status_code == 403


def test_cookie_token_fallback(monkeypatch):
    _fake_supabase(monkeypatch, {"id": "u2", "user_metadata": {}})
    client = TestClient(_make_app())
    client.cookies.set(COOKIE_NAME, "cookie-jwt")

    res = client.get("/me")
    assert res.status_code == 200
    assert res.json()["role"] == "customer"
    assert client.get("/supplier").status_code == 403


def test_rejected_token_is_401(monkeypatch):
    client_mock = MagicMock()
    client_mock.auth.get_user.side_effect = Exception("invalid JWT")
    monkeypatch.setattr("marketplace.infra.supabase_client.get_supabase", lambda: client_mock)
    client = TestClient(_make_app())
    assert client.get("/me", headers={"Authorization": "Bearer bad"}).status_code == 401


def test_user_object_is_normalized(monkeypatch):
    user = SimpleNamespace(id="u3", email="u3@example.com", user_metadata={"role": "admin"})
    _fake_supabase(monkeypatch, user)
    data = security_mod.get_user_from_access_token("jwt")
    assert data == {"id": "u3", "email": "u3@example.com", "user_metadata": {"role": "admin"}}
