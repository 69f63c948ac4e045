import time

import jwt
import pytest
from fastapi import FastAPI, Depends
from fastapi.testclient import TestClient

from bag2go.utils import security as security_mod
from bag2go.utils.security import (
    COOKIE_NAME,
    determine_role,
    get_current_user,
    require_admin,
)

SECRET = "unit-jwt-secret"

def _token(secret=SECRET, **claims):
    payload = {"sub": "u1", "email": "a@b.dev", "aud": "authenticated", "exp": int(time.time()) + 3600}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")

def _make_app():
    app = FastAPI()

    @app.get("/me")
    def me(user=Depends(get_current_user)):
        return {k: v for k, v in user.items() if k != "token"}

    @app.get("/admin")
    def admin(user=Depends(require_admin)):
        return {"ok": True}

    return app

@pytest.fixture(autouse=True)
def _jwt_secret(monkeypatch):
    monkeypatch.setattr(security_mod, "JWT_SECRET", SECRET, raising=True)


def test_determine_role_sources():
    assert determine_role({"app_metadata": {"role": "admin"}}) == "admin"
    assert determine_role({"user_role": "ADMIN"}) == "admin"
    assert determine_role({"role": "admin"}) == "admin"
    # claim Supabase standard
    assert determine_role({"role": "authenticated"}) == "user"
    assert determine_role(None) == "user"

def test_get_current_user_bearer_success():
    client = TestClient(_make_app())
    r = client.get("/me", headers={"Authorization": f"Bearer {_token()}"})
    assert r.status_code == 200
    assert r.json() == {"id": "u1", "email": "a@b.dev", "role": "user"}

def test_get_current_user_cookie_fallback():
    client = TestClient(_make_app())
    client.cookies.set(COOKIE_NAME, _token(app_metadata={"role": "admin"}))
    r = client.get("/me")
    assert r.status_code == 200
    assert r.json()["role"] == "admin"

def test_get_current_user_missing_token_401():
    r = TestClient(_make_app()).get("/me")
    assert r.status_code == 401
    assert "Non authentifié" in r.text

def test_get_current_user_expired_token_401():
    r = TestClient(_make_app()).get("/me", headers={"Authorization": f"Bearer {_token(exp=int(time.time()) - 10)}"})
    assert r.status_code == 401
    assert "Session expirée" in r.text

def test_get_current_user_wrong_signature_401():
    r = TestClient(_make_app()).get("/me", headers={"Authorization": f"Bearer {_token(secret='other')}"})
    assert r.status_code == 401

def test_get_current_user_without_sub_401():
    token = jwt.encode({"email": "x@y", "exp": int(time.time()) + 60}, SECRET, algorithm="HS256")
    r = TestClient(_make_app()).get("/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401

def test_unconfigured_secret_rejects(monkeypatch):
    monkeypatch.setattr(security_mod, "JWT_SECRET", "", raising=True)
    r = TestClient(_make_app()).get("/me", headers={"Authorization": f"Bearer {_token()}"})
    assert r.status_code == 401

def test_require_admin_forbidden_and_allowed():
    client = TestClient(_make_app())
    r_forbidden = client.get("/admin", headers={"Authorization": f"Bearer {_token()}"})
    assert r_forbidden.status_code == 403

    r_ok = client.get("/admin", headers={"Authorization": f"Bearer {_token(app_metadata={'role': 'admin'})}"})
    assert r_ok.status_code == 200
    assert r_ok.json() == {"ok": True}
