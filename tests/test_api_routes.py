from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from postgrest.exceptions import APIError

from app.core.entitlements import require_feature, require_pro
from app.core.security import require_auth
from app.main import create_app
from app.services import billing
from conftest import HOOKS_SECRET

USER = "11111111-1111-4111-8111-111111111111"
HOOK_HEADERS = {"Authorization": f"Bearer {HOOKS_SECRET}"}


def _auth_as(app: FastAPI, sub: str = USER, superadmin: bool = False, email: str = "coach@example.com") -> None:
    payload = {"sub": sub, "email": email, "app_metadata": {"is_superadmin": superadmin}}
    app.dependency_overrides[require_auth] = lambda: payload


@pytest.fixture()
def app(fake_db) -> FastAPI:
    return create_app()


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


# ---------------------------------------------------------------------------
# /pro-status
# ---------------------------------------------------------------------------


def test_my_pro_status_requires_auth(client):
    assert client.get("/pro-status/me").status_code == 401


def test_my_pro_status_during_trial(app, client, fake_db):
    fake_db.seed(USER, is_pro=True, pro_expires_at=datetime.now(timezone.utc) + timedelta(days=5, hours=1))
    _auth_as(app)

    response = client.get("/pro-status/me")

    assert response.status_code == 200, response.text
    payload = response.json()
    assert payload["is_pro"] is True
    assert payload["plan"] == "pro"
    assert payload["days_remaining"] == 6
    assert payload["is_loading"] is False


def test_my_pro_status_without_record(app, client):
    _auth_as(app)

    payload = client.get("/pro-status/me").json()

    assert payload["is_pro"] is False
    assert payload["plan"] == "free"


# ---------------------------------------------------------------------------
# /hooks
# ---------------------------------------------------------------------------


def test_user_created_hook_grants_trial(client, fake_db):
    response = client.post("/hooks/user-created", json={"user_id": USER}, headers=HOOK_HEADERS)

    assert response.status_code == 200, response.text
    assert response.json()["is_pro"] is True
    assert fake_db.rows()[USER]["override_pro"] is False


def test_user_created_hook_accepts_database_webhook_payload(client, fake_db):
    body = {"type": "INSERT", "table": "users", "schema": "auth", "record": {"id": USER}, "old_record": None}

    response = client.post("/hooks/user-created", json=body, headers=HOOK_HEADERS)

    assert response.status_code == 200
    assert USER in fake_db.rows()


def test_user_created_hook_redelivery_keeps_window(client, fake_db):
    first = client.post("/hooks/user-created", json={"user_id": USER}, headers=HOOK_HEADERS).json()
    second = client.post("/hooks/user-created", json={"user_id": USER}, headers=HOOK_HEADERS).json()

    assert first["pro_expires_at"] == second["pro_expires_at"]
    assert len(fake_db.rows()) == 1


def test_user_created_hook_requires_user_id(client):
    response = client.post("/hooks/user-created", json={"type": "INSERT"}, headers=HOOK_HEADERS)
    assert response.status_code == 422


@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer nope"}])
def test_hooks_reject_bad_secret(client, fake_db, headers):
    response = client.post("/hooks/user-created", json={"user_id": USER}, headers=headers)

    assert response.status_code == 401
    assert fake_db.rows() == {}


def test_expire_hook_runs_sweep(client, fake_db):
    past = datetime.now(timezone.utc) - timedelta(days=1)
    fake_db.seed(USER, is_pro=True, pro_expires_at=past)
    fake_db.seed("comped", is_pro=True, override_pro=True, pro_expires_at=past)

    response = client.post("/hooks/expire-pro", headers=HOOK_HEADERS)

    assert response.status_code == 200, response.text
    assert response.json() == {"downgraded": 1, "failed": []}
    assert fake_db.rows()[USER]["is_pro"] is False
    assert fake_db.rows()["comped"]["is_pro"] is True


def test_expire_hook_reports_failures(client, fake_db):
    fake_db.seed(USER, is_pro=True, pro_expires_at=datetime.now(timezone.utc) - timedelta(days=1))

    def _boom(query):
        if query.op == "update":
            raise APIError({"message": "could not obtain lock on row", "code": "55P03", "hint": None, "details": None})

    fake_db.before_execute = _boom

    response = client.post("/hooks/expire-pro", headers=HOOK_HEADERS)

    assert response.status_code == 500
    assert response.json()["detail"]["failed"] == [USER]


# ---------------------------------------------------------------------------
# /admin
# ---------------------------------------------------------------------------


def test_admin_routes_require_superadmin(app, client):
    _auth_as(app, superadmin=False)

    response = client.put(f"/admin/pro-status/{USER}/comp", json={"notes": "x"})

    assert response.status_code == 403


def test_admin_comp_and_revoke(app, client, fake_db):
    fake_db.seed(USER, is_pro=False, pro_expires_at=datetime.now(timezone.utc) - timedelta(days=3))
    _auth_as(app, sub="admin-1", superadmin=True)

    comp = client.put(f"/admin/pro-status/{USER}/comp", json={"notes": "comped"})
    assert comp.status_code == 200, comp.text
    assert comp.json()["effective_is_pro"] is True
    assert comp.json()["record"]["notes"] == "comped"
    assert fake_db.rows()[USER]["pro_expires_at"] is None

    view = client.get(f"/admin/pro-status/{USER}")
    assert view.json()["plan"] == "pro"
    assert view.json()["record"]["override_pro"] is True

    revoked = client.delete(f"/admin/pro-status/{USER}/comp")
    assert revoked.status_code == 200
    assert revoked.json()["effective_is_pro"] is False
    assert fake_db.rows()[USER]["override_pro"] is False


def test_admin_view_of_unknown_user(app, client):
    _auth_as(app, superadmin=True)

    payload = client.get("/admin/pro-status/nobody").json()

    assert payload["record"] is None
    assert payload["effective_is_pro"] is False
    assert payload["plan"] == "free"


# ---------------------------------------------------------------------------
# /billing/checkout
# ---------------------------------------------------------------------------


def test_checkout_creates_session_with_user_metadata(app, client, monkeypatch):
    captured = {}

    def _fake_create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(url="https://checkout.stripe.com/c/pay/cs_test_1")

    monkeypatch.setattr(billing.stripe.checkout.Session, "create", _fake_create)
    _auth_as(app)

    response = client.post("/billing/checkout")

    assert response.status_code == 200, response.text
    assert response.json() == {"url": "https://checkout.stripe.com/c/pay/cs_test_1"}
    assert captured["metadata"] == {"user_id": USER}
    assert captured["subscription_data"] == {"metadata": {"user_id": USER}}
    assert captured["customer_email"] == "coach@example.com"
    assert captured["line_items"] == [{"price": "price_pro_monthly", "quantity": 1}]


def test_checkout_not_configured(app, client, monkeypatch):
    monkeypatch.setenv("STRIPE_PRICE_PRO_MONTHLY", "")
    billing.get_settings.cache_clear()
    _auth_as(app)

    assert client.post("/billing/checkout").status_code == 500


# ---------------------------------------------------------------------------
# Feature gating
# ---------------------------------------------------------------------------


@pytest.fixture()
def gated_client(fake_db) -> TestClient:
    gated = FastAPI()

    @gated.get("/ai-assistant/analytics")
    def ai_analytics(user_id: str = Depends(require_feature("ai_analytics"))):
        return {"user_id": user_id}

    @gated.get("/analytics")
    def analytics(user_id: str = Depends(require_feature("basic_analytics"))):
        return {"user_id": user_id}

    @gated.get("/pro-only")
    def pro_only(user_id: str = Depends(require_pro)):
        return {"user_id": user_id}

    gated.dependency_overrides[require_auth] = lambda: {"sub": USER}
    return TestClient(gated)


def test_gate_blocks_free_users(gated_client):
    response = gated_client.get("/ai-assistant/analytics")

    assert response.status_code == 403
    detail = response.json()["detail"]
    assert detail["code"] == "PRO_REQUIRED"
    assert detail["upgrade_required"] is True
    assert detail["plan"] == "free"


def test_gate_blocks_expired_unswept_trial(gated_client, fake_db):
    fake_db.seed(USER, is_pro=True, pro_expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))

    assert gated_client.get("/pro-only").status_code == 403


def test_gate_allows_pro_users(gated_client, fake_db):
    fake_db.seed(USER, is_pro=True, override_pro=True)

    assert gated_client.get("/ai-assistant/analytics").json() == {"user_id": USER}
    assert gated_client.get("/pro-only").status_code == 200


def test_free_features_are_open(gated_client):
    assert gated_client.get("/analytics").status_code == 200
