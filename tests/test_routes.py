"""API tests: import trigger, error mapping, disconnect and listing."""
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from conftest import FakeGmailService, debit_message
from test_import_service import FIXED_NOW, make_coordinator
from sandcastle.core.constants import TransactionSource
from sandcastle.core.database import get_db
from sandcastle.core.exceptions import AuthError, DecodeError, SandcastleError, TransientProviderError
from sandcastle.core.security import ALGORITHM
from sandcastle.main import create_app
from sandcastle.models.transaction import Transaction
from sandcastle.routes.imports import (
    IMPORT_FAILED,
    RECONNECT_REQUIRED,
    TEMPORARILY_UNAVAILABLE,
    get_import_coordinator,
)


class RaisingCoordinator:
    def __init__(self, error):
        self.error = error

    def run_import(self, user, mode):
        raise self.error


def failing(error_cls, imported, *args):
    error = error_cls(*args)
    error.imported = imported
    return error


@pytest.fixture
def app(settings, db):
    app = create_app(settings)

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def auth_headers(settings, user):
    token = jwt.encode({"sub": str(user.id), "type": "access"}, settings.SECRET_KEY, algorithm=ALGORITHM)
    return {"Authorization": f"Bearer {token}"}


def test_health(client):
    assert client.get("/health").json() == {"ok": True, "environment": "development"}


class TestImportEndpoint:

    def test_requires_authentication(self, client):
        assert client.post("/api/import", json={"mode": "full"}).status_code == 401

    def test_unknown_user(self, client, settings):
        token = jwt.encode({"sub": "999", "type": "access"}, settings.SECRET_KEY, algorithm=ALGORITHM)
        resp = client.post("/api/import", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_full_import(self, app, client, auth_headers, db, settings, vault, user):
        service = FakeGmailService(pages=[["m1"], ["m2"]], messages=[debit_message("m1"), debit_message("m2")])
        app.dependency_overrides[get_import_coordinator] = lambda: make_coordinator(db, settings, vault, service)

        resp = client.post("/api/import", json={"mode": "full"}, headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json() == {"mode": "full", "imported": 2, "scanned": 2}

    def test_defaults_to_recent(self, app, client, auth_headers, db, settings, vault):
        service = FakeGmailService(pages=[["m1"], ["m2"]], messages=[debit_message("m1"), debit_message("m2")])
        app.dependency_overrides[get_import_coordinator] = lambda: make_coordinator(db, settings, vault, service)

        resp = client.post("/api/import", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["mode"] == "recent"
        assert len(service.list_calls) == 1

    def test_rejects_unknown_mode(self, client, auth_headers):
        assert client.post("/api/import", json={"mode": "everything"}, headers=auth_headers).status_code == 422

    @pytest.mark.parametrize("error,status,detail", [
        (failing(AuthError, 3, "token revoked by provider"), 401, RECONNECT_REQUIRED),
        (failing(TransientProviderError, 5, "HTTP 503 from googleapis"), 503, TEMPORARILY_UNAVAILABLE),
        (failing(SandcastleError, 0, "HTTP 400 Invalid query"), 500, IMPORT_FAILED),
        (failing(DecodeError, 1, "bad payload", "m9"), 500, IMPORT_FAILED),
    ])
    def test_error_mapping(self, app, client, auth_headers, error, status, detail):
        app.dependency_overrides[get_import_coordinator] = lambda: RaisingCoordinator(error)

        resp = client.post("/api/import", json={"mode": "full"}, headers=auth_headers)
        assert resp.status_code == status
        assert resp.json() == {"detail": detail, "imported": error.imported}

    def test_rate_limited(self, settings, db, user, auth_headers):
        app = create_app(settings.model_copy(update={"IMPORT_RATE_LIMIT_PER_MINUTE": 2}))
        app.dependency_overrides[get_db] = lambda: db
        app.dependency_overrides[get_import_coordinator] = lambda: RaisingCoordinator(failing(SandcastleError, 0))
        client = TestClient(app)

        codes = [client.post("/api/import", headers=auth_headers).status_code for _ in range(3)]
        assert codes == [500, 500, 429]


class TestAccount:

    def test_disconnect_gmail(self, client, auth_headers, db, user):
        resp = client.delete("/api/account/gmail", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json() == {"ok": True}

        db.refresh(user)
        assert user.oauth_access_token is None
        assert user.oauth_refresh_token is None
        assert not user.gmail_connected


class TestTransactions:

    def add(self, db, user, name, category_id=None, message_id=None):
        db.add(Transaction(
            user_id=user.id,
            name=name,
            amount=Decimal("10.00"),
            currency="SGD",
            occurred_at=FIXED_NOW,
            category_id=category_id,
            source=TransactionSource.IMPORTED.value if message_id else TransactionSource.MANUAL.value,
            message_id=message_id,
        ))
        db.commit()

    def test_lists_own_transactions(self, client, auth_headers, db, user):
        self.add(db, user, "Kopi", message_id="m1")
        self.add(db, user, "Cash", category_id=2)

        body = client.get("/api/transactions/", headers=auth_headers).json()
        assert body["total"] == 2
        assert {t["name"] for t in body["transactions"]} == {"Kopi", "Cash"}
        assert body["transactions"][0]["amount"] == "10.00"

    def test_category_filter(self, client, auth_headers, db, user):
        self.add(db, user, "Kopi", message_id="m1")
        self.add(db, user, "Cash", category_id=2)

        body = client.get("/api/transactions/", params={"category_id": 2}, headers=auth_headers).json()
        assert body["total"] == 1
        assert body["transactions"][0]["name"] == "Cash"
        assert body["transactions"][0]["source"] == "manual"
