"""
Pytest configuration and fixtures shared by the import pipeline tests.
"""
import base64
import os

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sandcastle.core.config import Settings
from sandcastle.core.database import Base
from sandcastle.core.security import CredentialVault
from sandcastle.models.transaction import Transaction  # noqa: F401
from sandcastle.models.user import User


def b64url(text: str) -> str:
    """Gmail-style base64url with the padding stripped."""
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def make_message(
    message_id,
    subject="PayNow Transfer",
    snippet="",
    html="",
    plain="",
    sender="ibanking.alert@dbs.com",
    internal_date="1717200000000",
    thread_id=None,
):
    """Gmail API `messages.get(format='full')` payload."""
    parts = []
    if plain:
        parts.append({"mimeType": "text/plain", "body": {"data": b64url(plain)}, "parts": []})
    if html:
        parts.append({"mimeType": "text/html", "body": {"data": b64url(html)}, "parts": []})
    msg = {
        "id": message_id,
        "threadId": thread_id or f"thread-{message_id}",
        "snippet": snippet,
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "From", "value": sender},
                {"name": "Subject", "value": subject},
                {"name": "Date", "value": "Sat, 01 Jun 2024 08:00:00 +0800"},
            ],
            "body": {"size": 0},
            "parts": parts,
        },
    }
    if internal_date is not None:
        msg["internalDate"] = internal_date
    return msg


def debit_message(message_id, amount="12.30", to="ALEX TAN"):
    html = (
        "<html><body><table>"
        f"<tr><td>Amount:</td><td>SGD&nbsp;{amount}</td></tr>"
        f"<tr><td>To:</td><td>{to}</td></tr>"
        "<tr><td>If unauthorised, call 1800 111 1111.</td></tr>"
        "</table></body></html>"
    )
    return make_message(message_id, html=html)


class FakeRequest:
    def __init__(self, fn):
        self.fn = fn

    def execute(self, http=None):
        return self.fn()


class FakeGmailService:
    """
    Stands in for the discovery-built Gmail resource:
    service.users().messages().list(...).execute()
    """

    def __init__(self, pages=None, messages=None):
        self.pages = pages or [[]]
        self.store = {m["id"]: m for m in (messages or [])}
        self.list_calls = []
        self.get_calls = []
        self.list_errors = []
        self.get_errors = {}

    def users(self):
        return self

    def messages(self):
        return self

    def list(self, **params):
        def run():
            self.list_calls.append(params)
            if self.list_errors:
                raise self.list_errors.pop(0)
            index = int(params.get("pageToken") or 0)
            page = self.pages[index][: params.get("maxResults")]
            resp = {"messages": [{"id": m, "threadId": f"thread-{m}"} for m in page]}
            if index + 1 < len(self.pages):
                resp["nextPageToken"] = str(index + 1)
            return resp
        return FakeRequest(run)

    def get(self, userId, id, format="full"):
        def run():
            self.get_calls.append(id)
            errors = self.get_errors.get(id)
            if errors:
                raise errors.pop(0)
            return self.store[id]
        return FakeRequest(run)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        SECRET_KEY="test-secret",
        GOOGLE_CLIENT_ID="client-id.apps.googleusercontent.com",
        GOOGLE_CLIENT_SECRET="client-secret",
        ENCRYPTION_KEY=os.urandom(32).hex(),
        DATABASE_URL="sqlite://",
        GMAIL_BACKOFF_SECONDS=0,
    )


@pytest.fixture
def vault(settings):
    return CredentialVault(settings)


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def user(db, vault):
    u = User(
        google_id="google-123",
        email="alex@example.com",
        name="Alex",
        oauth_access_token=vault.encrypt("ya29.access"),
        oauth_refresh_token=vault.encrypt("1//refresh"),
        oauth_scope="https://www.googleapis.com/auth/gmail.readonly",
    )
    db.add(u)
    db.commit()
    db.refresh(u)
    return u
