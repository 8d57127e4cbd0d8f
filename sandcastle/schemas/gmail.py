from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class OAuthCredential(BaseModel):
    """Decrypted token pair. Lives in memory for one Gmail session only."""
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None
    expiry: Optional[datetime] = None

    def __repr__(self) -> str:
        return f"OAuthCredential(scope={self.scope!r}, expiry={self.expiry!r})"

    __str__ = __repr__


class MessageHeader(BaseModel):
    name: str
    value: str = ""


class MimePart(BaseModel):
    mime_type: str = Field("", description="MIME type of this part")
    body: Optional[str] = Field(None, description="base64url body payload, if any")
    parts: List["MimePart"] = Field(default_factory=list, description="Child parts")

    @classmethod
    def from_api(cls, payload: Optional[dict]) -> "MimePart":
        payload = payload or {}
        return cls(
            mime_type=payload.get("mimeType") or "",
            body=(payload.get("body") or {}).get("data"),
            parts=[cls.from_api(p) for p in payload.get("parts") or []],
        )


MimePart.model_rebuild()


class RawMessage(BaseModel):
    id: str
    thread_id: Optional[str] = None
    headers: List[MessageHeader] = Field(default_factory=list)
    snippet: str = ""
    internal_date: Optional[int] = Field(None, description="Epoch milliseconds")
    payload: MimePart = Field(default_factory=MimePart)

    model_config = {"frozen": True}

    def header(self, name: str) -> str:
        return next((h.value for h in self.headers if h.name.lower() == name.lower()), "")

    @property
    def subject(self) -> str:
        return self.header("Subject")

    @property
    def sender(self) -> str:
        return self.header("From")

    @classmethod
    def from_api(cls, msg: dict) -> "RawMessage":
        payload = msg.get("payload") or {}
        internal_date = msg.get("internalDate")
        return cls(
            id=msg["id"],
            thread_id=msg.get("threadId"),
            headers=[
                MessageHeader(name=h.get("name", ""), value=h.get("value") or "")
                for h in payload.get("headers") or []
            ],
            snippet=msg.get("snippet") or "",
            internal_date=int(internal_date) if internal_date else None,
            payload=MimePart.from_api(payload),
        )


class MessagePage(BaseModel):
    message_ids: List[str] = Field(default_factory=list)
    next_page_token: Optional[str] = None
