from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field, model_validator

from sandcastle.core.constants import ImportMode, TransactionSource


# ------------------- Extraction -------------------
class ExtractedTransaction(BaseModel):
    """Candidate transaction produced from one Gmail message."""
    name: str = Field(..., description="Recipient, or subject fallback")
    merchant: str = Field("", description="From header of the notification")
    recipient: Optional[str] = Field(None, description="Text after the 'To:' label, when present")
    amount: Optional[Decimal] = Field(None, description="None when no amount could be parsed")
    currency: str
    occurred_at: datetime
    source: TransactionSource = TransactionSource.IMPORTED
    message_id: str
    thread_id: Optional[str] = None
    needs_review: bool = False

    @model_validator(mode="after")
    def check_review_flag(self):
        if self.needs_review and self.amount is not None:
            raise ValueError("needs_review is only set when amount is missing")
        return self

    def to_row(self, user_id: int) -> dict:
        return {
            "user_id": user_id,
            "name": self.name,
            "merchant": self.merchant,
            "recipient": self.recipient,
            "amount": self.amount,
            "currency": self.currency,
            "occurred_at": self.occurred_at,
            "source": self.source.value,
            "message_id": self.message_id,
            "thread_id": self.thread_id,
            "needs_review": self.needs_review,
        }


# ------------------- Import trigger -------------------
class ImportRequest(BaseModel):
    mode: ImportMode = Field(ImportMode.RECENT, description="'full' month backfill or 'recent' top-up")


class ImportResponse(BaseModel):
    mode: ImportMode
    imported: int = Field(..., description="Rows actually inserted by this run")
    scanned: int = Field(..., description="Message ids listed from Gmail")


class ImportErrorResponse(BaseModel):
    detail: str
    imported: int = 0


# ------------------- Stored transactions -------------------
class TransactionResponse(BaseModel):
    id: int
    name: str
    merchant: Optional[str] = None
    recipient: Optional[str] = None
    amount: Decimal
    currency: str
    occurred_at: datetime
    category_id: Optional[int] = None
    source: str
    message_id: Optional[str] = None
    needs_review: bool
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TransactionListResponse(BaseModel):
    transactions: List[TransactionResponse]
    total: int
