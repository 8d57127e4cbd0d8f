from sqlalchemy import (
    Column, Integer, String, Text, Numeric, DateTime, Boolean, ForeignKey, Index, func, text
)
from sqlalchemy.orm import relationship

from sandcastle.core.constants import TransactionSource
from sandcastle.core.database import Base


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    merchant = Column(String(255), nullable=True)
    recipient = Column(String(255), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(8), nullable=False, default="SGD")
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    category_id = Column(Integer, nullable=True, index=True)
    source = Column(String(20), nullable=False, default=TransactionSource.MANUAL.value)
    message_id = Column(String(64), nullable=True)
    thread_id = Column(String(64), nullable=True)
    needs_review = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="transactions")

    # Dedup key for imported rows; manual rows have no message_id and are exempt
    __table_args__ = (
        Index(
            "uq_transactions_user_message",
            "user_id",
            "message_id",
            unique=True,
            postgresql_where=text("message_id IS NOT NULL"),
            sqlite_where=text("message_id IS NOT NULL"),
        ),
    )
