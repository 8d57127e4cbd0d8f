from sqlalchemy import Column, Integer, String, Text, DateTime, func
from sqlalchemy.orm import relationship

from sandcastle.core.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    google_id = Column(String(64), nullable=False, unique=True)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=True)
    avatar = Column(String(512), nullable=True)

    # vault ciphertext, never plaintext
    oauth_access_token = Column(Text, nullable=True)
    oauth_refresh_token = Column(Text, nullable=True)
    oauth_scope = Column(String(512), nullable=True)
    oauth_expiry = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    transactions = relationship("Transaction", back_populates="user")

    @property
    def gmail_connected(self) -> bool:
        return bool(self.oauth_access_token or self.oauth_refresh_token)
