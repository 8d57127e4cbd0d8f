from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from sandcastle.core.exceptions import AuthError
from sandcastle.core.logging import get_logger
from sandcastle.core.security import CredentialVault
from sandcastle.models.user import User
from sandcastle.schemas.gmail import OAuthCredential

logger = get_logger("credentials")


def store_oauth_tokens(
    db: Session,
    user: User,
    vault: CredentialVault,
    access_token: Optional[str],
    refresh_token: Optional[str],
    scope: Optional[str] = None,
    expiry: Optional[datetime] = None,
) -> User:
    user.oauth_access_token = vault.encrypt(access_token)
    # Google only sends a refresh token on first consent; keep the old one otherwise
    if refresh_token:
        user.oauth_refresh_token = vault.encrypt(refresh_token)
    user.oauth_scope = scope
    user.oauth_expiry = expiry
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"[user {user.id}] Stored Gmail credentials.")
    return user


def load_oauth_credential(user: User, vault: CredentialVault) -> OAuthCredential:
    credential = OAuthCredential(
        access_token=vault.decrypt(user.oauth_access_token),
        refresh_token=vault.decrypt(user.oauth_refresh_token),
        scope=user.oauth_scope,
        expiry=user.oauth_expiry,
    )
    if not credential.access_token and not credential.refresh_token:
        raise AuthError("Gmail is not connected for this account")
    return credential


def clear_oauth_tokens(db: Session, user: User) -> User:
    user.oauth_access_token = None
    user.oauth_refresh_token = None
    user.oauth_scope = None
    user.oauth_expiry = None
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"[user {user.id}] Gmail disconnected.")
    return user
