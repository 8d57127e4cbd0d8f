from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from sandcastle.core.config import Settings
from sandcastle.core.database import get_db
from sandcastle.core.security import CredentialVault, verify_access_token
from sandcastle.models.user import User

security = HTTPBearer(auto_error=False)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_vault(request: Request) -> CredentialVault:
    return request.app.state.vault


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> User:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_access_token(credentials.credentials, settings)
    user = None
    if payload and str(payload.get("sub", "")).isdigit():
        user = db.get(User, int(payload["sub"]))

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user


def enforce_import_rate_limit(request: Request, current_user: User = Depends(get_current_user)) -> User:
    if not request.app.state.import_limiter.hit(current_user.id):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many import requests, try again in a minute",
        )
    return current_user
