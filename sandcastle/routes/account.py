from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sandcastle.core.auth_dependencies import get_current_user
from sandcastle.core.database import get_db
from sandcastle.models.user import User
from sandcastle.services.credential_service import clear_oauth_tokens

account_router = APIRouter(prefix="/api/account", tags=["Account"])


@account_router.delete("/gmail")
def disconnect_gmail(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Forget the stored Gmail tokens. Imported transactions are kept."""
    clear_oauth_tokens(db, current_user)
    return {"ok": True}
