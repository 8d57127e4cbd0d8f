from typing import List

from sqlalchemy import or_
from sqlalchemy.orm import Session

from sandcastle.core.config import Settings
from sandcastle.core.constants import ImportMode
from sandcastle.core.exceptions import AuthError
from sandcastle.core.security import CredentialVault
from sandcastle.models.user import User
from sandcastle.schemas.transaction import ImportResponse
from sandcastle.services.import_service import ImportCoordinator
from sandcastle.services.transaction_store import TransactionStore


def import_for_user(
    db: Session,
    user_id: int,
    mode: ImportMode,
    settings: Settings,
    vault: CredentialVault,
    coordinator_cls=ImportCoordinator,
) -> ImportResponse:
    user = db.get(User, user_id)
    if not user:
        raise AuthError(f"User {user_id} not found")
    coordinator = coordinator_cls(TransactionStore(db), settings, vault)
    return coordinator.run_import(user, mode)


def connected_user_ids(db: Session) -> List[int]:
    rows = (
        db.query(User.id)
        .filter(or_(User.oauth_access_token.isnot(None), User.oauth_refresh_token.isnot(None)))
        .order_by(User.id)
        .all()
    )
    return [r.id for r in rows]
