from typing import Optional

from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from sandcastle.core.auth_dependencies import enforce_import_rate_limit, get_app_settings, get_vault
from sandcastle.core.config import Settings
from sandcastle.core.database import get_db
from sandcastle.core.exceptions import AuthError, SandcastleError, TransientProviderError
from sandcastle.core.logging import get_logger
from sandcastle.core.security import CredentialVault
from sandcastle.models.user import User
from sandcastle.schemas.transaction import ImportErrorResponse, ImportRequest, ImportResponse
from sandcastle.services.import_service import ImportCoordinator
from sandcastle.services.transaction_store import TransactionStore

logger = get_logger("import_router")

import_router = APIRouter(prefix="/api/import", tags=["Import"])

RECONNECT_REQUIRED = "reconnect required"
TEMPORARILY_UNAVAILABLE = "temporarily unavailable"
IMPORT_FAILED = "import failed, try again"


def get_import_coordinator(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    vault: CredentialVault = Depends(get_vault),
) -> ImportCoordinator:
    return ImportCoordinator(TransactionStore(db), settings, vault)


def error_response(exc: SandcastleError) -> JSONResponse:
    """Map pipeline errors to user-facing messages; provider text stays in the logs."""
    if isinstance(exc, AuthError):
        code, detail = status.HTTP_401_UNAUTHORIZED, RECONNECT_REQUIRED
    elif isinstance(exc, TransientProviderError):
        code, detail = status.HTTP_503_SERVICE_UNAVAILABLE, TEMPORARILY_UNAVAILABLE
    else:
        code, detail = status.HTTP_500_INTERNAL_SERVER_ERROR, IMPORT_FAILED
    body = ImportErrorResponse(detail=detail, imported=exc.imported)
    return JSONResponse(status_code=code, content=body.model_dump())


@import_router.post(
    "",
    response_model=ImportResponse,
    responses={401: {"model": ImportErrorResponse}, 500: {"model": ImportErrorResponse}, 503: {"model": ImportErrorResponse}},
)
def run_import(
    import_request: Optional[ImportRequest] = Body(None),
    current_user: User = Depends(enforce_import_rate_limit),
    coordinator: ImportCoordinator = Depends(get_import_coordinator),
):
    """
    Import Gmail payment notifications for the current user.

    - **recent**: one bounded page from the trailing window
    - **full**: every page since the start of the month
    """
    try:
        return coordinator.run_import(current_user, (import_request or ImportRequest()).mode)
    except SandcastleError as e:
        logger.error(f"[user {current_user.id}] Import request failed: {e!r}")
        return error_response(e)
