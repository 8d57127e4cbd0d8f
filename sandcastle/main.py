from typing import Optional

from fastapi import FastAPI

from sandcastle.core.config import Settings, get_settings
from sandcastle.core.database import Base, init_engine
from sandcastle.core.logging import get_logger, set_log_level
from sandcastle.core.rate_limit import SlidingWindowLimiter
from sandcastle.core.security import CredentialVault
from sandcastle.models.transaction import Transaction  # noqa: F401
from sandcastle.models.user import User  # noqa: F401
from sandcastle.routes.account import account_router
from sandcastle.routes.imports import import_router
from sandcastle.routes.transactions import transaction_router

logger = get_logger("sandcastle")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the API. Configuration is validated here, so a missing or bad
    ENCRYPTION_KEY stops the process before it serves anything.

        uvicorn --factory sandcastle.main:create_app
    """
    settings = settings or get_settings()
    set_log_level(settings.LOG_LEVEL)
    vault = CredentialVault(settings)

    engine = init_engine(settings)
    Base.metadata.create_all(bind=engine)

    app = FastAPI(title="Sandcastle API", version="1.0.0")
    app.state.settings = settings
    app.state.vault = vault
    app.state.import_limiter = SlidingWindowLimiter(settings.IMPORT_RATE_LIMIT_PER_MINUTE, window_seconds=60)

    # Include all routers
    app.include_router(import_router)
    app.include_router(account_router)
    app.include_router(transaction_router)

    @app.get("/health")
    def health():
        return {"ok": True, "environment": settings.ENVIRONMENT}

    logger.info(f"Sandcastle API configured ({settings.ENVIRONMENT})")
    return app
