from sandcastle.core.constants import ImportMode
from sandcastle.core.database import SessionLocal
from sandcastle.core.exceptions import AuthError, TransientProviderError
from sandcastle.core.logging import get_logger
from sandcastle.core.security import CredentialVault
from sandcastle.tasks.import_jobs import connected_user_ids, import_for_user
from sandcastle.worker_app import celery_app, settings

logger = get_logger("gmail_import_task")
vault = CredentialVault(settings)


@celery_app.task(
    bind=True,
    max_retries=2,
    rate_limit=f"{settings.IMPORT_RATE_LIMIT_PER_MINUTE}/m",
    name="sandcastle.tasks.gmail_import.run_user_import",
)
def run_user_import(self, user_id: int, mode: str = ImportMode.RECENT.value):
    db = SessionLocal()
    try:
        result = import_for_user(db, user_id, ImportMode(mode), settings, vault)
        logger.info(f"[user {user_id}] Imported {result.imported} of {result.scanned} message(s).")
        return result.model_dump(mode="json")

    except AuthError as e:
        # A new run will not help until the user reconnects Gmail
        logger.warning(f"[user {user_id}] Reconnect required: {e}")
        return {"mode": mode, "imported": e.imported, "status": "reconnect_required"}

    except TransientProviderError as e:
        logger.error(f"[user {user_id}] Gmail unavailable after retries, imported {e.imported} so far.")
        # Re-running is safe: rows are inserted only if absent
        raise self.retry(exc=e, countdown=300)

    finally:
        db.close()
        logger.info(f"[user {user_id}] DB session closed.")


@celery_app.task(name="sandcastle.tasks.gmail_import.import_all_connected_users")
def import_all_connected_users(mode: str = ImportMode.RECENT.value):
    db = SessionLocal()
    try:
        user_ids = connected_user_ids(db)
    finally:
        db.close()

    for user_id in user_ids:
        run_user_import.delay(user_id, mode)
    logger.info(f"Scheduled {mode} import for {len(user_ids)} connected account(s).")
    return len(user_ids)
