"""Run one Gmail import for a user from the command line."""

import argparse

from sandcastle.core.config import get_settings
from sandcastle.core.constants import ImportMode
from sandcastle.core.database import SessionLocal, init_engine
from sandcastle.core.exceptions import ImportCancelled, SandcastleError
from sandcastle.core.logging import get_logger
from sandcastle.core.security import CredentialVault
from sandcastle.models.user import User
from sandcastle.services.import_service import ImportCoordinator
from sandcastle.services.transaction_store import TransactionStore

logger = get_logger("run_import")


def main():
    parser = argparse.ArgumentParser(description="Import Gmail payment notifications for one user")
    parser.add_argument("email", help="Email of the user to import for")
    parser.add_argument("--mode", choices=[m.value for m in ImportMode], default=ImportMode.RECENT.value)
    parser.add_argument("--timeout", type=float, default=None, help="Stop after this many seconds")
    args = parser.parse_args()

    settings = get_settings()
    init_engine(settings)
    vault = CredentialVault(settings)

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == args.email).first()
        if not user:
            logger.error(f"No user with email {args.email}")
            raise SystemExit(1)

        coordinator = ImportCoordinator(TransactionStore(db), settings, vault)
        try:
            result = coordinator.run_import(user, ImportMode(args.mode), timeout=args.timeout)
        except ImportCancelled as e:
            print(f"Timed out; imported {e.imported} transaction(s) before stopping")
            raise SystemExit(2)
        except SandcastleError as e:
            print(f"Import failed ({type(e).__name__}); imported {e.imported} transaction(s) first")
            raise SystemExit(1)

        print(f"Imported {result.imported} new transaction(s) from {result.scanned} message(s)")
    finally:
        db.close()


if __name__ == "__main__":
    main()
