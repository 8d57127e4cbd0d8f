"""
Run this script manually to connect a user's Gmail account.

It runs Google's installed-app OAuth flow with the application's client
id/secret from .env and stores the resulting tokens, vault-encrypted, on the
existing user record.
"""

import argparse
from datetime import timezone

from google_auth_oauthlib.flow import InstalledAppFlow

from sandcastle.core.config import get_settings
from sandcastle.core.database import SessionLocal, init_engine
from sandcastle.core.security import CredentialVault
from sandcastle.models.user import User
from sandcastle.services.credential_service import store_oauth_tokens
from sandcastle.services.transaction_store import TransactionStore  # noqa: F401  (registers models)


def client_config(settings) -> dict:
    return {
        "installed": {
            "client_id": settings.GOOGLE_CLIENT_ID,
            "client_secret": settings.GOOGLE_CLIENT_SECRET,
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": settings.GOOGLE_TOKEN_URI,
            "redirect_uris": [settings.GOOGLE_CALLBACK_URL, "http://localhost"],
        }
    }


def connect(email: str, port: int = 0):
    settings = get_settings()
    init_engine(settings)
    vault = CredentialVault(settings)

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email).first()
        if not user:
            print(f"[ERROR] No user with email {email}; sign in to the app first.")
            return False

        flow = InstalledAppFlow.from_client_config(client_config(settings), settings.GMAIL_SCOPES)
        creds = flow.run_local_server(port=port)

        store_oauth_tokens(
            db,
            user,
            vault,
            access_token=creds.token,
            refresh_token=creds.refresh_token,
            scope=" ".join(creds.scopes or settings.GMAIL_SCOPES),
            expiry=creds.expiry.replace(tzinfo=timezone.utc) if creds.expiry else None,
        )
        print(f"[OK] Gmail connected for {email}")
        return True
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(description="Connect a user's Gmail account for transaction import")
    parser.add_argument("email", help="Email of an existing Sandcastle user")
    parser.add_argument("--port", type=int, default=0, help="Local port for the OAuth redirect (0 = any)")
    args = parser.parse_args()
    raise SystemExit(0 if connect(args.email, args.port) else 1)


if __name__ == "__main__":
    main()
