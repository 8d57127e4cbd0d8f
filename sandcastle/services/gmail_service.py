import json
import socket
import threading
import time
from datetime import date, datetime, timezone
from typing import Callable, Iterator, Optional

import google_auth_httplib2
import httplib2
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import build_http

from sandcastle.core.config import Settings
from sandcastle.core.exceptions import AuthError, DecodeError, SandcastleError, TransientProviderError
from sandcastle.core.logging import get_logger
from sandcastle.schemas.gmail import MessagePage, OAuthCredential, RawMessage

logger = get_logger("gmail_service")

RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded", "RATE_LIMIT_EXCEEDED"}
NETWORK_ERRORS = (socket.timeout, ConnectionError, httplib2.HttpLib2Error, TransportError)


def build_query(base_query: str, after: date) -> str:
    """Gmail search string limited to messages on or after `after`."""
    return f"{base_query} after:{after:%Y/%m/%d}".strip()


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """google-auth compares expiry against naive UTC; naive input is already UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _error_reasons(err: HttpError) -> set:
    try:
        error = json.loads(err.content.decode("utf-8")).get("error") or {}
        items = list(error.get("errors") or []) + list(error.get("details") or [])
    except (ValueError, AttributeError, TypeError):
        return set()
    return {i.get("reason") for i in items if isinstance(i, dict)}


class GmailClient:
    """
    Gmail access bound to one user's decrypted token pair and the app's
    OAuth client. Every request goes through `_execute`, which retries
    network and rate-limit failures with exponential backoff and turns
    rejected tokens into AuthError.
    """

    def __init__(
        self,
        credential: OAuthCredential,
        settings: Settings,
        service=None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self._sleep = sleep
        self.credentials = Credentials(
            token=credential.access_token,
            refresh_token=credential.refresh_token,
            token_uri=settings.GOOGLE_TOKEN_URI,
            client_id=settings.GOOGLE_CLIENT_ID,
            client_secret=settings.GOOGLE_CLIENT_SECRET,
            scopes=settings.GMAIL_SCOPES,
            expiry=naive_utc(credential.expiry),
        )
        self.service = service or build("gmail", "v1", credentials=self.credentials, cache_discovery=False)
        # Shared request budget across fetch workers
        self._request_slots = threading.BoundedSemaphore(settings.GMAIL_FETCH_WORKERS)
        self._local = threading.local()

    def _http(self):
        # httplib2 is not thread-safe; give each worker thread its own transport
        if self.settings.GMAIL_FETCH_WORKERS == 1:
            return None
        http = getattr(self._local, "http", None)
        if http is None:
            http = google_auth_httplib2.AuthorizedHttp(self.credentials, http=build_http())
            self._local.http = http
        return http

    def _execute(self, request, description: str):
        max_attempts = self.settings.GMAIL_MAX_RETRIES
        attempt = 0
        while True:
            attempt += 1
            try:
                with self._request_slots:
                    return request.execute(http=self._http())
            except RefreshError as e:
                logger.error(f"Gmail token refresh rejected during {description}")
                raise AuthError("Gmail authorization expired or was revoked") from e
            except HttpError as e:
                status = e.resp.status
                reasons = _error_reasons(e)
                if status == 429 or status >= 500 or reasons & RATE_LIMIT_REASONS:
                    last_error = e
                elif status in (401, 403):
                    logger.error(f"Gmail rejected credentials during {description} (HTTP {status})")
                    raise AuthError("Gmail authorization expired or was revoked") from e
                else:
                    raise
            except NETWORK_ERRORS as e:
                last_error = e

            if attempt >= max_attempts:
                logger.error(f"Giving up on {description} after {attempt} attempts: {last_error}")
                raise TransientProviderError(f"Gmail unavailable during {description}") from last_error

            delay = self.settings.GMAIL_BACKOFF_SECONDS * (2 ** (attempt - 1))
            logger.warning(f"{description} failed (attempt {attempt}/{max_attempts}), retrying in {delay:.1f}s")
            self._sleep(delay)

    # ---------------------------------------------------------
    # Listing
    # ---------------------------------------------------------
    def list_messages(self, query: str, page_token: Optional[str] = None, max_results: Optional[int] = None) -> MessagePage:
        params = {
            "userId": "me",
            "q": query,
            "maxResults": max_results or self.settings.GMAIL_PAGE_SIZE,
        }
        if page_token:
            params["pageToken"] = page_token

        try:
            resp = self._execute(self.service.users().messages().list(**params), "message list")
        except HttpError as e:
            raise SandcastleError(f"Gmail rejected the message search (HTTP {e.resp.status})") from e

        return MessagePage(
            message_ids=[m["id"] for m in resp.get("messages", [])],
            next_page_token=resp.get("nextPageToken"),
        )

    def iter_pages(self, query: str, all_pages: bool = True, max_results: Optional[int] = None) -> Iterator[MessagePage]:
        """Yield result pages; follows nextPageToken only when `all_pages` is set."""
        page_token = None
        while True:
            page = self.list_messages(query, page_token=page_token, max_results=max_results)
            yield page
            page_token = page.next_page_token
            if not all_pages or not page_token:
                return

    # ---------------------------------------------------------
    # Detail
    # ---------------------------------------------------------
    def get_message(self, message_id: str) -> RawMessage:
        request = self.service.users().messages().get(userId="me", id=message_id, format="full")
        try:
            msg = self._execute(request, f"message {message_id}")
        except HttpError as e:
            if e.resp.status == 404:
                raise DecodeError("Message no longer exists", message_id=message_id) from e
            raise SandcastleError(f"Gmail rejected message {message_id} (HTTP {e.resp.status})") from e

        try:
            return RawMessage.from_api(msg)
        except (KeyError, TypeError, ValueError) as e:
            raise DecodeError(f"Malformed message structure: {e}", message_id=message_id) from e
