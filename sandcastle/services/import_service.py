import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from datetime import date, datetime, timedelta, timezone
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from sandcastle.core.config import Settings
from sandcastle.core.constants import ImportMode, ImportState
from sandcastle.core.exceptions import DecodeError, ImportCancelled, SandcastleError
from sandcastle.core.logging import get_logger
from sandcastle.core.security import CredentialVault
from sandcastle.models.user import User
from sandcastle.schemas.gmail import OAuthCredential, RawMessage
from sandcastle.schemas.transaction import ExtractedTransaction, ImportResponse
from sandcastle.services.credential_service import load_oauth_credential
from sandcastle.services.extractor import MAX_AMOUNT, TransactionExtractor
from sandcastle.services.gmail_service import GmailClient, build_query
from sandcastle.services.transaction_store import TransactionStore

logger = get_logger("gmail_import")


class _Stopped(Exception):
    """Cancellation or deadline reached mid-page."""


def lower_bound_for(mode: ImportMode, today: date, recent_window_days: int) -> date:
    if mode == ImportMode.FULL:
        return today.replace(day=1)
    return today - timedelta(days=recent_window_days)


def is_importable(item: Optional[ExtractedTransaction]) -> bool:
    return item is not None and item.amount is not None and 0 < item.amount <= MAX_AMOUNT


class ImportCoordinator:
    """
    Runs one Gmail import for one user:
    Idle -> Listing -> Fetching -> Extracting -> Persisting -> Idle, or Failed.

    Each listed page is fetched, extracted and written before the next page
    is listed, so a failure on page N leaves pages 1..N-1 persisted.
    """

    def __init__(
        self,
        store: TransactionStore,
        settings: Settings,
        vault: CredentialVault,
        extractor: Optional[TransactionExtractor] = None,
        client_factory: Optional[Callable[[OAuthCredential], GmailClient]] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.settings = settings
        self.vault = vault
        self.extractor = extractor or TransactionExtractor(settings)
        self.client_factory = client_factory or (lambda credential: GmailClient(credential, settings))
        self._now = now
        self.state = ImportState.IDLE

    # ---------------------------------------------------------
    # Public entry point
    # ---------------------------------------------------------
    def run_import(
        self,
        user: User,
        mode: ImportMode,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> ImportResponse:
        mode = ImportMode(mode)
        deadline = time.monotonic() + timeout if timeout is not None else None
        cancel_event = cancel_event or threading.Event()
        # set on deadline; the caller's event is only ever read
        halt = threading.Event()

        def stopping() -> bool:
            return cancel_event.is_set() or halt.is_set()

        imported = 0
        scanned = 0

        try:
            client = self.client_factory(load_oauth_credential(user, self.vault))
            after = lower_bound_for(mode, self._now().date(), self.settings.RECENT_WINDOW_DAYS)
            query = build_query(self.settings.GMAIL_IMPORT_QUERY, after)
            logger.info(f"[user {user.id}] Starting {mode.value} import: {query!r}")

            if mode == ImportMode.FULL:
                pages = client.iter_pages(query, all_pages=True)
            else:
                pages = client.iter_pages(query, all_pages=False, max_results=self.settings.RECENT_MAX_RESULTS)

            seen = set()
            while True:
                self._check_stop(stopping, deadline, imported)
                self.state = ImportState.LISTING
                page = next(pages, None)
                if page is None:
                    break

                message_ids = [m for m in dict.fromkeys(page.message_ids) if m not in seen]
                seen.update(message_ids)
                scanned += len(message_ids)
                logger.info(f"[user {user.id}] Listed {len(message_ids)} message(s)")

                try:
                    batch = self._process_page(client, message_ids, stopping, halt, deadline)
                except _Stopped as stopped:
                    imported += self._persist(user, stopped.args[0])
                    raise ImportCancelled(imported)

                imported += self._persist(user, batch)

        except ImportCancelled:
            self.state = ImportState.IDLE
            logger.warning(f"[user {user.id}] Import cancelled after {imported} transaction(s)")
            raise
        except SandcastleError as e:
            self.state = ImportState.FAILED
            e.imported = imported
            logger.error(f"[user {user.id}] Import failed after {imported} transaction(s): {e}")
            raise

        self.state = ImportState.IDLE
        logger.info(f"[user {user.id}] Import finished: {imported} new of {scanned} scanned")
        return ImportResponse(mode=mode, imported=imported, scanned=scanned)

    # ---------------------------------------------------------
    # Stages
    # ---------------------------------------------------------
    def _check_stop(self, stopping: Callable[[], bool], deadline: Optional[float], imported: int):
        if stopping() or (deadline is not None and time.monotonic() >= deadline):
            raise ImportCancelled(imported)

    @staticmethod
    def _remaining(deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None
        return max(deadline - time.monotonic(), 0)

    def _fetch(self, client: GmailClient, message_id: str, stopping: Callable[[], bool]) -> Optional[RawMessage]:
        if stopping():
            return None
        return client.get_message(message_id)

    def _process_page(
        self,
        client: GmailClient,
        message_ids: List[str],
        stopping: Callable[[], bool],
        halt: threading.Event,
        deadline: Optional[float],
    ) -> List[ExtractedTransaction]:
        batch: List[ExtractedTransaction] = []
        self.state = ImportState.FETCHING
        executor = ThreadPoolExecutor(max_workers=self.settings.GMAIL_FETCH_WORKERS, thread_name_prefix="gmail-fetch")
        try:
            futures = [executor.submit(self._fetch, client, m, stopping) for m in message_ids]
            for message_id, future in zip(message_ids, futures):
                if stopping():
                    raise _Stopped(batch)
                try:
                    message = future.result(timeout=self._remaining(deadline))
                except FuturesTimeout:
                    halt.set()
                    raise _Stopped(batch)
                except DecodeError as e:
                    logger.warning(f"Skipping message {message_id}: {e}")
                    continue
                if message is None:
                    raise _Stopped(batch)

                self.state = ImportState.EXTRACTING
                try:
                    item = self.extractor.extract(message)
                except DecodeError as e:
                    logger.warning(f"Skipping message {message_id}: {e}")
                    continue

                if is_importable(item):
                    batch.append(item)
                elif item is not None:
                    logger.info(f"Message {message_id} has no usable amount, not imported")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return batch

    def _persist(self, user: User, batch: List[ExtractedTransaction]) -> int:
        if not batch:
            return 0
        self.state = ImportState.PERSISTING
        try:
            return self.store.bulk_insert_if_absent(user.id, batch)
        except SQLAlchemyError as e:
            raise SandcastleError(f"Could not store {len(batch)} imported transaction(s): {e.__class__.__name__}") from e
