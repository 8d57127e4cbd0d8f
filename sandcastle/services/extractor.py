import re
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from email.utils import parsedate_to_datetime
from typing import Callable, List, Optional, Sequence

from bs4 import BeautifulSoup

from sandcastle.core.config import Settings
from sandcastle.core.constants import DEFAULT_TRANSACTION_NAME, TransactionSource
from sandcastle.core.exceptions import DecodeError
from sandcastle.core.logging import get_logger
from sandcastle.schemas.gmail import RawMessage
from sandcastle.schemas.transaction import ExtractedTransaction
from sandcastle.services.body_decoder import decode_body

logger = get_logger("extractor")

CENTS = Decimal("0.01")
# transactions.amount is Numeric(12, 2)
MAX_AMOUNT = Decimal("9999999999.99")
MAX_TEXT_FIELD = 255

NUMBER_PATTERN = r"(?P<number>(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.(?P<decimals>\d+))?)"
RECIPIENT_RE = re.compile(r"To:\s*(.*?)\s*(?=From:|If unauthorised|To view|$)")
WHITESPACE_RE = re.compile(r"\s+")


def currency_pattern(aliases: Sequence[str]) -> str:
    # longest first so "S$" never shadows a longer alias
    ordered = sorted(aliases, key=len, reverse=True)
    return "(?:" + "|".join(re.escape(a) for a in ordered) + ")"


def parse_amount(number: str) -> Optional[Decimal]:
    """
    '1,234.565' -> Decimal('1234.57'); ties round away from zero.
    None when the number does not fit the amount column.
    """
    try:
        amount = Decimal(number.replace(",", "")).quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        logger.warning(f"Unparseable amount {number[:40]!r}")
        return None
    if amount > MAX_AMOUNT:
        logger.warning(f"Amount {amount} exceeds the storable maximum")
        return None
    return amount


# ---------------------------------------------------------
# Amount strategies, tried in order
# ---------------------------------------------------------
class AmountStrategy:
    name = "base"

    def __init__(self, currency_aliases: Sequence[str]):
        self.currency = currency_pattern(currency_aliases)

    def find(self, text: str) -> Optional[Decimal]:
        raise NotImplementedError


class LabeledAmountStrategy(AmountStrategy):
    """
    'Amount: SGD 12.30' lines. Notifications sometimes repeat the label for
    partial or fee amounts, so the last two-decimal occurrence wins, then the
    last occurrence of any shape.
    """
    name = "labeled"

    def __init__(self, currency_aliases: Sequence[str]):
        super().__init__(currency_aliases)
        self.pattern = re.compile(rf"Amount:\s*{self.currency}\s*{NUMBER_PATTERN}", re.IGNORECASE)

    def find(self, text: str) -> Optional[Decimal]:
        matches = list(self.pattern.finditer(text))
        if not matches:
            return None
        two_decimal = [m for m in matches if m.group("decimals") is not None and len(m.group("decimals")) == 2]
        chosen = (two_decimal or matches)[-1]
        return parse_amount(chosen.group("number"))


class BareAmountStrategy(AmountStrategy):
    """First currency-prefixed number anywhere in the text."""
    name = "bare"

    def __init__(self, currency_aliases: Sequence[str]):
        super().__init__(currency_aliases)
        self.pattern = re.compile(rf"{self.currency}\s*{NUMBER_PATTERN}", re.IGNORECASE)

    def find(self, text: str) -> Optional[Decimal]:
        match = self.pattern.search(text)
        return parse_amount(match.group("number")) if match else None


DEFAULT_AMOUNT_STRATEGIES = (LabeledAmountStrategy, BareAmountStrategy)


# ---------------------------------------------------------
# Text helpers
# ---------------------------------------------------------
def normalize_text(text: str) -> str:
    """Drop markup and entities, collapse whitespace."""
    if not text:
        return ""
    visible = BeautifulSoup(text, "lxml").get_text(separator=" ")
    visible = visible.replace("\xa0", " ").replace("\u200c", "")
    return WHITESPACE_RE.sub(" ", visible).strip()


def extract_recipient(text: str) -> Optional[str]:
    match = RECIPIENT_RE.search(text)
    if not match:
        return None
    recipient = match.group(1).strip()
    return recipient or None


def resolve_occurred_at(message: RawMessage, now: Callable[[], datetime]) -> datetime:
    if message.internal_date:
        return datetime.fromtimestamp(message.internal_date / 1000, tz=timezone.utc)

    date_header = message.header("Date")
    if date_header:
        try:
            parsed = parsedate_to_datetime(date_header)
        except (TypeError, ValueError):
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    return now()


class TransactionExtractor:
    """Turns one Gmail message into an ExtractedTransaction, or None for incoming funds."""

    def __init__(
        self,
        settings: Settings,
        strategies: Optional[List[AmountStrategy]] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.currency = settings.BASE_CURRENCY
        self.receive_keywords = [k.lower() for k in settings.RECEIVE_KEYWORDS]
        self.strategies = strategies or [cls(settings.CURRENCY_ALIASES) for cls in DEFAULT_AMOUNT_STRATEGIES]
        self._now = now

    def is_incoming(self, blob: str) -> bool:
        # substring match, so "credited" anywhere drops the message
        lower = blob.lower()
        return any(keyword in lower for keyword in self.receive_keywords)

    def find_amount(self, text: str) -> Optional[Decimal]:
        for strategy in self.strategies:
            amount = strategy.find(text)
            if amount is not None:
                logger.debug(f"Amount {amount} matched by {strategy.name} strategy")
                return amount
        return None

    def extract(self, message: RawMessage) -> Optional[ExtractedTransaction]:
        try:
            body = decode_body(message.payload)
        except DecodeError as e:
            e.message_id = message.id
            raise

        subject = message.subject
        blob = f"{subject} {message.snippet} {body}"
        if self.is_incoming(blob):
            logger.info(f"Message {message.id} looks like incoming funds, skipping")
            return None

        try:
            text = normalize_text(blob)
            recipient = extract_recipient(text)
            amount = self.find_amount(text)

            return ExtractedTransaction(
                name=(recipient or subject or DEFAULT_TRANSACTION_NAME)[:MAX_TEXT_FIELD],
                merchant=message.sender[:MAX_TEXT_FIELD],
                recipient=recipient[:MAX_TEXT_FIELD] if recipient else None,
                amount=amount,
                currency=self.currency,
                occurred_at=resolve_occurred_at(message, self._now),
                source=TransactionSource.IMPORTED,
                message_id=message.id,
                thread_id=message.thread_id,
                needs_review=amount is None,
            )
        except (ValueError, ArithmeticError, OSError) as e:
            # pydantic's ValidationError is a ValueError
            raise DecodeError(f"Could not build a transaction: {e}", message_id=message.id) from e
