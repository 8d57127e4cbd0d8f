"""Tests for transaction extraction heuristics."""
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from conftest import make_message
from sandcastle.core.constants import DEFAULT_TRANSACTION_NAME, TransactionSource
from sandcastle.core.exceptions import DecodeError
from sandcastle.schemas.gmail import RawMessage
from sandcastle.services.extractor import (
    BareAmountStrategy,
    LabeledAmountStrategy,
    TransactionExtractor,
    extract_recipient,
    normalize_text,
    parse_amount,
)

ALIASES = ["SGD", "S$"]
FIXED_NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def extractor(settings):
    return TransactionExtractor(settings, now=lambda: FIXED_NOW)


def raw(**kwargs) -> RawMessage:
    return RawMessage.from_api(make_message(kwargs.pop("message_id", "m1"), **kwargs))


class TestParseAmount:

    @pytest.mark.parametrize("number,expected", [
        ("12.3", Decimal("12.30")),
        ("1,234.50", Decimal("1234.50")),
        ("1,000,000", Decimal("1000000.00")),
        ("0.005", Decimal("0.01")),
        ("2.675", Decimal("2.68")),
        ("45", Decimal("45.00")),
    ])
    def test_normalizes_and_rounds_half_up(self, number, expected):
        assert parse_amount(number) == expected

    def test_largest_storable_amount(self):
        assert parse_amount("9,999,999,999.99") == Decimal("9999999999.99")

    @pytest.mark.parametrize("number", [
        "12345678901.00",
        "10,000,000,000",
        "9" * 30 + ".00",
        "1" + "0" * 40,
    ])
    def test_out_of_range_is_none(self, number):
        assert parse_amount(number) is None


class TestLabeledAmountStrategy:

    def setup_method(self):
        self.strategy = LabeledAmountStrategy(ALIASES)

    def test_prefers_two_decimal_occurrence(self):
        assert self.strategy.find("Amount: SGD 12.3 ... Amount: SGD 12.30") == Decimal("12.30")

    def test_prefers_last_two_decimal_occurrence(self):
        text = "Amount: SGD 5.00 fee Amount: SGD 7.25 total Amount: SGD 7.2"
        assert self.strategy.find(text) == Decimal("7.25")

    def test_falls_back_to_last_occurrence(self):
        assert self.strategy.find("Amount: SGD 3 and Amount: S$ 4.5") == Decimal("4.50")

    def test_case_insensitive(self):
        assert self.strategy.find("AMOUNT: sgd 9.99") == Decimal("9.99")

    def test_no_label(self):
        assert self.strategy.find("You paid SGD 45.00") is None


class TestBareAmountStrategy:

    def test_first_occurrence(self):
        strategy = BareAmountStrategy(ALIASES)
        assert strategy.find("Paid S$1,200.00 then SGD 3.00") == Decimal("1200.00")

    def test_no_currency(self):
        assert BareAmountStrategy(ALIASES).find("Paid 45.00 dollars") is None


class TestTextHelpers:

    def test_normalize_strips_tags_and_entities(self):
        html = "<p>Amount:&nbsp;SGD&#160;5.00</p><p>To:&zwnj; Tom &amp; Jerry</p>"
        assert normalize_text(html) == "Amount: SGD 5.00 To: Tom & Jerry"

    def test_normalize_collapses_whitespace(self):
        assert normalize_text("  a \n\n\t b  ") == "a b"

    @pytest.mark.parametrize("text,expected", [
        ("To: ALEX TAN From: DBS", "ALEX TAN"),
        ("To: Hawker Stall 12 If unauthorised, call us", "Hawker Stall 12"),
        ("To: Grab Pte Ltd To view details log in", "Grab Pte Ltd"),
        ("Transfer To: MERCHANT X", "MERCHANT X"),
        ("To: From: bank", None),
        ("No label here", None),
    ])
    def test_recipient(self, text, expected):
        assert extract_recipient(text) == expected


class TestTransactionExtractor:

    def test_debit_notification(self, extractor):
        html = (
            "<table><tr><td>Amount:</td><td>SGD 12.3</td></tr>"
            "<tr><td>Amount:</td><td>SGD 12.30</td></tr>"
            "<tr><td>To:</td><td>ALEX TAN</td></tr>"
            "<tr><td>If unauthorised, call us.</td></tr></table>"
        )
        item = extractor.extract(raw(html=html, internal_date="1717200000000", thread_id="t-9"))

        assert item.name == "ALEX TAN"
        assert item.recipient == "ALEX TAN"
        assert item.merchant == "ibanking.alert@dbs.com"
        assert item.amount == Decimal("12.30")
        assert item.currency == "SGD"
        assert item.source == TransactionSource.IMPORTED
        assert item.message_id == "m1"
        assert item.thread_id == "t-9"
        assert item.needs_review is False
        assert item.occurred_at == datetime(2024, 6, 1, 0, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize("text", [
        "You received S$50.00 from Alex",
        "SGD 20.00 has been credited to your account",
        "Credit card payment of SGD 99.00",
        "Your points were credited separately. Amount: SGD 10.00",
    ])
    def test_incoming_funds_are_dropped(self, extractor, text):
        assert extractor.extract(raw(plain=text)) is None

    def test_gate_checks_subject_and_snippet(self, extractor):
        assert extractor.extract(raw(subject="Funds Received", plain="SGD 5.00")) is None
        assert extractor.extract(raw(snippet="you are receiving", plain="SGD 5.00")) is None

    def test_fallback_parsing(self, extractor):
        item = extractor.extract(raw(plain="You paid SGD 45.00 via PayNow"))
        assert item.amount == Decimal("45.00")
        assert item.needs_review is False

    def test_no_amount_needs_review(self, extractor):
        item = extractor.extract(raw(plain="Your PayLah! wallet settings were updated"))
        assert item.amount is None
        assert item.needs_review is True

    @pytest.mark.parametrize("text", [
        "PayNow promo SGD " + "9" * 30 + ".00",
        "Amount: SGD 12345678901.00",
    ])
    def test_oversized_amount_needs_review(self, extractor, text):
        item = extractor.extract(raw(plain=text))
        assert item.amount is None
        assert item.needs_review is True

    def test_unrepresentable_timestamp_is_a_decode_error(self, extractor):
        with pytest.raises(DecodeError) as exc:
            extractor.extract(raw(message_id="far-1", internal_date="9" * 20, plain="SGD 1.00"))
        assert exc.value.message_id == "far-1"

    def test_subject_fallback_for_name(self, extractor):
        item = extractor.extract(raw(subject="PayLah! Payment", plain="Paid SGD 3.00"))
        assert item.name == "PayLah! Payment"
        assert item.recipient is None

    def test_placeholder_name(self, extractor):
        item = extractor.extract(raw(subject="", plain="Paid SGD 3.00"))
        assert item.name == DEFAULT_TRANSACTION_NAME

    def test_snippet_contributes_amount(self, extractor):
        item = extractor.extract(raw(snippet="Amount: SGD 8.80 To: KOPI", plain=""))
        assert item.amount == Decimal("8.80")
        assert item.name == "KOPI"

    def test_date_header_when_no_internal_date(self, extractor):
        item = extractor.extract(raw(internal_date=None, plain="SGD 1.00"))
        assert item.occurred_at == datetime(2024, 6, 1, 0, 0, tzinfo=timezone.utc)

    def test_processing_time_as_last_resort(self, extractor):
        msg = make_message("m1", internal_date=None, plain="SGD 1.00")
        msg["payload"]["headers"] = [h for h in msg["payload"]["headers"] if h["name"] != "Date"]
        item = extractor.extract(RawMessage.from_api(msg))
        assert item.occurred_at == FIXED_NOW

    def test_unparseable_date_header(self, extractor):
        msg = make_message("m1", internal_date=None, plain="SGD 1.00")
        for header in msg["payload"]["headers"]:
            if header["name"] == "Date":
                header["value"] = "sometime last week"
        item = extractor.extract(RawMessage.from_api(msg))
        assert item.occurred_at == FIXED_NOW

    def test_decode_error_carries_message_id(self, extractor):
        msg = make_message("bad-1", plain="SGD 1.00")
        msg["payload"]["parts"][0]["body"]["data"] = "%%%%"
        with pytest.raises(DecodeError) as exc:
            extractor.extract(RawMessage.from_api(msg))
        assert exc.value.message_id == "bad-1"

    def test_strategies_are_inspectable(self, extractor):
        assert [s.name for s in extractor.strategies] == ["labeled", "bare"]
