from datetime import datetime, timezone
from decimal import Decimal

import pytest

from alertfeed.errors import MalformedPriceEntry, MalformedTimeString
from alertfeed.schemas import AlertSubmission
from alertfeed.services.ingestion import build_merge_batch, parse_price
from alertfeed.time_windows import TimeWindows
from conftest import FIXED_NOW

UTC = timezone.utc


def test_pairs_symbols_with_prices_by_position(windows: TimeWindows) -> None:
    items = build_merge_batch(
        AlertSubmission(stocks="AAA, BBB ,CCC", trigger_prices=" 10.5,20 , 30.25"), windows
    )
    assert [(i.symbol, i.trigger_price) for i in items] == [
        ("AAA", Decimal("10.5")),
        ("BBB", Decimal("20")),
        ("CCC", Decimal("30.25")),
    ]


def test_malformed_price_drops_only_that_entry(windows: TimeWindows) -> None:
    items = build_merge_batch(AlertSubmission(stocks="AAA,BBB", trigger_prices="10.5,bad"), windows)
    assert [i.symbol for i in items] == ["AAA"]
    assert items[0].trigger_price == Decimal("10.5")


def test_missing_and_non_finite_prices_are_dropped(windows: TimeWindows) -> None:
    items = build_merge_batch(
        AlertSubmission(stocks="AAA,BBB,CCC,DDD", trigger_prices="NaN,Infinity,,4"), windows
    )
    assert [i.symbol for i in items] == ["DDD"]


def test_fewer_prices_than_symbols(windows: TimeWindows) -> None:
    items = build_merge_batch(AlertSubmission(stocks="AAA,BBB,CCC", trigger_prices="1,2"), windows)
    assert [i.symbol for i in items] == ["AAA", "BBB"]


def test_empty_symbol_tokens_are_removed_before_pairing(windows: TimeWindows) -> None:
    items = build_merge_batch(AlertSubmission(stocks="AAA,,BBB,", trigger_prices="1,2"), windows)
    assert [(i.symbol, i.trigger_price) for i in items] == [("AAA", Decimal("1")), ("BBB", Decimal("2"))]


def test_without_trigger_time_uses_processing_instant(windows: TimeWindows) -> None:
    items = build_merge_batch(AlertSubmission(stocks="AAA", trigger_prices="1"), windows)
    assert items[0].trigger_instant == FIXED_NOW
    assert items[0].last_updated_instant == FIXED_NOW


def test_blank_trigger_time_counts_as_absent(windows: TimeWindows) -> None:
    items = build_merge_batch(AlertSubmission(stocks="AAA", trigger_prices="1", triggered_at="  "), windows)
    assert items[0].trigger_instant == FIXED_NOW


def test_shared_trigger_time_applies_to_whole_batch(windows: TimeWindows) -> None:
    items = build_merge_batch(
        AlertSubmission(stocks="AAA,BBB", trigger_prices="1,2", triggered_at="9:20 AM"), windows
    )
    expected = datetime(2026, 3, 10, 3, 50, tzinfo=UTC)
    assert {i.trigger_instant for i in items} == {expected}
    assert {i.last_updated_instant for i in items} == {FIXED_NOW}


def test_malformed_trigger_time_fails_whole_submission(windows: TimeWindows) -> None:
    with pytest.raises(MalformedTimeString):
        build_merge_batch(
            AlertSubmission(stocks="AAA,BBB", trigger_prices="1,2", triggered_at="25:00 PM"), windows
        )


@pytest.mark.parametrize(
    "submission",
    [
        AlertSubmission(),
        AlertSubmission(stocks="", trigger_prices="1"),
        AlertSubmission(stocks="AAA", trigger_prices=""),
        AlertSubmission(stocks=" , ", trigger_prices="1,2"),
        AlertSubmission(stocks="AAA,BBB", trigger_prices="x,y"),
    ],
)
def test_empty_or_fully_malformed_yields_empty_batch(windows: TimeWindows, submission: AlertSubmission) -> None:
    assert build_merge_batch(submission, windows) == []


def test_metadata_is_shared_and_blank_normalised(windows: TimeWindows) -> None:
    items = build_merge_batch(
        AlertSubmission(
            stocks="AAA,BBB",
            trigger_prices="1,2",
            scan_name="Breakout",
            scan_url="",
            alert_name=" Vol spike ",
        ),
        windows,
    )
    assert {(i.scan_name, i.scan_url, i.alert_name) for i in items} == {("Breakout", None, "Vol spike")}


def test_numeric_json_values_are_coerced() -> None:
    submission = AlertSubmission.model_validate({"stocks": "AAA", "trigger_prices": 10.5})
    assert submission.trigger_prices == "10.5"


def test_parse_price_rejects_garbage() -> None:
    assert parse_price(" 1e2 ") == Decimal("100")
    for token in (None, "", "abc", "nan", "-inf"):
        with pytest.raises(MalformedPriceEntry):
            parse_price(token)


def test_parse_price_accepts_large_and_precise_values() -> None:
    assert parse_price("1e20") == Decimal("100000000000000000000")
    assert parse_price("0.123456789") == Decimal("0.123456789")


@pytest.mark.parametrize("token", ["1e131072", "-1e200000", "1e-16384"])
def test_parse_price_rejects_unstorable_magnitudes(token: str) -> None:
    with pytest.raises(MalformedPriceEntry):
        parse_price(token)


def test_unstorable_price_drops_only_that_entry(windows: TimeWindows) -> None:
    items = build_merge_batch(AlertSubmission(stocks="AAA,BBB", trigger_prices="1e200000,2"), windows)
    assert [(i.symbol, i.trigger_price) for i in items] == [("BBB", Decimal("2"))]
