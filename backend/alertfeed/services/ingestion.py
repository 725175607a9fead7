# Alert Feed - Ingestion Pipeline
# Submission (comma-separated symbols/prices + shared fields) -> merge-ready items.
# Bad prices drop their own entry; a bad shared trigger time fails the whole submission.

import logging
from decimal import Decimal, InvalidOperation

from alertfeed.errors import MalformedPriceEntry
from alertfeed.schemas import AlertSubmission
from alertfeed.services.alert_store import MergeItem
from alertfeed.time_windows import TimeWindows

logger = logging.getLogger(__name__)

# Range of an unconstrained PostgreSQL numeric
_MAX_INTEGER_DIGITS = 131072
_MAX_FRACTION_DIGITS = 16383


def _split(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [token.strip() for token in str(raw).split(",")]


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_price(token: str | None) -> Decimal:
    """Parse one price token; raises MalformedPriceEntry when missing, not finite or unstorable."""
    if token is None or not token.strip():
        raise MalformedPriceEntry("missing price")
    try:
        price = Decimal(token.strip())
    except InvalidOperation as e:
        raise MalformedPriceEntry(f"not a number: {token!r}") from e
    if not price.is_finite():
        raise MalformedPriceEntry(f"not finite: {token!r}")
    if price.adjusted() >= _MAX_INTEGER_DIGITS or -price.as_tuple().exponent > _MAX_FRACTION_DIGITS:
        raise MalformedPriceEntry(f"out of storable range: {token!r}")
    return price


def build_merge_batch(submission: AlertSubmission, windows: TimeWindows) -> list[MergeItem]:
    """
    Drop empty symbol tokens, pair each remaining symbol with the price at the same
    position and stamp the batch.
    Returns an empty list for an empty or fully-malformed submission (a no-op, not an error).
    Raises MalformedTimeString if triggered_at is given but unparseable.
    """
    if not submission.stocks or not submission.trigger_prices:
        return []

    symbols = [s for s in _split(submission.stocks) if s]
    prices = _split(submission.trigger_prices)
    now = windows.now()

    triggered_at = _blank_to_none(submission.triggered_at)
    trigger_instant = windows.resolve_wall_clock_time_today(triggered_at) if triggered_at else now

    scan_name = _blank_to_none(submission.scan_name)
    scan_url = _blank_to_none(submission.scan_url)
    alert_name = _blank_to_none(submission.alert_name)

    items: list[MergeItem] = []
    for i, symbol in enumerate(symbols):
        try:
            price = parse_price(prices[i] if i < len(prices) else None)
        except MalformedPriceEntry as e:
            logger.debug("Dropping %s: %s", symbol, e)
            continue
        items.append(
            MergeItem(
                symbol=symbol,
                trigger_price=price,
                trigger_instant=trigger_instant,
                last_updated_instant=now,
                scan_name=scan_name,
                scan_url=scan_url,
                alert_name=alert_name,
            )
        )

    dropped = len(symbols) - len(items)
    if dropped:
        logger.info("Submission: %d item(s) accepted, %d malformed price(s) dropped", len(items), dropped)
    return items
