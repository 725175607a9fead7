# Alert Feed - Aggregation Store
# Conditional upsert per symbol; range reads and deletes keyed by trigger_instant.

import logging
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import delete, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alertfeed.errors import StoreUnavailable
from database.models import StockAlert

logger = logging.getLogger(__name__)

_UPSERT_CONSTRUCTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


@dataclass(frozen=True)
class MergeItem:
    """One merge-ready trigger for a symbol."""

    symbol: str
    trigger_price: Decimal
    trigger_instant: datetime
    last_updated_instant: datetime
    scan_name: str | None = None
    scan_url: str | None = None
    alert_name: str | None = None


@dataclass(frozen=True)
class AlertRecord:
    """Detached, immutable copy of a stored row."""

    symbol: str
    trigger_price: Decimal
    trigger_instant: datetime
    occurrence_count: int
    last_updated_instant: datetime
    scan_name: str | None
    scan_url: str | None
    alert_name: str | None

    @classmethod
    def from_row(cls, row: StockAlert) -> "AlertRecord":
        return cls(
            symbol=row.symbol,
            trigger_price=row.trigger_price,
            trigger_instant=row.trigger_instant,
            occurrence_count=row.occurrence_count,
            last_updated_instant=row.last_updated_instant,
            scan_name=row.scan_name,
            scan_url=row.scan_url,
            alert_name=row.alert_name,
        )


class AlertStore:
    """
    Durable per-symbol alert state. The store is the synchronisation point:
    every batch is one transaction and create-vs-update is decided by the database.
    Driver and connection errors surface as StoreUnavailable.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except (SQLAlchemyError, OSError) as e:
            logger.error("Store %s failed: %s", operation, e)
            raise StoreUnavailable(f"{operation} failed: {e}") from e

    @staticmethod
    def _merge_statement(session: AsyncSession, item: MergeItem):
        dialect = session.get_bind().dialect.name
        insert = _UPSERT_CONSTRUCTS.get(dialect)
        if insert is None:
            raise StoreUnavailable(f"Conditional upsert not supported on dialect {dialect!r}")
        stmt = insert(StockAlert).values(
            symbol=item.symbol,
            trigger_price=item.trigger_price,
            trigger_instant=item.trigger_instant,
            occurrence_count=1,
            last_updated_instant=item.last_updated_instant,
            scan_name=item.scan_name,
            scan_url=item.scan_url,
            alert_name=item.alert_name,
        )
        return stmt.on_conflict_do_update(
            index_elements=[StockAlert.symbol],
            set_={
                "trigger_price": stmt.excluded.trigger_price,
                "trigger_instant": stmt.excluded.trigger_instant,
                "occurrence_count": StockAlert.occurrence_count + 1,
                "last_updated_instant": stmt.excluded.last_updated_instant,
                "scan_name": stmt.excluded.scan_name,
                "scan_url": stmt.excluded.scan_url,
                "alert_name": stmt.excluded.alert_name,
            },
        )

    @staticmethod
    def _symbols_statement(symbols: Iterable[str]):
        return (
            select(StockAlert)
            .where(StockAlert.symbol.in_(sorted(set(symbols))))
            .order_by(StockAlert.trigger_instant.asc(), StockAlert.symbol)
        )

    async def merge_upsert(self, items: Sequence[MergeItem]) -> tuple[AlertRecord, ...]:
        """
        Insert-or-merge every item in one transaction (all-or-nothing) and return
        the post-merge rows of the affected symbols, read in that same transaction.
        New symbols start at count 1; existing ones take the new fields and count + 1.
        """
        if not items:
            return ()
        async with self._transaction("merge_upsert") as session:
            for item in items:
                await session.execute(self._merge_statement(session, item))
            result = await session.execute(self._symbols_statement(item.symbol for item in items))
            merged = tuple(AlertRecord.from_row(r) for r in result.scalars().all())
        logger.debug("Merged %d alert(s) into %d row(s)", len(items), len(merged))
        return merged

    async def range_query(
        self,
        from_instant: datetime,
        to_instant: datetime,
        *,
        descending: bool = True,
    ) -> tuple[AlertRecord, ...]:
        """Rows with trigger_instant in [from_instant, to_instant)."""
        order = StockAlert.trigger_instant.desc() if descending else StockAlert.trigger_instant.asc()
        stmt = (
            select(StockAlert)
            .where(
                StockAlert.trigger_instant >= from_instant,
                StockAlert.trigger_instant < to_instant,
            )
            .order_by(order, StockAlert.symbol)
        )
        async with self._transaction("range_query") as session:
            result = await session.execute(stmt)
            return tuple(AlertRecord.from_row(r) for r in result.scalars().all())

    async def fetch_symbols(self, symbols: Iterable[str]) -> tuple[AlertRecord, ...]:
        """Current (post-merge) rows for the given symbols."""
        wanted = set(symbols)
        if not wanted:
            return ()
        async with self._transaction("fetch_symbols") as session:
            result = await session.execute(self._symbols_statement(wanted))
            return tuple(AlertRecord.from_row(r) for r in result.scalars().all())

    async def delete_range(self, from_instant: datetime, to_instant: datetime) -> int:
        """Delete rows with trigger_instant in [from_instant, to_instant); returns rows removed."""
        stmt = (
            delete(StockAlert)
            .where(
                StockAlert.trigger_instant >= from_instant,
                StockAlert.trigger_instant < to_instant,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._transaction("delete_range") as session:
            result = await session.execute(stmt)
            return result.rowcount or 0

    async def delete_before(self, before_instant: datetime) -> int:
        """Delete rows with trigger_instant strictly before before_instant; returns rows removed."""
        stmt = (
            delete(StockAlert)
            .where(StockAlert.trigger_instant < before_instant)
            .execution_options(synchronize_session=False)
        )
        async with self._transaction("delete_before") as session:
            result = await session.execute(stmt)
            return result.rowcount or 0

    async def ping(self) -> None:
        async with self._transaction("ping") as session:
            await session.execute(text("SELECT 1"))
