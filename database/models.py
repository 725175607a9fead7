# Alert Feed - SQLAlchemy Models
# One row per instrument symbol; merged in place on every trigger.

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Index, Integer, Numeric, Text
from sqlalchemy.orm import Mapped, mapped_column

from database.base import Base
from database.types import UTCDateTime


class StockAlert(Base):
    """
    Aggregated alert state for a single instrument.
    trigger_instant drives the live/history partitions; last_updated_instant is processing time.
    """

    __tablename__ = "stock_alerts"
    __table_args__ = (
        Index("ix_stock_alerts_trigger_instant_symbol", "trigger_instant", "symbol"),
    )

    symbol: Mapped[str] = mapped_column(Text, primary_key=True)
    trigger_price: Mapped[Decimal] = mapped_column(Numeric(), nullable=False)
    trigger_instant: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    occurrence_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_updated_instant: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    scan_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    scan_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    alert_name: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"StockAlert(symbol={self.symbol!r}, trigger_price={self.trigger_price}, "
            f"count={self.occurrence_count})"
        )
