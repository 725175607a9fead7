# Alert Feed - Request Schemas
# Scanner submission body; numeric scalars are accepted and coerced to strings.

from typing import Any

from pydantic import BaseModel, Field, field_validator


class AlertSubmission(BaseModel):
    """One batch of triggered alerts as posted by the scanner."""

    stocks: str | None = Field(None, description="Comma-separated symbols, e.g. 'INFY,TCS'.")
    trigger_prices: str | None = Field(
        None, description="Comma-separated prices, positionally aligned with stocks."
    )
    triggered_at: str | None = Field(
        None, description="Shared wall-clock trigger time for today, e.g. '3:45 PM'."
    )
    scan_name: str | None = None
    scan_url: str | None = None
    alert_name: str | None = None

    @field_validator("stocks", "trigger_prices", "triggered_at", mode="before")
    @classmethod
    def _coerce_scalar_to_str(cls, v: Any) -> Any:
        # Senders occasionally post a single price or time as a JSON number.
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    class Config:
        json_schema_extra = {
            "example": {
                "stocks": "INFY,TCS",
                "trigger_prices": "1850.5,3921",
                "triggered_at": "3:45 PM",
                "scan_name": "Breakout 20D",
                "scan_url": "https://chartink.com/screener/breakout-20d",
                "alert_name": "Breakout alert",
            }
        }
