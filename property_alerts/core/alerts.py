from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from property_alerts.core.models import PropertyRecord, _safe_float


DEFAULT_SOLD_THRESHOLD_PCT = 5.0
DEFAULT_PRICE_DROP_PCT = 5.0


class PriceDropDetector(Protocol):
    def is_price_drop(self, record: PropertyRecord) -> bool: ...


class PriceHistoryDropDetector:
    """Flags a drop when the latest price_history entry is below the previous one."""

    def __init__(self, threshold_pct: float = DEFAULT_PRICE_DROP_PCT) -> None:
        self.threshold_pct = threshold_pct

    def is_price_drop(self, record: PropertyRecord) -> bool:
        prices = _history_prices(record.price_history)
        if len(prices) < 2:
            return False
        return should_trigger_price_drop(prices[-2], prices[-1], threshold_pct=self.threshold_pct)


def is_new_since(record: PropertyRecord, cursor: datetime | None) -> bool:
    if record.scraped_at is None:
        return False
    if cursor is None:
        return True
    return record.scraped_at > cursor


def should_trigger_price_drop(previous_price: float, current_price: float, threshold_pct: float = 5.0) -> bool:
    if previous_price <= 0:
        return False
    drop_pct = ((previous_price - current_price) / previous_price) * 100.0
    return drop_pct >= threshold_pct


def sold_price_delta_pct(asking_price: float | None, sold_price: float | None) -> float | None:
    if not asking_price or not sold_price:
        return None
    return ((sold_price - asking_price) / asking_price) * 100.0


def should_trigger_sold(
    asking_price: float | None,
    sold_price: float | None,
    threshold_pct: float | None,
    on_over_asking: bool,
    on_under_asking: bool,
) -> bool:
    delta = sold_price_delta_pct(asking_price, sold_price)
    if delta is None:
        return False
    threshold = threshold_pct or DEFAULT_SOLD_THRESHOLD_PCT
    if on_under_asking and delta < -threshold:
        return True
    if on_over_asking and delta > threshold:
        return True
    return False


def _history_prices(history: list[dict[str, Any]]) -> list[float]:
    entries = [entry for entry in history if _safe_float(entry.get("price")) is not None]
    # ISO dates sort lexically; the sort is stable for undated entries.
    entries.sort(key=lambda entry: str(entry.get("date") or ""))
    return [float(entry["price"]) for entry in entries]
