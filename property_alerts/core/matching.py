from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Protocol

from property_alerts.core.alerts import PriceDropDetector, is_new_since, should_trigger_sold
from property_alerts.core.dedupe import dedupe_by_id
from property_alerts.core.geo import InvalidPoint, bounding_box, decode_point, point_from
from property_alerts.core.models import Alert, BoundingBox, GeoPoint, PropertyRecord


LOGGER = logging.getLogger(__name__)

SALE = "sale"
RENTAL = "rental"
SOLD = "sold"
CATEGORY_ORDER = (SALE, RENTAL, SOLD)


class PropertyStore(Protocol):
    def find_properties(self, query: PropertyQuery) -> list[dict[str, Any]]: ...


@dataclass(slots=True)
class PropertyQuery:
    category: str
    bounds: BoundingBox
    since: datetime | None
    # column -> (min, max); None means unbounded on that side.
    ranges: dict[str, tuple[float | None, float | None]] = field(default_factory=dict)

    def accepts(self, record: PropertyRecord) -> bool:
        if record.latitude is None or record.longitude is None:
            return False
        if not self.bounds.contains(record.latitude, record.longitude):
            return False
        if not is_new_since(record, self.since):
            return False
        if self.category == SALE and not record.is_listing:
            return False
        if self.category == RENTAL and not record.is_rental:
            return False
        if self.category == SOLD and not record.sold_date:
            return False
        for column, (low, high) in self.ranges.items():
            value = getattr(record, column, None)
            if value is None:
                return False
            if low is not None and value < low:
                return False
            if high is not None and value > high:
                return False
        return True


@dataclass(slots=True)
class AlertMatch:
    alert_id: str
    center: GeoPoint | None
    bounds: BoundingBox | None
    properties: list[PropertyRecord] = field(default_factory=list)
    category_counts: dict[str, int] = field(default_factory=dict)
    failed_categories: list[str] = field(default_factory=list)
    decode_error: str | None = None


def build_query(alert: Alert, category: str, bounds: BoundingBox) -> PropertyQuery:
    if category == SALE:
        ranges = {
            "beds": _range(alert.sale_min_bedrooms, alert.sale_max_bedrooms),
            "asking_price": _range(alert.sale_min_price, alert.sale_max_price),
        }
    elif category == RENTAL:
        ranges = {
            "beds": _range(alert.rental_min_bedrooms, alert.rental_max_bedrooms),
            "monthly_rent": _range(alert.rental_min_price, alert.rental_max_price),
        }
    elif category == SOLD:
        ranges = {"beds": _range(alert.sold_min_bedrooms, alert.sold_max_bedrooms)}
    else:
        raise ValueError(f"Unknown property category: {category}")
    return PropertyQuery(
        category=category,
        bounds=bounds,
        since=alert.last_checked,
        ranges={column: limits for column, limits in ranges.items() if limits != (None, None)},
    )


def category_trigger(
    alert: Alert,
    category: str,
    price_drops: PriceDropDetector,
) -> Callable[[PropertyRecord], bool]:
    if category == SALE:

        def sale_trigger(record: PropertyRecord) -> bool:
            if alert.sale_alert_on_new and is_new_since(record, alert.last_checked):
                return True
            return alert.sale_alert_on_price_drops and price_drops.is_price_drop(record)

        return sale_trigger

    if category == RENTAL:
        return lambda record: alert.rental_alert_on_new and is_new_since(record, alert.last_checked)

    if category == SOLD:
        return lambda record: should_trigger_sold(
            record.asking_price,
            record.sold_price,
            alert.sold_price_threshold_percent,
            on_over_asking=alert.sold_alert_on_over_asking,
            on_under_asking=alert.sold_alert_on_under_asking,
        )

    raise ValueError(f"Unknown property category: {category}")


def enabled_categories(alert: Alert) -> list[str]:
    flags = {SALE: alert.monitor_sale, RENTAL: alert.monitor_rental, SOLD: alert.monitor_sold}
    return [category for category in CATEGORY_ORDER if flags[category]]


def match_category(
    store: PropertyStore,
    query: PropertyQuery,
    trigger: Callable[[PropertyRecord], bool],
) -> list[PropertyRecord]:
    rows = store.find_properties(query)
    matched: list[PropertyRecord] = []
    for row in rows:
        if row.get("id") is None:
            continue
        record = PropertyRecord.from_row(row)
        if query.accepts(record) and trigger(record):
            matched.append(record)
    return matched


def match_alert(alert: Alert, store: PropertyStore, price_drops: PriceDropDetector) -> AlertMatch:
    decoded = decode_point(alert.location_coordinates)
    center = point_from(decoded)
    if center is None:
        reason = decoded.reason if isinstance(decoded, InvalidPoint) else "no point"
        LOGGER.warning(
            "Invalid coordinates for alert=%s value=%r reason=%s",
            alert.id,
            alert.location_coordinates,
            reason,
        )
        return AlertMatch(alert_id=alert.id, center=None, bounds=None, decode_error=reason)

    bounds = bounding_box(center, alert.search_radius_km)
    result = AlertMatch(alert_id=alert.id, center=center, bounds=bounds)
    collected: list[PropertyRecord] = []
    for category in enabled_categories(alert):
        query = build_query(alert, category, bounds)
        try:
            matched = match_category(store, query, category_trigger(alert, category, price_drops))
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Property query failed alert=%s category=%s: %s", alert.id, category, exc)
            result.failed_categories.append(category)
            result.category_counts[category] = 0
            continue
        result.category_counts[category] = len(matched)
        collected.extend(matched)

    result.properties = dedupe_by_id(collected)
    return result


def _range(low: float | None, high: float | None) -> tuple[float | None, float | None]:
    # Zero bounds are stored by the dashboard for "any".
    return (low or None, high or None)
