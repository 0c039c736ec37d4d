from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class RunMode(str, Enum):
    LIVE = "live"
    DRY_RUN = "dry_run"


@dataclass(slots=True)
class GeoPoint:
    lat: float
    lng: float


@dataclass(slots=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng


@dataclass(slots=True)
class Alert:
    id: str
    user_id: str
    location_name: str
    location_coordinates: str | None
    search_radius_km: float
    status: str
    expires_at: datetime | None
    last_checked: datetime | None
    monitor_sale: bool = False
    monitor_rental: bool = False
    monitor_sold: bool = False
    sale_min_bedrooms: int | None = None
    sale_max_bedrooms: int | None = None
    sale_min_price: float | None = None
    sale_max_price: float | None = None
    sale_alert_on_new: bool = False
    sale_alert_on_price_drops: bool = False
    rental_min_bedrooms: int | None = None
    rental_max_bedrooms: int | None = None
    rental_min_price: float | None = None
    rental_max_price: float | None = None
    rental_alert_on_new: bool = False
    sold_min_bedrooms: int | None = None
    sold_max_bedrooms: int | None = None
    sold_price_threshold_percent: float | None = None
    sold_alert_on_over_asking: bool = False
    sold_alert_on_under_asking: bool = False

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Alert:
        return cls(
            id=str(row["id"]),
            user_id=str(row.get("user_id") or ""),
            location_name=str(row.get("location_name") or ""),
            location_coordinates=row.get("location_coordinates"),
            search_radius_km=_safe_float(row.get("search_radius_km")) or 0.0,
            status=str(row.get("status") or ""),
            expires_at=parse_dt(row.get("expires_at")),
            last_checked=parse_dt(row.get("last_checked")),
            monitor_sale=bool(row.get("monitor_sale")),
            monitor_rental=bool(row.get("monitor_rental")),
            monitor_sold=bool(row.get("monitor_sold")),
            sale_min_bedrooms=_safe_int(row.get("sale_min_bedrooms")),
            sale_max_bedrooms=_safe_int(row.get("sale_max_bedrooms")),
            sale_min_price=_safe_float(row.get("sale_min_price")),
            sale_max_price=_safe_float(row.get("sale_max_price")),
            sale_alert_on_new=bool(row.get("sale_alert_on_new")),
            sale_alert_on_price_drops=bool(row.get("sale_alert_on_price_drops")),
            rental_min_bedrooms=_safe_int(row.get("rental_min_bedrooms")),
            rental_max_bedrooms=_safe_int(row.get("rental_max_bedrooms")),
            rental_min_price=_safe_float(row.get("rental_min_price")),
            rental_max_price=_safe_float(row.get("rental_max_price")),
            rental_alert_on_new=bool(row.get("rental_alert_on_new")),
            sold_min_bedrooms=_safe_int(row.get("sold_min_bedrooms")),
            sold_max_bedrooms=_safe_int(row.get("sold_max_bedrooms")),
            sold_price_threshold_percent=_safe_float(row.get("sold_price_threshold_percent")),
            sold_alert_on_over_asking=bool(row.get("sold_alert_on_over_asking")),
            sold_alert_on_under_asking=bool(row.get("sold_alert_on_under_asking")),
        )

    def is_eligible(self, now: datetime) -> bool:
        if self.status != "active":
            return False
        return self.expires_at is not None and self.expires_at > now


@dataclass(slots=True)
class PropertyRecord:
    id: str
    address: str | None
    latitude: float | None
    longitude: float | None
    scraped_at: datetime | None
    is_listing: bool = False
    is_rental: bool = False
    sold_date: str | None = None
    asking_price: float | None = None
    sold_price: float | None = None
    monthly_rent: float | None = None
    beds: int | None = None
    baths: int | None = None
    area_sqm: float | None = None
    property_type: str | None = None
    source_url: str | None = None
    price_history: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> PropertyRecord:
        history = row.get("price_history")
        sold_date = row.get("sold_date")
        return cls(
            id=str(row["id"]),
            address=row.get("address"),
            latitude=_safe_float(row.get("latitude")),
            longitude=_safe_float(row.get("longitude")),
            scraped_at=parse_dt(row.get("scraped_at")),
            is_listing=bool(row.get("is_listing")),
            is_rental=bool(row.get("is_rental")),
            sold_date=str(sold_date) if sold_date else None,
            asking_price=_safe_float(row.get("asking_price")),
            sold_price=_safe_float(row.get("sold_price")),
            monthly_rent=_safe_float(row.get("monthly_rent")),
            beds=_safe_int(row.get("beds")),
            baths=_safe_int(row.get("baths")),
            area_sqm=_safe_float(row.get("area_sqm")),
            property_type=row.get("property_type"),
            source_url=row.get("source_url"),
            price_history=[entry for entry in history if isinstance(entry, dict)] if isinstance(history, list) else [],
        )


@dataclass(slots=True)
class DispatchReceipt:
    recipient: str
    subject: str
    property_count: int
    message_id: str | None
    simulated: bool = False


@dataclass(slots=True)
class AlertRunResult:
    alert_id: str
    matched_count: int = 0
    email_sent: bool = False
    dispatch_failed: bool = False
    saved_count: int = 0
    cursor_advanced: bool = False
    skipped: bool = False
    error: str | None = None


@dataclass(slots=True)
class RunSummary:
    mode: RunMode
    total_alerts: int = 0
    processed_count: int = 0
    emails_sent_count: int = 0
    dispatch_failed_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    saved_count: int = 0
    interrupted: bool = False

    def add(self, result: AlertRunResult) -> None:
        if result.skipped:
            self.skipped_count += 1
            return
        if result.error is not None:
            self.failed_count += 1
            return
        self.processed_count += 1
        if result.email_sent:
            self.emails_sent_count += 1
        if result.dispatch_failed:
            self.dispatch_failed_count += 1
        self.saved_count += result.saved_count


def parse_dt(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


def _safe_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _safe_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None
