from __future__ import annotations

import threading
from datetime import datetime
from typing import Any

from property_alerts.core.mailer import DeliveryError
from property_alerts.core.matching import PropertyQuery


class FakeRepo:
    """In-memory stand-in for SupabaseRepo."""

    def __init__(
        self,
        alerts: list[dict[str, Any]] | None = None,
        properties: list[dict[str, Any]] | None = None,
        users: dict[str, str] | None = None,
    ) -> None:
        self.alerts = alerts or []
        self.properties = properties or []
        self.users = users or {}
        self.saved: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.events: list[dict[str, Any]] = []
        self.cursor_updates: list[tuple[str, datetime]] = []
        self.queries: list[PropertyQuery] = []
        self.failing_categories: set[str] = set()
        self.failing_saves: set[str] = set()
        self.fail_alert_load = False
        self.fail_events = False
        self._lock = threading.Lock()

    def get_active_alerts(self, now: datetime) -> list[dict[str, Any]]:
        if self.fail_alert_load:
            raise ConnectionError("alert store unreachable")
        return list(self.alerts)

    def find_properties(self, query: PropertyQuery) -> list[dict[str, Any]]:
        with self._lock:
            self.queries.append(query)
        if query.category in self.failing_categories:
            raise RuntimeError(f"{query.category} query timed out")
        return list(self.properties)

    def get_user_email(self, user_id: str) -> str | None:
        return self.users.get(user_id)

    def insert_saved_property(self, row: dict[str, Any]) -> bool:
        if row["property_id"] in self.failing_saves:
            raise RuntimeError("connection reset")
        key = (row["user_id"], row["property_id"], row["property_type"])
        with self._lock:
            if key in self.saved:
                return False
            self.saved[key] = row
            return True

    def insert_alert_event(self, row: dict[str, Any]) -> None:
        if self.fail_events:
            raise RuntimeError("alert_events insert failed")
        with self._lock:
            self.events.append(row)

    def update_alert_last_checked(self, alert_id: str, checked_at: datetime) -> None:
        with self._lock:
            self.cursor_updates.append((alert_id, checked_at))
            for row in self.alerts:
                if row["id"] == alert_id:
                    row["last_checked"] = checked_at.isoformat()


class FakeTransport:
    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail_for = fail_for or set()
        self._lock = threading.Lock()

    def send(self, to_email: str, subject: str, html_body: str, text_body: str | None = None) -> str:
        if to_email in self.fail_for:
            raise DeliveryError(f"550 mailbox unavailable: {to_email}")
        with self._lock:
            self.sent.append({"to": to_email, "subject": subject, "html": html_body, "text": text_body})
            return f"msg-{len(self.sent)}"


def alert_row(**overrides: Any) -> dict[str, Any]:
    row: dict[str, Any] = {
        "id": "alert-1",
        "user_id": "user-1",
        "location_name": "Dublin 8",
        "location_coordinates": "POINT(-6.2603 53.3498)",
        "search_radius_km": 2,
        "status": "active",
        "expires_at": "2099-01-01T00:00:00+00:00",
        "last_checked": "2026-01-01T00:00:00+00:00",
        "monitor_sale": True,
        "monitor_rental": False,
        "monitor_sold": False,
        "sale_alert_on_new": True,
        "sale_alert_on_price_drops": False,
        "rental_alert_on_new": True,
        "sold_alert_on_over_asking": False,
        "sold_alert_on_under_asking": False,
    }
    row.update(overrides)
    return row


def property_row(**overrides: Any) -> dict[str, Any]:
    row: dict[str, Any] = {
        "id": "prop-1",
        "address": "12 Thomas Street, Dublin 8",
        "latitude": 53.3440,
        "longitude": -6.2770,
        "scraped_at": "2026-01-02T08:00:00+00:00",
        "is_listing": True,
        "is_rental": False,
        "sold_date": None,
        "asking_price": 350000,
        "sold_price": None,
        "monthly_rent": None,
        "beds": 2,
        "baths": 1,
        "area_sqm": 70,
        "property_type": "Apartment",
        "source_url": "https://example.com/prop-1",
        "price_history": [],
    }
    row.update(overrides)
    return row
