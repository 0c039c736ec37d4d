from __future__ import annotations

import os
from datetime import datetime
from typing import Any

from supabase import Client, create_client

from property_alerts.core.matching import RENTAL, SALE, SOLD, PropertyQuery


UNIQUE_VIOLATION = "23505"
NO_MATCHING_CONSTRAINT = "42P10"
SAVED_PROPERTY_KEY = "user_id,property_id,property_type"


class SupabaseRepo:
    def __init__(self, url: str | None = None, service_role_key: str | None = None) -> None:
        supabase_url = url or os.environ.get("SUPABASE_URL")
        supabase_key = service_role_key or os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
        if not supabase_url or not supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required.")
        self.client: Client = create_client(supabase_url, supabase_key)
        self._saved_on_conflict_supported: bool | None = None

    def get_active_alerts(self, now: datetime) -> list[dict[str, Any]]:
        return (
            self.client.table("location_alerts")
            .select("*")
            .eq("status", "active")
            .gt("expires_at", now.isoformat())
            .execute()
            .data
            or []
        )

    def find_properties(self, query: PropertyQuery) -> list[dict[str, Any]]:
        request = (
            self.client.table("consolidated_properties")
            .select("*")
            .gte("latitude", query.bounds.min_lat)
            .lte("latitude", query.bounds.max_lat)
            .gte("longitude", query.bounds.min_lng)
            .lte("longitude", query.bounds.max_lng)
        )
        if query.since is not None:
            request = request.gt("scraped_at", query.since.isoformat())
        if query.category == SALE:
            request = request.eq("is_listing", True)
        elif query.category == RENTAL:
            request = request.eq("is_rental", True)
        elif query.category == SOLD:
            request = request.not_.is_("sold_date", "null")
        for column, (low, high) in query.ranges.items():
            if low is not None:
                request = request.gte(column, low)
            if high is not None:
                request = request.lte(column, high)
        return request.execute().data or []

    def get_user_email(self, user_id: str) -> str | None:
        rows = self.client.table("users").select("email").eq("id", user_id).limit(1).execute().data or []
        return rows[0].get("email") if rows else None

    def insert_saved_property(self, row: dict[str, Any]) -> bool:
        """
        Insert a saved property, ignoring (user, property, type) duplicates.

        Returns True only when a new row was created. Prefers a DB-level
        ignore-duplicates upsert; falls back to a plain insert that treats a
        unique violation as "already saved" when the constraint is missing.
        """
        if self._saved_on_conflict_supported is not False:
            try:
                response = (
                    self.client.table("saved_properties")
                    .upsert(row, on_conflict=SAVED_PROPERTY_KEY, ignore_duplicates=True)
                    .execute()
                )
                self._saved_on_conflict_supported = True
                return bool(response.data)
            except Exception as exc:
                if _is_unique_violation(exc):
                    return False
                if not _has_error_code(exc, NO_MATCHING_CONSTRAINT):
                    raise exc
                self._saved_on_conflict_supported = False

        try:
            response = self.client.table("saved_properties").insert(row).execute()
        except Exception as exc:
            if _is_unique_violation(exc):
                return False
            raise exc
        return bool(response.data)

    def insert_alert_event(self, row: dict[str, Any]) -> None:
        self.client.table("alert_events").insert(row).execute()

    def update_alert_last_checked(self, alert_id: str, checked_at: datetime) -> None:
        value = checked_at.isoformat()
        # Never move the cursor backwards if a newer run already advanced it.
        (
            self.client.table("location_alerts")
            .update({"last_checked": value})
            .eq("id", alert_id)
            .or_(f'last_checked.is.null,last_checked.lt."{value}"')
            .execute()
        )


def _is_unique_violation(exc: Exception) -> bool:
    return _has_error_code(exc, UNIQUE_VIOLATION)


def _has_error_code(exc: Exception, code: str) -> bool:
    return getattr(exc, "code", None) == code or code in str(exc)
