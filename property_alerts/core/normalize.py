from __future__ import annotations

from typing import Any

from property_alerts.core.models import Alert, PropertyRecord


def saved_property_type(record: PropertyRecord) -> str:
    if record.is_rental:
        return "rental"
    if record.sold_date:
        return "sold"
    return "listing"


def property_snapshot(record: PropertyRecord) -> dict[str, Any]:
    return {
        "address": record.address,
        "asking_price": record.asking_price,
        "sold_price": record.sold_price,
        "monthly_rent": record.monthly_rent,
        "beds": record.beds,
        "baths": record.baths,
        "area_sqm": record.area_sqm,
        "is_listing": record.is_listing,
        "is_rental": record.is_rental,
        "sold_date": record.sold_date,
        "property_type": record.property_type,
        "source_url": record.source_url,
        "latitude": record.latitude,
        "longitude": record.longitude,
    }


def saved_property_to_record(alert: Alert, record: PropertyRecord) -> dict[str, Any]:
    return {
        "user_id": alert.user_id,
        "property_id": record.id,
        "property_type": saved_property_type(record),
        "property_data": property_snapshot(record),
        "notes": f"Auto-saved from alert: {alert.location_name}",
    }


def alert_event_to_record(alert: Alert, event_type: str, event_data: dict[str, Any], sent_at: str) -> dict[str, Any]:
    return {
        "alert_id": alert.id,
        "event_type": event_type,
        "event_data": event_data,
        "sent_at": sent_at,
    }
