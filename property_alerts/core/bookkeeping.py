from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Protocol

from property_alerts.core.models import Alert, DispatchReceipt, PropertyRecord, RunMode
from property_alerts.core.normalize import alert_event_to_record


LOGGER = logging.getLogger(__name__)

EMAIL_SENT = "email_sent"


class AlertCursorStore(Protocol):
    def update_alert_last_checked(self, alert_id: str, checked_at: datetime) -> None: ...


class AlertEventStore(Protocol):
    def insert_alert_event(self, row: dict[str, Any]) -> None: ...


class CursorUpdater:
    def __init__(self, store: AlertCursorStore, mode: RunMode = RunMode.LIVE) -> None:
        self.store = store
        self.mode = mode

    def advance(self, alert: Alert, checked_at: datetime) -> bool:
        if self.mode is RunMode.DRY_RUN:
            LOGGER.debug("DRY RUN: leaving last_checked untouched for alert=%s", alert.id)
            return False
        if alert.last_checked is not None and checked_at <= alert.last_checked:
            return False
        try:
            self.store.update_alert_last_checked(alert.id, checked_at)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Failed to update last_checked for alert=%s: %s", alert.id, exc)
            return False
        return True


class EventLogger:
    def __init__(self, store: AlertEventStore, mode: RunMode = RunMode.LIVE) -> None:
        self.store = store
        self.mode = mode

    def email_sent(
        self,
        alert: Alert,
        properties: list[PropertyRecord],
        receipt: DispatchReceipt,
        sent_at: datetime,
    ) -> bool:
        if self.mode is RunMode.DRY_RUN or receipt.simulated:
            return False
        event_data = {
            "property_count": len(properties),
            "properties": [{"id": record.id, "address": record.address} for record in properties],
            "message_id": receipt.message_id,
        }
        try:
            self.store.insert_alert_event(alert_event_to_record(alert, EMAIL_SENT, event_data, sent_at.isoformat()))
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Failed to log %s event for alert=%s: %s", EMAIL_SENT, alert.id, exc)
            return False
        return True
