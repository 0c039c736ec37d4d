from __future__ import annotations

import logging
from typing import Any, Protocol

from property_alerts.core.models import Alert, PropertyRecord
from property_alerts.core.normalize import saved_property_to_record


LOGGER = logging.getLogger(__name__)


class SavedPropertyStore(Protocol):
    def insert_saved_property(self, row: dict[str, Any]) -> bool: ...


class AutoSaveRecorder:
    def __init__(self, store: SavedPropertyStore) -> None:
        self.store = store

    def record(self, alert: Alert, properties: list[PropertyRecord]) -> int:
        """
        Save every matched property for the alert owner and return how many
        rows were newly created. Already-saved properties are not counted.
        """
        saved_count = 0
        for record in properties:
            try:
                created = self.store.insert_saved_property(saved_property_to_record(alert, record))
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Failed to auto-save property=%s for alert=%s: %s", record.id, alert.id, exc)
                continue
            if created:
                saved_count += 1
        LOGGER.info(
            "Auto-saved %s out of %s properties for user=%s (alert=%s)",
            saved_count,
            len(properties),
            alert.user_id,
            alert.id,
        )
        return saved_count
