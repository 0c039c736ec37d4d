from __future__ import annotations

from collections.abc import Iterable

from property_alerts.core.models import PropertyRecord


def dedupe_by_id(records: Iterable[PropertyRecord]) -> list[PropertyRecord]:
    """
    Keep the first occurrence of each property id, preserving order.
    """
    seen: set[str] = set()
    unique: list[PropertyRecord] = []
    for record in records:
        if record.id in seen:
            continue
        seen.add(record.id)
        unique.append(record)
    return unique
