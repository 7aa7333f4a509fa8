"""
Fold Airtable webhook payloads into one change entry per record.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional

ChangeType = Literal["created", "updated"]


@dataclass
class AirtableChange:
    table_id: str
    record_id: str
    change_type: ChangeType
    changed_fields: Dict[str, Any] = field(default_factory=dict)
    previous_fields: Optional[Dict[str, Any]] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "tableId": self.table_id,
            "recordId": self.record_id,
            "changeType": self.change_type,
            "changedFields": dict(self.changed_fields),
        }
        if self.previous_fields is not None:
            payload["previousFields"] = dict(self.previous_fields)
        return payload


class ChangeConsolidator:
    """
    Accumulates record changes across payload pages.

    - A record first seen as created stays created; later updates merge
      their fields into it.
    - A record first seen as updated keeps the earliest previous snapshot
      while its current fields follow the latest update.
    """

    def __init__(self) -> None:
        self._changes: Dict[str, AirtableChange] = {}

    def __len__(self) -> int:
        return len(self._changes)

    def get(self, record_id: str) -> Optional[AirtableChange]:
        return self._changes.get(record_id)

    def record_created(self, table_id: str, record_id: str, fields: Mapping[str, Any]) -> None:
        existing = self._changes.get(record_id)
        if existing is not None:
            existing.changed_fields.update(fields)
            return
        self._changes[record_id] = AirtableChange(
            table_id=table_id,
            record_id=record_id,
            change_type="created",
            changed_fields=dict(fields),
        )

    def record_updated(
        self,
        table_id: str,
        record_id: str,
        current: Mapping[str, Any],
        previous: Optional[Mapping[str, Any]] = None,
    ) -> None:
        existing = self._changes.get(record_id)
        if existing is not None:
            existing.changed_fields.update(current)
            return
        self._changes[record_id] = AirtableChange(
            table_id=table_id,
            record_id=record_id,
            change_type="updated",
            changed_fields=dict(current),
            previous_fields=dict(previous) if previous is not None else None,
        )

    def add_payload(self, payload: Mapping[str, Any]) -> int:
        """Consume one `/payloads` entry; returns the number of record changes seen."""
        count = 0
        for table_id, table_changes in (payload.get("changedTablesById") or {}).items():
            for record_id, record in (table_changes.get("createdRecordsById") or {}).items():
                self.record_created(table_id, record_id, record.get("cellValuesByFieldId") or {})
                count += 1
            for record_id, record in (table_changes.get("changedRecordsById") or {}).items():
                current = (record.get("current") or {}).get("cellValuesByFieldId") or {}
                previous = (record.get("previous") or {}).get("cellValuesByFieldId")
                self.record_updated(table_id, record_id, current, previous)
                count += 1
        return count

    def add_payloads(self, payloads: Iterable[Mapping[str, Any]]) -> int:
        return sum(self.add_payload(payload) for payload in payloads)

    def changes(self) -> List[AirtableChange]:
        return list(self._changes.values())

    def as_input(self) -> Dict[str, Any]:
        return {"airtableChanges": [change.to_payload() for change in self._changes.values()]}


__all__ = ["AirtableChange", "ChangeConsolidator"]
