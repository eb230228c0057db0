"""
Append-only history of fluency level changes.
"""
from typing import Optional

from app.fluency.models import HistoryEntry, history_key, history_prefix


class AuditLog:
    def __init__(self, store):
        self._store = store

    def append(self, entry: HistoryEntry) -> bool:
        """Write *entry* once. Returns False if an entry with the same id already exists."""
        return self._store.add(history_key(entry.user_id, entry.id), entry.to_dict())

    def has_entry(self, user_id, entry_id: str) -> bool:
        return self._store.get(history_key(user_id, entry_id)) is not None

    def list_for(self, user_id) -> list[HistoryEntry]:
        """Most recent first; entries with equal timestamps keep reverse insertion order."""
        rows = self._store.get_by_prefix(history_prefix(user_id))
        entries = [HistoryEntry.from_dict(r) for r in rows]
        ordered = sorted(enumerate(entries), key=lambda p: (p[1].changed_at, p[0]), reverse=True)
        return [e for _, e in ordered]

    def latest_for(self, user_id) -> Optional[HistoryEntry]:
        entries = self.list_for(user_id)
        return entries[0] if entries else None
