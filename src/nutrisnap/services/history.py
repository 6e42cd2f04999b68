"""Saved analysis history.

Writes are best effort: a failed write is logged and the caller still gets
the entry back, so in-memory state can be ahead of what was persisted.
"""

import logging
from dataclasses import dataclass

from pydantic import TypeAdapter, ValidationError

from nutrisnap.domain.analysis import HistoryEntry
from nutrisnap.domain.auth import User
from nutrisnap.services.auth import AuthService
from nutrisnap.services.storage import KeyValueStore

_logger = logging.getLogger(__name__)

_ENTRIES = TypeAdapter(list[HistoryEntry])


def history_key(user: User) -> str:
    """Storage key for a user's history."""
    return f"nutrisnap_history_{user.email}"


@dataclass
class HistoryService:
    """History for the logged-in user."""

    store: KeyValueStore
    auth_service: AuthService

    def list_entries(self) -> list[HistoryEntry]:
        """Return entries newest first; empty when logged out or unreadable."""
        user = self.auth_service.current_user()
        if user is None:
            return []
        try:
            raw = self.store.get(history_key(user))
        except Exception:
            _logger.exception("Failed to read history")
            return []
        if raw is None:
            return []
        try:
            entries = _ENTRIES.validate_python(raw)
        except ValidationError:
            _logger.warning("Stored history is invalid; ignoring it")
            return []
        return sorted(entries, key=lambda entry: entry.timestamp, reverse=True)

    def append(self, entry: HistoryEntry) -> HistoryEntry:
        """Prepend an entry and rewrite the stored collection."""
        user = self.auth_service.require_user()
        updated = [entry, *self.list_entries()]
        try:
            payload = _ENTRIES.dump_python(updated, mode="json", by_alias=True)
            self.store.set(history_key(user), payload)
        except Exception:
            _logger.exception("Failed to save history entry")
        return entry
