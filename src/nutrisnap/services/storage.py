"""Key-value storage abstractions."""

import copy
from dataclasses import dataclass
from typing import Protocol


class KeyValueStore(Protocol):
    """Storage interface for JSON-compatible values."""

    def get(self, key: str) -> object | None:
        """Return the stored value, or None if absent."""

    def set(self, key: str, value: object) -> None:
        """Overwrite the value stored under a key."""

    def delete(self, key: str) -> None:
        """Remove a key if present."""


@dataclass
class InMemoryKeyValueStore(KeyValueStore):
    """In-memory store used when no database is configured."""

    _values: dict[str, object]

    def __init__(self) -> None:
        self._values = {}

    def get(self, key: str) -> object | None:
        """Return a copy of the stored value."""
        return copy.deepcopy(self._values.get(key))

    def set(self, key: str, value: object) -> None:
        """Store a copy of the value."""
        self._values[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        """Remove a key."""
        self._values.pop(key, None)
