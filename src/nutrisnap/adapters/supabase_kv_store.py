"""Supabase key-value store."""

from dataclasses import dataclass
from datetime import UTC, datetime

from supabase import Client

from nutrisnap.services.storage import KeyValueStore


@dataclass
class SupabaseKeyValueStore(KeyValueStore):
    """Stores JSON values in a two-column Supabase table."""

    client: Client
    table: str = "kv_store"

    def get(self, key: str) -> object | None:
        """Return the stored value for a key."""
        response = (
            self.client.table(self.table)
            .select("value")
            .eq("key", key)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return response.data[0].get("value")

    def set(self, key: str, value: object) -> None:
        """Insert or overwrite the value for a key."""
        self.client.table(self.table).upsert(
            {
                "key": key,
                "value": value,
                "updated_at": datetime.now(tz=UTC).isoformat(),
            }
        ).execute()

    def delete(self, key: str) -> None:
        """Delete a key."""
        self.client.table(self.table).delete().eq("key", key).execute()
