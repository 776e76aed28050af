"""Key/value storage for JSON blobs that must survive restarts."""
import json
import logging
from typing import Any, Optional

from stayfocus.core.database import Database
from stayfocus.core.encryption import StorageEncryption

logger = logging.getLogger(__name__)


class LocalStorage:
    """
    Durable key → JSON value storage on top of the `local_storage` table.

    Values are serialized with json and, when an encryptor is given,
    encrypted before they hit the disk.
    """

    def __init__(self, db: Database, encryption: Optional[StorageEncryption] = None):
        self.db = db
        self.encryption = encryption

    async def get_item(self, key: str) -> Optional[Any]:
        """Return the decoded value stored under key, or None."""
        row = await self.db.fetchone("SELECT value FROM local_storage WHERE key = ?", (key,))
        if not row:
            return None

        raw = row["value"]
        if self.encryption:
            raw = self.encryption.decrypt(raw)
        return json.loads(raw)

    async def set_item(self, key: str, value: Any) -> None:
        """Serialize and store value under key (replaces the previous value)."""
        raw = json.dumps(value, ensure_ascii=False)
        if self.encryption:
            raw = self.encryption.encrypt(raw)

        await self.db.execute(
            """INSERT INTO local_storage (key, value)
               VALUES (?, ?)
               ON CONFLICT(key) DO UPDATE SET
                   value = excluded.value,
                   updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')""",
            (key, raw),
        )

    async def remove_item(self, key: str) -> None:
        await self.db.execute("DELETE FROM local_storage WHERE key = ?", (key,))
