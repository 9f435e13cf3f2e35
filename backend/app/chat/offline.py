"""Per-user offline queues and last-seen bookkeeping.

Messages addressed to a user without a live connection are appended to
``offline:<userId>`` and handed over in one piece the next time the user
connects. The drain reads and deletes the list in a single backend
operation, so a message is never handed out twice. If the process dies after
the drain but before delivery completes, the drained batch is lost; the
gateway re-queues entries it could not send on a live socket.
"""
import json
import logging
from typing import Any, Dict, List, Mapping, Optional

from app.kv import KeyValueStore

logger = logging.getLogger(__name__)


class OfflineQueue:
    """Ordered, per-user list of undelivered message snapshots."""

    def __init__(self, store: KeyValueStore, prefix: str = "offline") -> None:
        self._store = store
        self._prefix = prefix

    def key(self, user_id: str) -> str:
        return f"{self._prefix}:{user_id}"

    async def enqueue(self, user_id: str, snapshot: Mapping[str, Any]) -> int:
        """Append a snapshot and return the queue length."""
        length = await self._store.list_push(self.key(user_id), json.dumps(snapshot))
        logger.debug("[Offline] Queued %s for %s (%d pending)", snapshot.get("id"), user_id, length)
        return length

    async def drain_and_clear(self, user_id: str) -> List[Dict[str, Any]]:
        """Remove and return the whole queue, oldest first.

        Entries that cannot be decoded are skipped.
        """
        entries = []
        for raw in await self._store.drain(self.key(user_id)):
            try:
                entries.append(json.loads(raw))
            except ValueError:
                logger.error("[Offline] Skipping unreadable entry for %s", user_id)
        return entries


class LastSeenTracker:
    """Remembers the last message id each user has seen (``lastSeen:<userId>``)."""

    def __init__(self, store: KeyValueStore, prefix: str = "lastSeen") -> None:
        self._store = store
        self._prefix = prefix

    def key(self, user_id: str) -> str:
        return f"{self._prefix}:{user_id}"

    async def record(self, user_id: str, message_id: str) -> None:
        await self._store.set(self.key(user_id), str(message_id))

    async def get(self, user_id: str) -> Optional[str]:
        return await self._store.get(self.key(user_id))
