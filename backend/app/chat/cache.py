"""Capped per-room message cache.

Each room keeps its most recent messages as JSON snapshots in a key-value
list (``chat:<roomId>``), oldest first. The list is soft state: it can always
be rebuilt from the message log, so callers treat cache failures as
non-fatal.
"""
import json
import logging
from typing import Any, Dict, List, Mapping, Sequence

from app.kv import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_CACHE_CAPACITY = 100


class RoomMessageCache:
    """Fixed-capacity, per-room ordered buffer of message snapshots.

    Args:
        store: Key-value backend holding the lists.
        capacity: Maximum entries retained per room (oldest evicted first).
        prefix: Key prefix; the room list lives at ``<prefix>:<roomId>``.
    """

    def __init__(
        self,
        store: KeyValueStore,
        capacity: int = DEFAULT_CACHE_CAPACITY,
        prefix: str = "chat",
    ) -> None:
        self._store = store
        self.capacity = capacity
        self._prefix = prefix

    def key(self, room_id: str) -> str:
        return f"{self._prefix}:{room_id}"

    async def append(self, room_id: str, snapshots: Sequence[Mapping[str, Any]]) -> None:
        """Append snapshots in order, then trim to the last ``capacity`` entries."""
        if not snapshots:
            return
        serialized = [json.dumps(s) for s in snapshots]
        length = await self._store.append_capped(self.key(room_id), serialized, self.capacity)
        logger.debug("[Cache] Appended %d to %s (now %d)", len(serialized), room_id, length)

    async def backfill(self, room_id: str, snapshots: Sequence[Mapping[str, Any]]) -> bool:
        """Repopulate an empty room buffer from the message log.

        Skipped if something was appended since the caller observed the miss,
        so a live send is never reordered behind older history.
        """
        if not snapshots:
            return False
        serialized = [json.dumps(s) for s in snapshots]
        filled = await self._store.fill_if_empty(self.key(room_id), serialized, self.capacity)
        if filled:
            logger.info("[Cache] Backfilled %s with %d messages", room_id, len(serialized))
        else:
            logger.debug("[Cache] Backfill of %s skipped, buffer no longer empty", room_id)
        return filled

    async def read_all(self, room_id: str) -> List[Dict[str, Any]]:
        """Full buffer, oldest first. An unknown room reads as empty."""
        entries = []
        for raw in await self._store.list_range(self.key(room_id)):
            try:
                entries.append(json.loads(raw))
            except ValueError:
                logger.warning("[Cache] Dropping unreadable entry in %s", room_id)
        return entries

    async def update_at(
        self, room_id: str, message_id: str, changes: Mapping[str, Any]
    ) -> bool:
        """Merge ``changes`` into the cached copy of ``message_id``.

        Linear scan over at most ``capacity`` entries. Returns False when the
        message is not cached (e.g. it already aged out of the window).
        """
        key = self.key(room_id)
        for index, raw in enumerate(await self._store.list_range(key)):
            try:
                entry = json.loads(raw)
            except ValueError:
                continue
            if entry.get("id") == message_id:
                entry.update(changes)
                await self._store.list_set(key, index, json.dumps(entry))
                return True
        return False
