"""Chat history reads: room cache first, message log second.

Latest page (no cursor):
    1. Read the room cache. A non-empty buffer is returned as is.
    2. On a miss, read the newest ``latest_limit`` records from the message
       log (oldest first), return them, and refill the cache in a detached
       task that reads the log again, so mutations made in between are kept.
       A failed refill is logged and does not affect the response.

Older pages (``before`` cursor):
    The cursor is either a message id (any letter case), resolved to that
    message's creation time, or a literal timestamp (ISO-8601, a four-digit
    year, or epoch milliseconds). The message log is queried for records
    strictly older than the cursor; the cache is never consulted.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .cache import RoomMessageCache
from .errors import InfrastructureError, InvalidCursorError
from .store import MessageStore
from .tasks import BackgroundTasks

logger = logging.getLogger(__name__)

MESSAGE_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$", re.IGNORECASE)
YEAR_PATTERN = re.compile(r"^\d{4}$")
EPOCH_MILLIS_PATTERN = re.compile(r"^\d{1,15}$")


def parse_timestamp_cursor(value: str) -> datetime:
    """Parse a literal ``before`` timestamp into a naive UTC datetime.

    Four digits are a calendar year (``2024`` is 2024-01-01); other digit
    strings are epoch milliseconds; anything else must be ISO-8601.

    Raises:
        InvalidCursorError: If the value is not a recognizable timestamp.
    """
    text = value.strip()
    try:
        if YEAR_PATTERN.match(text):
            parsed = datetime(int(text), 1, 1)
        elif EPOCH_MILLIS_PATTERN.match(text):
            parsed = datetime.fromtimestamp(int(text) / 1000, tz=timezone.utc)
        else:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except (ValueError, OverflowError, OSError) as exc:
        raise InvalidCursorError(value) from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class HistoryService:
    """Resolves history requests against the room cache and the message log.

    Args:
        store: The durable message log.
        cache: The capped room cache.
        background: Task set used for cache refills.
        latest_limit: Records pulled from the log on a cold latest-page read.
        default_page_size: Page size for cursor reads when none is given.
        max_page_size: Upper bound for cursor page sizes.
    """

    def __init__(
        self,
        store: MessageStore,
        cache: RoomMessageCache,
        background: Optional[BackgroundTasks] = None,
        latest_limit: int = 100,
        default_page_size: int = 50,
        max_page_size: int = 100,
    ) -> None:
        self._store = store
        self._cache = cache
        self.background = background or BackgroundTasks()
        self.latest_limit = latest_limit
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    async def get_history(
        self,
        room_id: str,
        before: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return message snapshots for a room, oldest first.

        Args:
            room_id: The room to read.
            before: Optional cursor (message id or timestamp).
            limit: Page size for cursor reads. The latest page always spans
                   the cache window.

        Raises:
            InvalidCursorError: If ``before`` cannot be interpreted.
        """
        if before:
            page_size = min(limit or self.default_page_size, self.max_page_size)
            return self._get_before(room_id, before, page_size)
        return await self._get_latest(room_id)

    async def _get_latest(self, room_id: str) -> List[Dict[str, Any]]:
        try:
            cached = await self._cache.read_all(room_id)
        except InfrastructureError as exc:
            logger.warning("[History] Cache read failed for %s, using message log: %s", room_id, exc)
            cached = []
        if cached:
            return cached

        snapshots = [m.snapshot() for m in self._store.latest(room_id, self.latest_limit)]
        logger.info("[History] Cache miss for %s, loaded %d from message log", room_id, len(snapshots))
        if snapshots:
            self.background.spawn(self._backfill(room_id), name=f"backfill:{room_id}")
        return snapshots

    async def _backfill(self, room_id: str) -> None:
        # Re-read at fill time: deletes and edits that ran since the cold read
        # found no cached entry to patch.
        snapshots = [m.snapshot() for m in self._store.latest(room_id, self.latest_limit)]
        await self._cache.backfill(room_id, snapshots)

    def _get_before(self, room_id: str, before: str, limit: int) -> List[Dict[str, Any]]:
        cursor = self.resolve_cursor(before)
        if cursor is None:
            return []
        return [m.snapshot() for m in self._store.before(room_id, cursor, limit)]

    def resolve_cursor(self, before: str) -> Optional[datetime]:
        """Translate a cursor into a timestamp.

        Returns None when the cursor names a message id that does not exist.
        """
        if MESSAGE_ID_PATTERN.match(before):
            ref = self._store.get(before.lower())
            if ref is None:
                logger.debug("[History] Cursor message %s not found", before)
                return None
            return ref.createdAt
        return parse_timestamp_cursor(before)
