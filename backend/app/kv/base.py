"""Abstract key-value interface and the in-process implementation.

The chat pipeline only needs a small slice of a Redis-style data model:
ordered string lists and plain string keys. Every list operation that the
pipeline relies on being atomic (capped append, conditional fill, drain) is a
single method here so each backend can implement it with its own primitive.
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence


class KeyValueStore(ABC):
    """Abstract base class for key-value backends.

    All methods are coroutines. Backends raise
    :class:`app.chat.errors.CacheUnavailableError` when the store cannot be
    reached.
    """

    @abstractmethod
    async def append_capped(self, key: str, values: Sequence[str], max_len: int) -> int:
        """Push ``values`` onto the tail of ``key`` and keep only the last ``max_len``.

        Both steps form one logical operation; concurrent callers never see
        the list between push and trim.

        Returns:
            Length of the list after trimming.
        """

    @abstractmethod
    async def fill_if_empty(self, key: str, values: Sequence[str], max_len: int) -> bool:
        """Like :meth:`append_capped`, but only when ``key`` holds no entries.

        Returns:
            True if the values were written, False if the list was not empty.
        """

    @abstractmethod
    async def list_range(self, key: str) -> List[str]:
        """Return every entry of the list at ``key``, head first."""

    @abstractmethod
    async def list_set(self, key: str, index: int, value: str) -> None:
        """Overwrite the entry at ``index``. Out-of-range indexes are ignored."""

    @abstractmethod
    async def list_push(self, key: str, value: str) -> int:
        """Append a single value to the tail of ``key`` and return the new length."""

    @abstractmethod
    async def drain(self, key: str) -> List[str]:
        """Read and delete the whole list at ``key`` in one step."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Read a string key."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Write a string key."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key`` regardless of its type."""

    async def close(self) -> None:
        """Release backend resources (no-op by default)."""


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local backend used for single-worker deployments and tests.

    Every method completes without suspending, so each call is atomic with
    respect to other coroutines on the same event loop.
    """

    def __init__(self) -> None:
        self._lists: Dict[str, List[str]] = {}
        self._strings: Dict[str, str] = {}

    async def append_capped(self, key: str, values: Sequence[str], max_len: int) -> int:
        items = self._lists.setdefault(key, [])
        items.extend(values)
        if len(items) > max_len:
            del items[: len(items) - max_len]
        return len(items)

    async def fill_if_empty(self, key: str, values: Sequence[str], max_len: int) -> bool:
        if self._lists.get(key):
            return False
        self._lists[key] = list(values)[-max_len:]
        return True

    async def list_range(self, key: str) -> List[str]:
        return list(self._lists.get(key, []))

    async def list_set(self, key: str, index: int, value: str) -> None:
        items = self._lists.get(key)
        if items is not None and 0 <= index < len(items):
            items[index] = value

    async def list_push(self, key: str, value: str) -> int:
        items = self._lists.setdefault(key, [])
        items.append(value)
        return len(items)

    async def drain(self, key: str) -> List[str]:
        return self._lists.pop(key, [])

    async def get(self, key: str) -> Optional[str]:
        return self._strings.get(key)

    async def set(self, key: str, value: str) -> None:
        self._strings[key] = value

    async def delete(self, key: str) -> None:
        self._lists.pop(key, None)
        self._strings.pop(key, None)
