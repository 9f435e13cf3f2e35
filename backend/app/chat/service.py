"""Wiring for the chat pipeline.

``build_chat_services`` assembles the stores, cache, queues, history service
and gateway from settings. A module-level singleton is initialised lazily on
first use (or explicitly from ``app/main.py``); tests replace it with
``set_chat_services``.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from app.badges import BadgeService
from app.config import AppSettings, get_config
from app.kv import KeyValueStore, create_kv_store
from app.users.service import UserStore

from .cache import RoomMessageCache
from .gateway import ChatGateway
from .history import HistoryService
from .manager import ConnectionManager
from .offline import LastSeenTracker, OfflineQueue
from .store import MessageStore
from .tasks import BackgroundTasks

logger = logging.getLogger(__name__)


@dataclass
class ChatServices:
    config: AppSettings
    kv: KeyValueStore
    messages: MessageStore
    users: UserStore
    cache: RoomMessageCache
    offline: OfflineQueue
    last_seen: LastSeenTracker
    badges: BadgeService
    background: BackgroundTasks
    history: HistoryService
    manager: ConnectionManager
    gateway: ChatGateway

    async def close(self) -> None:
        """Finish pending side effects and release every backend."""
        await self.background.wait()
        await self.kv.close()
        self.messages.close()
        self.users.close()


def build_chat_services(
    config: AppSettings, kv: Optional[KeyValueStore] = None
) -> ChatServices:
    """Assemble the chat pipeline from settings.

    Args:
        config: Application settings.
        kv: Optional key-value backend; defaults to the one selected by
            ``cache.backend``.
    """
    chat_cfg = config.chat
    cache_cfg = config.cache

    kv = kv or create_kv_store(config)
    messages = MessageStore(config.database.path)
    users = UserStore(config.database.path)
    background = BackgroundTasks()
    cache = RoomMessageCache(kv, capacity=chat_cfg.cache_capacity, prefix=cache_cfg.room_prefix)
    offline = OfflineQueue(kv, prefix=cache_cfg.offline_prefix)
    last_seen = LastSeenTracker(kv, prefix=cache_cfg.last_seen_prefix)
    badges = BadgeService(users)
    history = HistoryService(
        messages,
        cache,
        background=background,
        latest_limit=chat_cfg.latest_limit,
        default_page_size=chat_cfg.default_page_size,
        max_page_size=chat_cfg.max_page_size,
    )
    manager = ConnectionManager()
    gateway = ChatGateway(
        manager,
        messages,
        users,
        cache,
        offline,
        last_seen,
        badges,
        background=background,
        default_room=chat_cfg.default_room,
    )
    logger.info(
        "Chat services ready (room=%s, cache capacity=%d)",
        chat_cfg.default_room,
        chat_cfg.cache_capacity,
    )
    return ChatServices(
        config=config,
        kv=kv,
        messages=messages,
        users=users,
        cache=cache,
        offline=offline,
        last_seen=last_seen,
        badges=badges,
        background=background,
        history=history,
        manager=manager,
        gateway=gateway,
    )


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_services: Optional[ChatServices] = None


def get_chat_services() -> ChatServices:
    """Return the global ChatServices, building them from config on first use."""
    global _services
    if _services is None:
        _services = build_chat_services(get_config())
    return _services


def set_chat_services(services: Optional[ChatServices]) -> None:
    """Set (or clear, with ``None``) the global ChatServices instance."""
    global _services
    _services = services
