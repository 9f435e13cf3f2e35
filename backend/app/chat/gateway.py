"""Realtime chat gateway: event handling on top of the connection registry.

Every frame on the channel is a JSON envelope ``{"event": <name>, "data": {...}}``
mirroring socket-style emits. Inbound events are dispatched to the handlers
below; each write goes to the message log first, then to the room cache,
then out to clients.

Connection lifecycle:
    connected   -> registered with the handshake ``userId`` (optional); any
                   queued offline messages are delivered in order.
    active      -> inbound events handled one at a time per connection.
    disconnected-> unregistered; later direct messages for the user go to the
                   offline queue.

Room messages are broadcast to every live connection (single global room).
Direct messages (``recipientId`` set) go only to the two participants and are
queued for the recipient when no connection of theirs is live.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from fastapi import WebSocket
from pydantic import BaseModel, ValidationError

from app.badges import BadgeService
from app.users.service import UserStore

from .cache import RoomMessageCache
from .errors import (
    AuthorizationError,
    ChatError,
    ClientError,
    InfrastructureError,
    InvalidEventError,
    MessageNotFoundError,
)
from .manager import ConnectionManager
from .offline import LastSeenTracker, OfflineQueue
from .schemas import (
    ChatMessageEvent,
    DeleteMessageEvent,
    EditMessageEvent,
    EventType,
    LastSeenEvent,
    MarkReadEvent,
    Message,
    MessageStatus,
    direct_room_id,
)
from .store import MessageStore
from .tasks import BackgroundTasks

logger = logging.getLogger(__name__)


def envelope(event: EventType, data: Mapping[str, Any]) -> Dict[str, Any]:
    return {"event": event.value, "data": dict(data)}


def error_envelope(message: str) -> Dict[str, Any]:
    return envelope(EventType.ERROR, {"error": message})


class ChatGateway:
    """Handles realtime chat events and the writes they trigger.

    Args:
        manager: Live connection registry.
        store: Durable message log.
        users: Profile store used to enrich messages with sender fields.
        cache: Capped room cache.
        offline: Per-user offline queues.
        last_seen: Last-seen bookkeeping.
        badges: Engagement counter and badge side effects.
        background: Task set for detached side effects.
        default_room: Room used when an event does not name one.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        store: MessageStore,
        users: UserStore,
        cache: RoomMessageCache,
        offline: OfflineQueue,
        last_seen: LastSeenTracker,
        badges: BadgeService,
        background: Optional[BackgroundTasks] = None,
        default_room: str = "global",
    ) -> None:
        self.manager = manager
        self.store = store
        self.users = users
        self.cache = cache
        self.offline = offline
        self.last_seen = last_seen
        self.badges = badges
        self.background = background or BackgroundTasks()
        self.default_room = default_room

        self._handlers: Dict[str, Callable[[WebSocket, dict], Awaitable[None]]] = {
            EventType.CHAT_MESSAGE.value: self._on_chat_message,
            EventType.DELETE_MESSAGE.value: self._on_delete_message,
            EventType.EDIT_MESSAGE.value: self._on_edit_message,
            EventType.MARK_READ.value: self._on_mark_read,
            EventType.LAST_SEEN.value: self._on_last_seen,
        }

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def on_connect(self, websocket: WebSocket, user_id: Optional[str] = None) -> int:
        """Accept a connection and flush the user's offline queue to it.

        Returns:
            Number of offline messages delivered.
        """
        await self.manager.connect(websocket, user_id)
        if not user_id:
            return 0
        return await self.deliver_offline(websocket, user_id)

    def on_disconnect(self, websocket: WebSocket) -> None:
        user_id = self.manager.disconnect(websocket)
        logger.info(f"[WS] Disconnected user={user_id or 'anonymous'}")

    async def deliver_offline(self, websocket: WebSocket, user_id: str) -> int:
        """Drain the user's offline queue onto ``websocket`` in original order.

        If the socket dies part way, the undelivered remainder is queued again.
        """
        try:
            queued = await self.offline.drain_and_clear(user_id)
        except InfrastructureError as exc:
            logger.error(f"[WS] Could not drain offline queue for {user_id}: {exc}")
            return 0
        if not queued:
            return 0

        delivered = 0
        for index, snapshot in enumerate(queued):
            sent = await self.manager.send_personal(
                websocket, envelope(EventType.CHAT_MESSAGE, snapshot)
            )
            if not sent:
                logger.warning(
                    f"[WS] Connection lost during offline delivery to {user_id}; "
                    f"re-queueing {len(queued) - index} messages"
                )
                for remaining in queued[index:]:
                    await self._enqueue_offline(user_id, remaining)
                break
            delivered += 1
            await self._mark_delivered(snapshot)

        logger.info(f"[WS] Delivered {delivered} offline messages to {user_id}")
        return delivered

    # =========================================================================
    # Event dispatch
    # =========================================================================

    async def handle_event(self, websocket: WebSocket, frame: Any) -> None:
        """Dispatch one inbound frame. Errors are reported to the sender only."""
        if not isinstance(frame, dict):
            await self.manager.send_personal(websocket, error_envelope("Invalid frame"))
            return

        event = frame.get("event")
        handler = self._handlers.get(event) if isinstance(event, str) else None
        if handler is None:
            await self.manager.send_personal(
                websocket, error_envelope(f"Unknown event: {event}")
            )
            return

        data = frame.get("data") or {}
        try:
            await handler(websocket, data)
        except ChatError as exc:
            logger.info(f"[WS] {event} rejected: {exc.message}")
            await self.manager.send_personal(websocket, error_envelope(exc.message))

    @staticmethod
    def _parse(model: type, data: Any) -> BaseModel:
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
            raise InvalidEventError(f"Invalid event payload: {fields}") from exc

    async def _on_chat_message(self, websocket: WebSocket, data: dict) -> None:
        event = self._parse(ChatMessageEvent, data)
        sender_id = event.senderId or self.manager.get_user_id(websocket)
        if not sender_id:
            raise InvalidEventError("senderId is required")
        await self.send_message(
            sender_id,
            event.content,
            room_id=event.roomId,
            recipient_id=event.recipientId,
            type_=event.type,
            origin=websocket,
        )

    async def _on_delete_message(self, websocket: WebSocket, data: dict) -> None:
        event = self._parse(DeleteMessageEvent, data)
        try:
            await self.delete_message(event.userId, event.messageId)
        except MessageNotFoundError:
            logger.debug(f"[WS] delete of unknown message {event.messageId} ignored")

    async def _on_edit_message(self, websocket: WebSocket, data: dict) -> None:
        event = self._parse(EditMessageEvent, data)
        await self.edit_message(event.userId, event.messageId, event.content)

    async def _on_mark_read(self, websocket: WebSocket, data: dict) -> None:
        event = self._parse(MarkReadEvent, data)
        await self.mark_read(event.userId, event.messageId)

    async def _on_last_seen(self, websocket: WebSocket, data: dict) -> None:
        event = self._parse(LastSeenEvent, data)
        await self.record_last_seen(event.userId, event.lastMessageId)

    # =========================================================================
    # Operations (shared with the HTTP routes)
    # =========================================================================

    async def send_message(
        self,
        sender_id: str,
        content: str,
        room_id: Optional[str] = None,
        recipient_id: Optional[str] = None,
        type_: str = "text",
        origin: Optional[WebSocket] = None,
    ) -> Message:
        """Persist, cache and fan out a new message.

        Raises:
            ClientError: If the content is blank.
            StoreUnavailableError: If the message log rejects the write.
        """
        if not content or not content.strip():
            raise ClientError("content is required")
        if recipient_id:
            room_id = direct_room_id(sender_id, recipient_id)
        room_id = room_id or self.default_room

        sender = self.users.get_public_profile(sender_id)
        message = self.store.create(
            room_id, sender_id, content,
            sender=sender, recipient_id=recipient_id, type_=type_,
        )
        snapshot = message.snapshot()
        await self._cache_append(room_id, snapshot)

        payload = envelope(EventType.CHAT_MESSAGE, snapshot)
        if recipient_id:
            await self._send_direct(message, payload, origin)
        else:
            logger.info(
                f"[WS] Broadcasting {message.id} to {self.manager.get_connection_count()} connections"
            )
            await self.manager.broadcast(payload)

        self._spawn_engagement(sender_id, 1)
        return message

    async def delete_message(self, requester_id: str, message_id: str) -> Message:
        """Soft-delete a message on behalf of its sender.

        Deleting an already deleted message returns it unchanged.

        Raises:
            MessageNotFoundError: If the message does not exist.
            AuthorizationError: If ``requester_id`` is not the sender.
        """
        message = self.store.get(message_id)
        if message is None:
            raise MessageNotFoundError(message_id)
        if message.senderId != requester_id:
            raise AuthorizationError("You can only delete your own messages")
        if message.deleted:
            return message

        updated = self.store.mark_deleted(message_id, requester_id)
        await self._cache_patch(
            message.roomId,
            message_id,
            {"deleted": True, "deletedBy": requester_id,
             "updatedAt": updated.snapshot()["updatedAt"]},
        )
        notice = envelope(
            EventType.MESSAGE_DELETED, {"messageId": message_id, "deletedBy": requester_id}
        )
        await self._notify(updated, notice)
        self._spawn_engagement(requester_id, -1)
        return updated

    async def edit_message(self, requester_id: str, message_id: str, content: str) -> Message:
        """Replace a message's text, keeping the previous text in its history.

        Raises:
            MessageNotFoundError: If the message does not exist.
            AuthorizationError: If ``requester_id`` is not the sender.
            ClientError: If the message was deleted or the content is blank.
        """
        message = self.store.get(message_id)
        if message is None:
            raise MessageNotFoundError(message_id)
        if message.senderId != requester_id:
            raise AuthorizationError("You can only edit your own messages")
        if message.deleted:
            raise ClientError("Cannot edit a deleted message")
        if not content.strip():
            raise ClientError("content is required")

        updated = self.store.edit(message_id, content)
        snapshot = updated.snapshot()
        await self._cache_patch(
            updated.roomId,
            message_id,
            {key: snapshot[key] for key in ("content", "edited", "editHistory", "updatedAt")},
        )
        await self._notify(updated, envelope(EventType.MESSAGE_EDITED, snapshot))
        return updated

    async def mark_read(self, reader_id: str, message_id: str) -> Message:
        """Advance a message to ``read`` on behalf of someone other than its sender.

        For direct messages only the recipient may mark the message read.
        Reading one's own message changes nothing.

        Raises:
            MessageNotFoundError: If the message does not exist.
            AuthorizationError: If a direct message is marked by a third party.
        """
        message = self.store.get(message_id)
        if message is None:
            raise MessageNotFoundError(message_id)
        if message.senderId == reader_id or message.status == MessageStatus.READ:
            return message
        if message.recipientId and message.recipientId != reader_id:
            raise AuthorizationError("Only the recipient can mark this message read")

        updated = self.store.advance_status(message_id, MessageStatus.READ)
        await self._cache_patch(updated.roomId, message_id, {"status": updated.status.value})
        await self._notify(
            updated,
            envelope(EventType.MESSAGE_STATUS, {"messageId": message_id, "status": updated.status.value}),
        )
        return updated

    async def record_last_seen(
        self, user_id: Optional[str], last_message_id: Optional[str]
    ) -> None:
        """Best-effort write of the last message a user has seen."""
        if not user_id or not last_message_id:
            return
        try:
            await self.last_seen.record(user_id, last_message_id)
        except InfrastructureError as exc:
            logger.error(f"[WS] lastSeen write failed for {user_id}: {exc}")

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _send_direct(
        self, message: Message, payload: dict, origin: Optional[WebSocket]
    ) -> None:
        await self.manager.send_to_user(message.senderId, payload)
        if origin is not None and self.manager.get_user_id(origin) != message.senderId:
            await self.manager.send_personal(origin, payload)

        if message.recipientId == message.senderId:
            return
        delivered = await self.manager.send_to_user(message.recipientId, payload)
        if delivered:
            await self._mark_delivered(payload["data"])
        else:
            logger.info(f"[WS] {message.recipientId} offline, queueing {message.id}")
            await self._enqueue_offline(message.recipientId, payload["data"])

    async def _notify(self, message: Message, payload: dict) -> None:
        """Send a follow-up event to whoever received the original message."""
        if message.recipientId:
            await self.manager.send_to_user(message.senderId, payload)
            if message.recipientId != message.senderId:
                await self.manager.send_to_user(message.recipientId, payload)
        else:
            await self.manager.broadcast(payload)

    async def _cache_append(self, room_id: str, snapshot: dict) -> None:
        try:
            await self.cache.append(room_id, [snapshot])
        except InfrastructureError as exc:
            logger.error(f"[WS] Cache append failed for room {room_id}: {exc}")

    async def _cache_patch(self, room_id: str, message_id: str, changes: dict) -> None:
        try:
            await self.cache.update_at(room_id, message_id, changes)
        except InfrastructureError as exc:
            logger.error(f"[WS] Cache update failed for {message_id} in {room_id}: {exc}")

    async def _enqueue_offline(self, user_id: str, snapshot: dict) -> None:
        try:
            await self.offline.enqueue(user_id, snapshot)
        except InfrastructureError as exc:
            logger.error(f"[WS] Could not queue {snapshot.get('id')} for {user_id}: {exc}")

    async def _mark_delivered(self, snapshot: Mapping[str, Any]) -> None:
        if not snapshot.get("recipientId") or snapshot.get("status") != MessageStatus.SENT.value:
            return
        try:
            updated = self.store.advance_status(snapshot["id"], MessageStatus.DELIVERED)
            if updated is not None:
                await self._cache_patch(updated.roomId, updated.id, {"status": updated.status.value})
        except InfrastructureError as exc:
            logger.error(f"[WS] Could not mark {snapshot.get('id')} delivered: {exc}")

    def _spawn_engagement(self, user_id: str, delta: int) -> None:
        self.background.spawn(
            self._record_engagement(user_id, delta), name=f"engagement:{user_id}:{delta:+d}"
        )

    async def _record_engagement(self, user_id: str, delta: int) -> None:
        self.badges.record_engagement(user_id, delta)
