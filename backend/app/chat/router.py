"""Chat router providing WebSocket and HTTP endpoints.

This module provides:
    - GET /chat: Latest page or cursor-paginated page of room history
    - DELETE /chat/{message_id}/{user_id}: Soft-delete a message
    - WebSocket /ws/chat: Realtime chat events

The WebSocket protocol:
    - Identity is passed at handshake time as the ``userId`` query parameter.
      Without it the connection still receives broadcasts, but gets no
      offline delivery and cannot be addressed by direct messages.
    - Frames are JSON envelopes ``{"event": <name>, "data": {...}}``.

Protocol Events:
    - chat message: Send a message (broadcast, or direct with recipientId)
    - delete message: Soft-delete own message
    - edit message: Edit own message
    - mark read: Mark a message read
    - last seen: Record the last message seen
"""
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect

from .errors import ChatError
from .gateway import error_envelope
from .schemas import DeleteMessageResponse
from .service import get_chat_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


def _http_error(exc: ChatError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


@router.get("/chat")
async def get_chat_history(
    roomId: Optional[str] = Query(None, description="Room ID (defaults to the global room)"),
    before: Optional[str] = Query(None, description="Cursor: message id or timestamp"),
    limit: Optional[int] = Query(None, ge=1, description="Page size for cursor reads"),
) -> List[Dict[str, Any]]:
    """Get a page of room history, oldest message first.

    Without ``before`` the latest window is returned (from the room cache
    when warm). With ``before`` the page holds messages strictly older than
    the cursor, read from the message log.

    Args:
        roomId: The room ID.
        before: Message id or timestamp (ISO-8601 or epoch milliseconds).
        limit: Maximum messages for cursor reads (capped by config).

    Returns:
        Array of message snapshots (may be empty).

    Example:
        GET /chat?roomId=global
        GET /chat?roomId=global&before=8f14e45fceea167a5a36dedd4bea2543&limit=10
    """
    services = get_chat_services()
    room_id = roomId or services.config.chat.default_room
    try:
        return await services.history.get_history(room_id, before=before, limit=limit)
    except ChatError as exc:
        raise _http_error(exc) from exc


@router.delete("/chat/{message_id}/{user_id}", response_model=DeleteMessageResponse)
async def delete_chat_message(message_id: str, user_id: str) -> DeleteMessageResponse:
    """Soft-delete a message on behalf of its sender.

    Returns:
        ``{"success": true}`` on success; 404 if the message does not exist,
        403 if ``user_id`` is not the sender.
    """
    services = get_chat_services()
    try:
        await services.gateway.delete_message(user_id, message_id)
    except ChatError as exc:
        raise _http_error(exc) from exc
    logger.info(f"[HTTP] Message {message_id} deleted by {user_id}")
    return DeleteMessageResponse()


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(
    websocket: WebSocket,
    userId: Optional[str] = Query(None, description="Identity of the connecting user"),
) -> None:
    """WebSocket endpoint for realtime chat.

    Protocol Flow:
        1. Client connects with ``?userId=...``
           → Server sends any queued offline messages as "chat message" events
        2. Client sends {event: "chat message", data: {senderId, content, roomId?}}
           → Server broadcasts {event: "chat message", data: {...snapshot}}
        3. Client sends {event: "delete message", data: {messageId, userId}}
           → Server broadcasts {event: "message deleted", data: {messageId, deletedBy}}
           → Non-senders receive {event: "error", data: {error}} instead
        4. Client sends {event: "last seen", data: {userId, lastMessageId}}
           → No broadcast

    Args:
        websocket: The WebSocket connection.
        userId: Optional identity used for offline delivery and direct messages.
    """
    gateway = get_chat_services().gateway
    logger.info(f"[WS] New connection, userId={userId}")
    await gateway.on_connect(websocket, userId)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                await gateway.manager.send_personal(websocket, error_envelope("Invalid JSON"))
                continue
            logger.debug("[WS] Received event=%s", frame.get("event") if isinstance(frame, dict) else "?")
            await gateway.handle_event(websocket, frame)
    except WebSocketDisconnect:
        gateway.on_disconnect(websocket)
