"""Exceptions raised by the chat pipeline.

Every error carries the HTTP status the REST layer should answer with. The
WebSocket layer turns the same errors into ``{"event": "error"}`` frames.
"""


class ChatError(Exception):
    """Base exception for chat pipeline errors."""
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


# -- client errors -----------------------------------------------------------

class ClientError(ChatError):
    """Raised when a request or event is malformed."""
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message, status_code=status_code)


class InvalidCursorError(ClientError):
    """Raised when ``before`` is neither a message id nor a timestamp."""
    def __init__(self, cursor: str):
        self.cursor = cursor
        super().__init__("Invalid before parameter")


class InvalidEventError(ClientError):
    """Raised when a realtime event payload fails validation."""


class UsernameTakenError(ClientError):
    """Raised when registering a username that already exists."""
    def __init__(self, username: str):
        self.username = username
        super().__init__(f"Username already taken: {username}", status_code=409)


# -- lookups -------------------------------------------------------------------

class NotFoundError(ChatError):
    """Raised when a referenced record does not exist."""
    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class MessageNotFoundError(NotFoundError):
    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__("Message not found")


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__("User not found")


# -- authorization -------------------------------------------------------------

class AuthorizationError(ChatError):
    """Raised when a user acts on a message they did not send."""
    def __init__(self, message: str = "You can only modify your own messages"):
        super().__init__(message, status_code=403)


# -- infrastructure --------------------------------------------------------------

class InfrastructureError(ChatError):
    """Raised when a backing store cannot be reached."""
    def __init__(self, message: str):
        super().__init__(message, status_code=500)


class CacheUnavailableError(InfrastructureError):
    """Raised by key-value backends on connectivity or protocol failures."""


class StoreUnavailableError(InfrastructureError):
    """Raised when the durable message store rejects a read or write."""
