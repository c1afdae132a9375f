"""Custom exception classes for the media bot."""


class NyaMediaError(Exception):
    """Base exception for all bot and ledger errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class DuplicateRequestError(NyaMediaError):
    """Raised when a media request already exists for a (source, media_id) pair."""

    def __init__(self, source: str, media_id: str):
        self.source = source
        self.media_id = media_id
        super().__init__(
            f"Media {source}/{media_id} has already been requested",
            details={"source": source, "media_id": media_id},
        )


class ExternalServiceError(NyaMediaError):
    """Raised when Emby, a metadata catalog or Telegram fails or times out.

    ``tag`` is a short support reference shown to users; ``user_message``
    optionally overrides the generic text when the upstream message is safe
    and actionable.
    """

    def __init__(
        self,
        message: str,
        tag: str,
        details: dict | None = None,
        user_message: str | None = None,
    ):
        self.tag = tag
        self.user_message = user_message
        super().__init__(message, details)


class InvalidTransitionError(NyaMediaError):
    """Raised when adjudicating a request that is no longer submitted."""

    def __init__(self, request_id: int, current: str, requested: str):
        self.request_id = request_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Request {request_id} cannot move from {current} to {requested}",
            details={"request_id": request_id, "current": current, "requested": requested},
        )


class RequestNotFoundError(NyaMediaError):
    """Raised when a media request id does not exist."""

    def __init__(self, request_id: int):
        self.request_id = request_id
        super().__init__(f"Request {request_id} not found", details={"request_id": request_id})


class NotificationDeliveryError(NyaMediaError):
    """Raised when an outbound chat notification cannot be delivered."""

    def __init__(self, message: str, chat_id: int, details: dict | None = None):
        self.chat_id = chat_id
        super().__init__(message, details)


class PersistenceError(NyaMediaError):
    """Raised when a database operation fails."""

    pass


class ServiceInitializationError(NyaMediaError):
    """Raised when a service fails to initialize."""

    pass
