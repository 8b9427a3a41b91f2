"""Exception types shared across the server, the storage layer and the client."""

from __future__ import annotations

from typing import Any, Optional


class TweetChatError(Exception):
    """Base exception for tweetchat."""

    def __init__(self, message: str, details: Optional[Any] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class ConfigError(TweetChatError):
    """Required configuration is missing or malformed."""


class StorageError(TweetChatError):
    """The object store rejected or failed a request."""


class RecordFormatError(TweetChatError):
    """Stored bytes could not be parsed into a chat record."""


class UpstreamError(TweetChatError):
    """The LLM provider failed while generating."""


class ClientError(TweetChatError):
    """An HTTP call from the client side failed.

    ``status_code`` is ``None`` for transport-level failures (connection
    reset, truncated stream).
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, details={"status_code": status_code})
        self.status_code = status_code


class InvalidTransition(TweetChatError):
    """A view-model event is not allowed in the current phase."""
