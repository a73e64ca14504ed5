class ChatRelayError(Exception):
    """Base class for errors raised while handling a chat event or request."""


class ValidationError(ChatRelayError):
    """A required field is missing or a payload has the wrong shape."""


class NotFoundError(ChatRelayError):
    """A referenced room or character does not exist."""


class PersistenceError(ChatRelayError):
    """The storage backend rejected or failed a write."""


class ProviderError(ChatRelayError):
    """An LLM provider call failed.

    ``kind`` is one of ``timeout``, ``rate_limit``, ``auth``, ``http`` or ``empty``.
    """

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind
