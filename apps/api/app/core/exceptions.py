"""Error types raised by the chat relay core.

Routes translate these into ``HTTPException``; the WebSocket handler turns
``CompletionBackendError`` into a single ``error`` event for the generation.
"""


class CompletionBackendError(Exception):
    """The completion backend could not produce a usable stream."""

    kind = "backend"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BackendUnavailableError(CompletionBackendError):
    kind = "unavailable"


class BackendResponseError(CompletionBackendError):
    kind = "response"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StreamProtocolError(CompletionBackendError):
    kind = "protocol"


class SynonymCycleError(ValueError):
    """Inserting the mapping would let a tag rewrite back to itself."""


class MessageNotFoundError(LookupError):
    pass


class ClientDisconnectedError(Exception):
    """The client channel closed while a turn was still sending to it."""
