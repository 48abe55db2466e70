"""Error taxonomy shared by the chat route, the reasoning loop and the stores."""
from __future__ import annotations


class ChatError(Exception):
    """Base class for errors raised by the chat backend."""


class Unauthenticated(ChatError):
    """No valid credentials accompanied the request."""


class ChatNotFound(ChatError):
    """The chat does not exist or belongs to another user."""


class OwnershipConflict(ChatNotFound):
    """The chat id is already owned by a different user.

    Subclasses ChatNotFound so callers that only care about "not yours"
    treat both cases identically.
    """


class ToolExecutionFailure(ChatError):
    """A tool could not produce a result. Reported back to the model."""

    kind = "tool_error"

    def __init__(self, message: str, *, kind: str | None = None):
        super().__init__(message)
        if kind:
            self.kind = kind

    def to_payload(self) -> dict[str, str]:
        return {"error": str(self), "kind": self.kind}


class SearchProviderError(ToolExecutionFailure):
    """Upstream search API failure (network, auth or non-2xx status)."""

    kind = "search_failed"

    def __init__(self, provider: str, message: str, *, status_code: int | None = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class UpstreamStreamFailure(ChatError):
    """The model stream failed. Users only ever see a generic message."""


class PersistenceFailure(ChatError):
    """Writing the conversation snapshot failed."""


class RequestCancelled(ChatError):
    """The enclosing request was aborted while work was in flight."""
