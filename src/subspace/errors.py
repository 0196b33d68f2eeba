"""Client-level exception types for Subspace."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from subspace.poller import PollResult
    from subspace.types import RemoteCallRequest


class SubspaceError(Exception):
    """Base exception for Subspace."""


class ConfigurationError(SubspaceError):
    """Base exception for configuration errors."""


class NoSignerError(ConfigurationError):
    """Raised when a write needs a signer and none is supplied or configured."""


class InvalidTagError(SubspaceError, ValueError):
    """Raised when a tag name cannot go on the wire."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Invalid tag name: {name!r}")
        self.name = name


class RetryExhaustedError(SubspaceError):
    """Raised when every attempt of a retried call failed."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class CallCancelledError(SubspaceError):
    """Raised when the caller's cancellation signal fires mid-call."""

    def __init__(self, message: str = "Call cancelled", *, message_id: str | None = None) -> None:
        super().__init__(message)
        self.message_id = message_id


class RemoteCallError(SubspaceError):
    """Base exception for failures of one remote call.

    Carries the originating request and, where available, the raw substrate
    response so that failures can be diagnosed from the exception alone.
    """

    reason = "Remote call failed"

    def __init__(
        self,
        request: RemoteCallRequest | None = None,
        response: Any = None,
        *,
        detail: str | None = None,
    ) -> None:
        self.request = request
        self.response = response
        self.detail = detail
        super().__init__(self._render())

    def _render(self) -> str:
        parts = [self.reason]
        if self.detail:
            parts.append(self.detail)
        if self.request is not None:
            parts.append(f"Inputs: {self.request.describe()}")
        return "\n".join(parts)


class SubmitFailedError(RemoteCallError):
    reason = "Write failed"


class ReadFailedError(RemoteCallError):
    reason = "Read failed"


class NoMessagesReturnedError(RemoteCallError):
    reason = "No messages returned"


class AmbiguousReadResultError(RemoteCallError):
    reason = "Read failed, multiple messages returned"


class RemoteExecutionError(RemoteCallError):
    reason = "Remote execution error"


class ResultUnknownError(RemoteCallError):
    """Raised on demand when a submitted write has no observed result."""

    reason = "Write submitted, result unknown"

    def __init__(self, message_id: str, request: RemoteCallRequest | None = None) -> None:
        self.message_id = message_id
        super().__init__(request, detail=f"message_id={message_id}")


class RemoteStatusError(RemoteCallError):
    """The call itself succeeded but the process answered with a non-200 status."""

    reason = "Unexpected status"

    def __init__(
        self,
        code: str | None,
        body: Any = None,
        request: RemoteCallRequest | None = None,
        response: Any = None,
    ) -> None:
        self.code = code
        self.body = body
        super().__init__(request, response, detail=f"Status {code}")


class CacheReadError(SubspaceError):
    """Raised when a cache path or gateway document cannot be fetched."""

    def __init__(self, url: str, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Cache read failed for {url}{detail}")
        self.url = url
        self.cause = cause


class ConvergenceError(SubspaceError):
    """Base exception for convergence polls that ended without converging."""

    def __init__(self, result: PollResult) -> None:
        super().__init__(
            f"Convergence {result.state.value} after {result.attempts} attempt(s) in {result.elapsed:.1f}s"
        )
        self.result = result


class PollTimedOutError(ConvergenceError):
    """Raised when the poll ran past its total duration budget."""


class PollExhaustedError(ConvergenceError):
    """Raised when the poll used up its attempt budget."""
