"""Error taxonomy for the theme runner.

Every per-subject failure ends up as a reason code in the ledger row; these
exceptions only travel as far as the step boundary of the verification
procedure (or the context factory for ``ContextAcquisitionError``).
"""

from __future__ import annotations


class ErrorKind:
    TRANSIENT_NETWORK = "transient_network"
    RATE_LIMITED = "rate_limited"
    INTERACTION_BLOCKED = "interaction_blocked"
    DIFF_FAILURE = "diff_failure"
    DELEGATE_FAILURE = "delegate_failure"
    DECODE_FAILURE = "decode_failure"
    CONTEXT_FAILURE = "context_failure"


def describe_error(error: BaseException) -> str:
    """First line of an exception message, for use inside a reason code."""
    text = str(error).strip()
    return text.splitlines()[0].strip() if text else type(error).__name__


class RunnerError(Exception):
    """Base class for errors raised by the runner itself."""

    kind = "runner_error"

    def __init__(self, message: str = "", kind: str | None = None):
        super().__init__(message)
        if kind:
            self.kind = kind


class NavigationError(RunnerError):
    """Navigation kept failing after the retry budget was spent."""

    kind = ErrorKind.TRANSIENT_NETWORK

    def __init__(self, message: str, url: str = "", attempts: int = 0):
        super().__init__(message)
        self.url = url
        self.attempts = attempts


class RateLimitedError(NavigationError):
    """Every attempt was answered with HTTP 429."""

    kind = ErrorKind.RATE_LIMITED


class ImageDecodeError(RunnerError):
    kind = ErrorKind.DECODE_FAILURE


class ContextAcquisitionError(RunnerError):
    """An isolated browser context could not be created for a job."""

    kind = ErrorKind.CONTEXT_FAILURE
