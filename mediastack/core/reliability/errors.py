"""
Transport-level exceptions shared by every backend client.

Hierarchy:
    TransportError
        RetryExhaustedError     transient failures outlasted the policy
        BodyNotReplayableError  a retry needed a body that cannot be resent
    OperationCancelledError     the caller's cancel token fired during a wait
"""

from __future__ import annotations


class TransportError(Exception):
    """A request could not be completed."""


class RetryExhaustedError(TransportError):
    """Every attempt allowed by the retry policy failed.

    Carries the last status code (0 when the last attempt got no
    response) and the last underlying error message.
    """

    def __init__(
        self,
        attempts: int,
        url: str,
        last_status: int = 0,
        last_error: str = "",
    ):
        self.attempts = attempts
        self.url = url
        self.last_status = last_status
        self.last_error = last_error
        detail = last_error or f"HTTP {last_status}"
        super().__init__(f"request to {url} failed after {attempts} attempts: {detail}")


class BodyNotReplayableError(TransportError):
    """A streaming request body was consumed and no body factory was given."""


class OperationCancelledError(Exception):
    """The governing cancel token was set while waiting."""
