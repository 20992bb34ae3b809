"""Exception hierarchy for the interposer.

One exception per failure mode. Only WorkerLaunchError and ConfigError
escape Interposer.run(); the rest are recovered locally and reported
through the diagnostics sink.
"""
from __future__ import annotations


class RelayError(Exception):
    """Base exception for all relay errors."""


class ConfigError(RelayError):
    """Configuration value is missing, unknown, or unsafe."""
    def __init__(self, field_name: str, reason: str):
        self.field_name = field_name
        self.reason = reason
        super().__init__(f"Invalid config '{field_name}': {reason}")


class FrameTooLargeError(RelayError):
    """A single line from the worker exceeded the framing limit."""
    def __init__(self, limit: int, consumed: int):
        self.limit = limit
        self.consumed = consumed
        super().__init__(
            f"Worker line exceeds {limit} bytes "
            f"(buffered {consumed} bytes without a terminator)"
        )


class DecodeError(RelayError):
    """A line or question payload could not be decoded."""
    def __init__(self, reason: str, request_id: str | None = None):
        self.reason = reason
        self.request_id = request_id
        super().__init__(f"Decode failed: {reason}")


class ResolverError(RelayError):
    """The resolver round trip failed; default answers were used."""
    def __init__(self, request_id: str, reason: str):
        self.request_id = request_id
        self.reason = reason
        super().__init__(
            f"Resolver failed for request {request_id}: {reason}"
        )


class AnswerWriteError(RelayError):
    """The answer envelope could not be written to the worker."""
    def __init__(self, request_id: str, reason: str):
        self.request_id = request_id
        self.reason = reason
        super().__init__(
            f"Cannot write answer for request {request_id}: {reason}"
        )


class WorkerLaunchError(RelayError):
    """The worker process could not be started."""
    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to launch worker '{command}': {reason}")


class WorkerExitError(RelayError):
    """The worker exited with a non-zero status."""
    def __init__(self, exit_code: int):
        self.exit_code = exit_code
        super().__init__(f"Worker exited with status {exit_code}")
