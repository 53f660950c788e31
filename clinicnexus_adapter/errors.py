"""Failure taxonomy for calls against the ClinicNexus backend."""
from __future__ import annotations


class ClinicError(Exception):
    """Base class; ``str(err)`` is the user-facing message."""


class ValidationError(ClinicError):
    """Local precondition failed; nothing was sent to the backend."""


class TransportError(ClinicError):
    """Backend unreachable, or it answered with something that isn't JSON."""


class RequestError(ClinicError):
    """Backend answered with a non-success status."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class PartialFailure(ClinicError):
    """Some steps of a multi-request operation succeeded, others failed.

    Succeeded steps are never rolled back.
    """

    def __init__(self, message: str, succeeded: list[str], failed: dict[str, ClinicError]):
        super().__init__(message)
        self.succeeded = succeeded
        self.failed = failed
