"""Central error taxonomy and exception hierarchy.

Every dispatch error carries an ``error_type`` code from the taxonomy so
metrics labels and ``error`` listeners can classify failures without
isinstance chains.
"""
from __future__ import annotations

from typing import Any, List

_ALLOWED_ERROR_TYPES = {
    # identity / registration (raised synchronously)
    "invalid-event",
    "invalid-handler",
    # dispatch runtime (delivered via the dispatch future)
    "no-subscribers",
    "validation-failed",
    "handler-failure",
    "already-handled",
    # infra
    "listener-error",
    "config-invalid",
    "config-out-of-range",
}


def validate_error_type(code: str) -> str:
    assert (
        code in _ALLOWED_ERROR_TYPES
    ), f"Unknown error_type '{code}' (not in taxonomy)"
    return code


def map_exception(e: BaseException) -> str:
    code = getattr(e, "error_type", None)
    if code in _ALLOWED_ERROR_TYPES:
        return code
    name = e.__class__.__name__.lower()
    if "validation" in name:
        return "validation-failed"
    return "handler-failure"


class RelayError(Exception):
    """Base relay exception."""

    error_type = "handler-failure"


class DispatchError(RelayError):
    """Base class for errors produced by the dispatcher itself."""


class InvalidEventIdentifier(DispatchError, ValueError):
    """Malformed or reserved event identifier."""

    error_type = "invalid-event"

    def __init__(self, identifier: Any, reason: str = "") -> None:
        self.identifier = identifier
        msg = f"Invalid event identifier {identifier!r}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class InvalidHandler(DispatchError, TypeError):
    error_type = "invalid-handler"

    def __init__(self, event: Any, handler: Any) -> None:
        self.event = event
        self.handler = handler
        super().__init__(
            f"Event handler for {event} has to be callable "
            f"(got {type(handler).__name__} instead)"
        )


class NoSubscribers(DispatchError):
    error_type = "no-subscribers"

    def __init__(self, event: str) -> None:
        self.event = event
        super().__init__(f"No subscribers registered for the {event} event.")


class ValidationFailed(DispatchError):
    """Params rejected by a subscriber schema.

    ``errors`` holds the validator's structured error list (pydantic
    ``ValidationError.errors()`` for the default processor).
    """

    error_type = "validation-failed"

    def __init__(self, message: str, errors: List[dict] | None = None) -> None:
        self.errors = errors or []
        super().__init__(message)


class HandlerFailure(DispatchError):
    """A subscriber raised, failed its awaitable or reported an error."""

    error_type = "handler-failure"

    def __init__(self, error: Any) -> None:
        self.error = error
        super().__init__(str(error))


class AlreadyHandled(DispatchError):
    error_type = "already-handled"

    def __init__(
        self, message: str = "The result was already handled!"
    ) -> None:
        super().__init__(message)


__all__ = [
    "validate_error_type",
    "map_exception",
    "RelayError",
    "DispatchError",
    "InvalidEventIdentifier",
    "InvalidHandler",
    "NoSubscribers",
    "ValidationFailed",
    "HandlerFailure",
    "AlreadyHandled",
]
