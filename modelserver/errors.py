"""Error kinds raised by the command server.

Every per-request error carries a stable ``kind`` tag and the HTTP status
the dispatch server responds with. The client maps ``kind`` back to the
same classes, so callers can catch identical exceptions on both sides.
"""

from __future__ import annotations


class CommandServerError(Exception):
    """Base class. Unclassified failures surface as internal errors."""

    kind = "internal_error"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind}


class InvalidInputError(CommandServerError):
    """A wire value is absent, malformed, or fails its declared type."""

    kind = "invalid_input"
    status_code = 400


class UnknownCommandError(CommandServerError):
    kind = "unknown_command"
    status_code = 404


class SerializationError(CommandServerError):
    """The handler produced a value its declared output type cannot carry."""

    kind = "serialization_error"
    status_code = 500


class HandlerRuntimeError(CommandServerError):
    kind = "handler_error"
    status_code = 500


class SetupError(CommandServerError):
    """Model setup failed. Fatal: the server must not accept traffic."""

    kind = "setup_error"


class DuplicateCommandError(CommandServerError):
    kind = "duplicate_command"


ERRORS_BY_KIND: dict[str, type[CommandServerError]] = {
    cls.kind: cls
    for cls in (
        CommandServerError,
        InvalidInputError,
        UnknownCommandError,
        SerializationError,
        HandlerRuntimeError,
    )
}
