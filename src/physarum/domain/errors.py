from __future__ import annotations


class PhysarumError(Exception):
    """Base class for every error raised by the chat core."""


class GenerationError(PhysarumError):
    """The remote model call failed or returned an unusable payload."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class WorkspaceIOError(PhysarumError):
    """A workspace file or directory could not be read."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


class InvalidStateError(PhysarumError):
    """A session protocol invariant would be violated."""


class UnknownEntryError(PhysarumError):
    """An update targeted an entry that is not the open assistant entry."""

    def __init__(self, entry_id: str) -> None:
        super().__init__(f"Unknown or stale entry: {entry_id}")
        self.entry_id = entry_id


def format_user_error(exc: BaseException) -> str:
    message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
    return f"Error: {message}"
