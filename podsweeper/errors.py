from __future__ import annotations

from typing import Any


class PodSweeperError(Exception):
    """Base class for every error raised by the game core."""


class ValidationError(PodSweeperError, ValueError):
    pass


class ConflictError(PodSweeperError):
    """The stored document changed since it was loaded; re-load and recompute."""


class SerializationError(PodSweeperError):
    """The persisted document is malformed. Not retryable."""


class CreationError(PodSweeperError):
    """At least one cell resource could not be created after all retries."""

    def __init__(self, message: str, result: Any = None) -> None:
        super().__init__(message)
        self.result = result


class ReadyTimeoutError(PodSweeperError, TimeoutError):
    pass


class AlreadyExistsError(PodSweeperError):
    pass


class ResourceNotFoundError(PodSweeperError):
    pass
