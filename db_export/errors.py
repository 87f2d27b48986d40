"""
Failure classes raised while resolving profiles and exporting query results.

Every error carries a context mapping (job, profile, query, target, row) that is
rendered into its message, so a failed export can be located without re-running
it with verbose logging.
"""

from typing import Any, Optional

QUERY_PREVIEW_LENGTH: int = 80


def _shorten(value: Any) -> str:
    text = " ".join(str(value).split())
    if len(text) > QUERY_PREVIEW_LENGTH:
        return text[: QUERY_PREVIEW_LENGTH - 3] + "..."
    return text


class ExportError(Exception):
    """
    Base class for every failure reported by the export tooling.
    """

    exit_code: int = 1

    def __init__(self: "ExportError", message: str, **context: Any):
        """
        Initializes a new ExportError.

        Args:
            message: Human readable description of the failure.
            **context: Location details (job, profile, query, target, row, column).
        """
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = {
            key: value for key, value in context.items() if value is not None
        }

    def with_context(self: "ExportError", **context: Any) -> "ExportError":
        """
        Adds location details without overriding the ones already recorded.

        Returns:
            The same error, so it can be re-raised inline.
        """
        for key, value in context.items():
            if value is not None:
                self.context.setdefault(key, value)
        return self

    @property
    def row_index(self: "ExportError") -> Optional[int]:
        return self.context.get("row")

    def __str__(self: "ExportError") -> str:
        if not self.context:
            return self.message
        details = ", ".join(
            f"{key}={_shorten(value)}" for key, value in self.context.items()
        )
        return f"{self.message} ({details})"


class SourceConnectionError(ExportError):
    """Backend unreachable, authentication failure or driver misconfiguration."""

    exit_code = 2


class QueryError(ExportError):
    """Malformed or rejected query, or a backend fault while streaming rows."""

    exit_code = 3


class SinkError(ExportError):
    """Output could not be written (I/O failure, format limits)."""

    exit_code = 4


class ProfileError(ExportError):
    """Connection profiles could not be loaded or resolved."""

    exit_code = 5


class DuplicateIdError(ProfileError):
    pass


class CycleError(ProfileError):
    pass


class UnknownIdError(ProfileError):
    pass


class ConversionError(ExportError):
    """A backend value has no representation in the value model."""

    exit_code = 6


class ExportCancelled(ExportError):
    """The export was interrupted by the user."""

    exit_code = 130
