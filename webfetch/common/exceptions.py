"""Exception types for fetch and save errors.

Every error the framework raises on purpose derives from
WebFetchException, so the command line can map the whole family to a
single diagnostic and a non-zero exit status.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from webfetch.data_types import Savable


class WebFetchException(Exception):
    """Base class for all framework errors.

    Attributes:
        message: Human-readable description of the failure.
        context: Optional dict of additional context (provider, path, etc).
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable description of the failure.
            context: Optional dict of additional context.
        """
        self.message = message
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message]
        if self.context:
            parts.append("Context:")
            for key, value in self.context.items():
                parts.append(f"  {key}: {value}")
        return "\n".join(parts)


class UsageError(WebFetchException):
    """Raised when the command line cannot be processed."""

    def __init__(self, message: str, usage: str = "") -> None:
        self.usage = usage
        super().__init__(message)


class NoHandlerError(WebFetchException):
    """Raised when no provider is registered for a capability."""

    def __init__(self, capability: str) -> None:
        self.capability = capability
        super().__init__(f"handler not found for {capability}")


class NoRunError(WebFetchException):
    """Raised when every candidate input provider declined or failed.

    Attributes:
        attempts: Mapping of provider id to the error that stopped it.
    """

    def __init__(
        self, source_format: str | None, attempts: dict[str, Exception]
    ) -> None:
        self.source_format = source_format
        self.attempts = attempts
        super().__init__(
            "no handlers were able or available to process source "
            f"format {source_format!r}",
            {pid: str(err) for pid, err in attempts.items()},
        )


class NoSaveError(WebFetchException):
    """Raised when a save cannot start: no directory or nothing to save."""


class SaveError(WebFetchException):
    """Aggregate of one or more Savable failures from one save() call.

    Items that were committed before or after the failing ones stay
    committed. Inspect ``failures`` (or each Savable's ``error`` field)
    for per-item outcomes.

    Attributes:
        directory: Target directory of the failed save.
        failures: The Savables that carry an error.
    """

    def __init__(self, directory: str, failures: list[Savable]) -> None:
        self.directory = directory
        self.failures = failures
        lines = [
            f"{len(failures)} errors - error saving results in {directory}"
        ]
        for savable in failures:
            lines.append(f"file: {savable.file} error: {savable.error}")
        super().__init__("\n".join(lines))


class MethodNotFoundError(WebFetchException):
    """Raised when a dynamically named call cannot be resolved.

    Attributes:
        name: The symbol that could not be resolved.
    """

    def __init__(self, name: str, message: str | None = None) -> None:
        super().__init__(message or f"function {name} not found")
        # Set after init: AttributeError.__init__ resets ``name``.
        self.name = name


class AccessorError(MethodNotFoundError, AttributeError):
    """Raised when a record is accessed by an unknown field or role name."""

    def __init__(self, name: str) -> None:
        super().__init__(name, f"no such field or well-known name {name!r}")


class LoadFailure(WebFetchException):
    """Raised when a provider module or class cannot be loaded."""

    def __init__(self, provider_id: str, reason: str) -> None:
        self.provider_id = provider_id
        super().__init__(f"failed to load {provider_id}: {reason}")


class RunFailure(WebFetchException):
    """Raised when a provider raises during execution."""

    def __init__(self, provider_id: str, cause: BaseException) -> None:
        self.provider_id = provider_id
        self.cause = cause
        super().__init__(
            f"module run failure in {provider_id}: "
            f"{type(cause).__name__}: {cause}"
        )


class NetworkGetError(WebFetchException):
    """Raised when retrieving a URL fails.

    Attributes:
        url: The URL that could not be retrieved.
        status_code: HTTP status code, or None for transport errors.
    """

    def __init__(
        self, url: str, reason: str, status_code: int | None = None
    ) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(f"The request received an error: {reason}", {"url": url})


class MustOverrideError(WebFetchException, NotImplementedError):
    """Raised when an abstract plugin method was not overridden."""
