"""Exception taxonomy for the engine.

Callers at the edges (API routes, CLI commands) translate these into HTTP
status codes or exit codes; nothing inside the engine retries on them.
"""

from __future__ import annotations

from typing import Any


class PromptOpsError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(PromptOpsError, ValueError):
    """Input violates a schema or range rule. The caller must fix the input."""

    def __init__(self, message: str, details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.details = details or []

    @classmethod
    def from_pydantic(cls, exc: Any, subject: str) -> ValidationError:
        """Wrap a ``pydantic.ValidationError`` with a short, loggable message."""
        errors = exc.errors(include_url=False)
        fields = ", ".join(
            ".".join(str(p) for p in err.get("loc", ())) or "<root>" for err in errors
        )
        return cls(f"Validation failed for {subject}: {fields}", details=errors)


class PromptNotFoundError(PromptOpsError, LookupError):
    """No prompt with the requested id or name."""


class DuplicatePromptError(PromptOpsError, ValueError):
    """A prompt with the same name already exists."""


class DuplicateVersionError(PromptOpsError, ValueError):
    """The semantic-version string already exists on the prompt."""


class VersionNotFoundError(PromptOpsError, LookupError):
    """The prompt has no version with the requested string."""


class InconsistentPrimaryError(PromptOpsError):
    """``primary_version`` does not resolve to any stored version."""


class IntegrityError(PromptOpsError):
    """A backup file failed its structural or count cross-check."""


class PartialImportError(PromptOpsError):
    """A restore completed but some rows could not be imported."""

    def __init__(self, report: Any) -> None:
        super().__init__(f"Restore completed with {report.total_errors} row errors")
        self.report = report


class VersionInUseError(PromptOpsError, ValueError):
    """The version is the primary or the only remaining version and cannot be removed."""


class ConcurrentUpdateError(PromptOpsError):
    """The row changed between read and write. Re-read and try again."""
