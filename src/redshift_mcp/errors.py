"""
Error taxonomy for Redshift MCP.

Validation rejections and execution failures are kept apart so callers can
tell a security refusal (never retry) from an operational failure.
"""

from __future__ import annotations

from typing import Sequence


class RedshiftMCPError(Exception):
    """Base class for all Redshift MCP errors."""


class ConfigurationError(RedshiftMCPError):
    """Connection or server settings are missing or invalid."""


class ValidationRejected(RedshiftMCPError):
    """A statement was refused before any transaction was opened."""

    def __init__(self, errors: Sequence[str]):
        self.errors = tuple(errors)
        super().__init__("; ".join(self.errors) or "Statement rejected")


class CatalogLookupFailed(RedshiftMCPError):
    """The federated-table catalog could not answer for a reference."""

    def __init__(self, reference: str, cause: BaseException):
        self.reference = reference
        self.cause = cause
        super().__init__(f"Catalog lookup failed for {reference}: {cause}")


class RollbackFailed(RedshiftMCPError):
    """A ROLLBACK issued after a failure itself errored."""

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"Rollback failed: {cause}")


class ExecutionFailed(RedshiftMCPError):
    """The warehouse errored after a transaction was opened."""

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        rollback_error: RollbackFailed | None = None,
    ):
        self.cause = cause
        self.rollback_error = rollback_error
        super().__init__(message)


class FallbackExhausted(ExecutionFailed):
    """Both the secure elevated attempt and the fallback attempt failed."""

    def __init__(
        self,
        elevated_error: BaseException,
        fallback_error: BaseException,
        rollback_error: RollbackFailed | None = None,
        elevated_rollback_error: RollbackFailed | None = None,
    ):
        self.elevated_error = elevated_error
        self.fallback_error = fallback_error
        self.elevated_rollback_error = elevated_rollback_error
        super().__init__(
            f"Failed to execute query: {fallback_error} "
            f"(secure Spectrum attempt failed first: {elevated_error})",
            cause=fallback_error,
            rollback_error=rollback_error,
        )


class OperationFailed(RedshiftMCPError):
    """A metadata query against the system catalog failed."""
