"""
Exception classes for schemata.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    """Business failure categories surfaced in service results."""

    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    INVALID_REQUEST = "invalid_request"
    CONFLICT = "conflict"
    BREAKING_CHANGE = "breaking_change"
    INVALID_STATE = "invalid_state"


class SchemataError(Exception):
    """Base exception for all schemata errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            result += f" [{details_str}]"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result


class ConfigurationError(SchemataError):
    """Raised when there's an error in configuration."""

    pass


class StoreError(SchemataError):
    """Raised when the persistence layer fails (I/O, constraint or decode error)."""

    pass


class StoreConnectionError(StoreError):
    """Raised when there's an error establishing or maintaining store connections."""

    pass


class StoreConfigurationError(StoreError):
    """Raised when there's an error in store configuration."""

    pass


class BusinessRuleError(SchemataError):
    """Base for expected business failures; each subclass carries an ErrorKind."""

    kind: ErrorKind = ErrorKind.INVALID_REQUEST


class NotFoundError(BusinessRuleError):
    """Raised when a schema or transaction id does not resolve."""

    kind = ErrorKind.NOT_FOUND


class ForbiddenError(BusinessRuleError):
    """Raised when a user does not own the schema being mutated."""

    kind = ErrorKind.FORBIDDEN


class InvalidRequestError(BusinessRuleError):
    """Raised for malformed operations or column definitions."""

    kind = ErrorKind.INVALID_REQUEST


class TransactionStateError(BusinessRuleError):
    """Raised when a terminal transaction is asked to change."""

    kind = ErrorKind.INVALID_STATE


class ImpactError(BusinessRuleError):
    """Base for commit refusals that carry the offending impact issues."""

    def __init__(
        self,
        message: str,
        issues: Optional[List[Any]] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.issues = list(issues or [])
        details = dict(details or {})
        if self.issues:
            details.setdefault(
                "columns", sorted({issue.column for issue in self.issues})
            )
        super().__init__(message, details)


class ConflictError(ImpactError):
    """Raised when a change collides with an existing column name."""

    kind = ErrorKind.CONFLICT


class BreakingChangeError(ImpactError):
    """Raised for type narrowing or removal of a required column."""

    kind = ErrorKind.BREAKING_CHANGE


_ERRORS_BY_KIND = {
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.FORBIDDEN: ForbiddenError,
    ErrorKind.INVALID_REQUEST: InvalidRequestError,
    ErrorKind.CONFLICT: ConflictError,
    ErrorKind.BREAKING_CHANGE: BreakingChangeError,
    ErrorKind.INVALID_STATE: TransactionStateError,
}


def error_for_kind(
    kind: ErrorKind,
    message: str,
    issues: Optional[List[Any]] = None,
) -> BusinessRuleError:
    """Build the exception matching a failed result's error kind."""
    error_class = _ERRORS_BY_KIND[ErrorKind(kind)]
    if issubclass(error_class, ImpactError):
        return error_class(message, issues=issues)
    return error_class(message)
