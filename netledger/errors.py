"""
netledger Error Hierarchy

Exceptions for malformed input, missing entities, storage conflicts and
patch failures. Each carries a category and metadata for log records.

State and ordering violations are NOT exceptions: role-facing operations
return them as structured results (see ``netledger.services.results``).
"""

from typing import Any, Dict, Optional


class NetLedgerError(RuntimeError):
    """
    Root of the netledger exception tree.

    Attributes:
        category: Coarse class used in logs ("validation", "storage", "patch", ...)
        retryable: True when repeating the same call may succeed
        metadata: Ids and values describing the failure
    """

    category: str = "runtime"
    retryable: bool = True

    def __init__(
        self,
        message: str,
        *,
        metadata: Optional[Dict[str, Any]] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.metadata = dict(metadata or {})
        self.retryable = self.retryable if retryable is None else retryable

    def log_fields(self) -> Dict[str, Any]:
        """Fields for ``extra=`` when logging this error."""
        return {"category": self.category, "retryable": self.retryable, "error": str(self), **self.metadata}


# Validation Errors
class ValidationError(NetLedgerError, ValueError):
    """Raised when input validation fails."""

    category = "validation"
    retryable = False


# Configuration Errors
class ConfigError(NetLedgerError):
    """Raised when configuration is invalid or missing."""

    category = "config"
    retryable = False


# Storage Errors
class StorageError(NetLedgerError):
    """Raised when database operations fail."""

    category = "storage"


class EntityNotFoundError(StorageError, KeyError):
    """Raised when a requested entity is not found in storage."""

    category = "storage"
    retryable = False

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return str(self.args[0]) if self.args else ""


class StateConflictError(StorageError, ValueError):
    """
    Raised by conditional writes whose precondition no longer holds.

    Attributes:
        code: Machine-readable rejection code (an ``ErrorCode`` value)
    """

    category = "state"
    retryable = True

    def __init__(
        self,
        code: str,
        message: str,
        *,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, metadata=metadata)
        self.code = code


class ContentNotFoundError(EntityNotFoundError):
    """Raised when a content hash is referenced but no blob exists."""

    category = "content"


class ContentIntegrityError(StorageError):
    """Raised when reconstructed bytes do not hash to the expected key."""

    category = "content"
    retryable = False


# Diff / patch Errors
class PatchError(NetLedgerError):
    """Base class for diff/patch/merge failures."""

    category = "patch"
    retryable = False


class PatchApplyError(PatchError):
    """
    Raised when a patch cannot be applied to its base content.

    Attributes:
        hunk: Index of the failing hunk (0-based) when known
    """

    def __init__(
        self,
        message: str,
        *,
        hunk: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, metadata=metadata)
        self.hunk = hunk


class EditError(PatchError):
    """Raised when a structured edit operation is malformed or out of range."""
