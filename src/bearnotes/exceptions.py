"""Custom exceptions for the bearnotes core.

Provides a structured exception hierarchy with error codes and
machine-readable error information so that callers (the MCP layer,
an HTTP controller) can map failures to their own status codes.
"""
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_VALIDATION_FAILED = 1002
    NOTE_TITLE_REQUIRED = 1003
    NOTE_CONTENT_REQUIRED = 1004
    NOTE_TOO_LONG = 1005

    # Category errors (2xxx)
    CATEGORY_NOT_FOUND = 2001
    CATEGORY_DUPLICATE_NAME = 2002
    CATEGORY_INVALID_PARENT = 2003
    CATEGORY_HAS_NOTES = 2004
    CATEGORY_HAS_SUBCATEGORIES = 2005
    CATEGORY_VALIDATION_FAILED = 2006

    # Import/export errors (3xxx)
    IMPORT_MISSING_STRATEGY = 3001
    IMPORT_PARSE_FAILED = 3002
    IMPORT_READ_FAILED = 3003
    IMPORT_INVALID_DATA = 3004
    EXPORT_FAILED = 3005

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003

    # Bulk operation errors (45xx)
    BULK_OPERATION_FAILED = 4501
    BULK_OPERATION_PARTIAL = 4502
    BULK_OPERATION_EMPTY_INPUT = 4503

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001


class BearNotesError(Exception):
    """Base exception for all bearnotes errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class ValidationError(BearNotesError):
    """Raised when input fails validation (empty title, bad color, ...)."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value

    @classmethod
    def from_pydantic(
        cls, error: Any, code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ) -> "ValidationError":
        """Build from a pydantic ValidationError, keeping the first failing field."""
        problems = error.errors()
        if not problems:
            return cls(str(error), code=code)
        first = problems[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        message = first.get("msg", "Invalid value")
        # pydantic prefixes messages raised from validators
        message = message.removeprefix("Value error, ")
        return cls(message, field=field, value=first.get("input"), code=code)


class NotFoundError(BearNotesError):
    """Raised when an entity does not exist in the caller's owner scope."""

    entity = "Entity"

    def __init__(
        self,
        entity_id: str,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
    ):
        super().__init__(
            message or f"{self.entity} with ID '{entity_id}' not found",
            code=code,
            details={"id": entity_id},
        )
        self.entity_id = entity_id


class NoteNotFoundError(NotFoundError):
    """Raised when a note cannot be found."""

    entity = "Note"

    def __init__(self, note_id: str, message: Optional[str] = None):
        super().__init__(note_id, message, code=ErrorCode.NOTE_NOT_FOUND)
        self.note_id = note_id


class CategoryNotFoundError(NotFoundError):
    """Raised when a category (or a parent category) cannot be found."""

    entity = "Category"

    def __init__(self, category_id: str, message: Optional[str] = None):
        super().__init__(category_id, message, code=ErrorCode.CATEGORY_NOT_FOUND)
        self.category_id = category_id


class DuplicateNameError(BearNotesError):
    """Raised when a category name collides case-insensitively."""

    def __init__(self, name: str, existing_id: Optional[str] = None):
        details: Dict[str, Any] = {"name": name}
        if existing_id:
            details["existing_id"] = existing_id
        super().__init__(
            f"A category named '{name}' already exists",
            code=ErrorCode.CATEGORY_DUPLICATE_NAME,
            details=details,
        )
        self.name = name
        self.existing_id = existing_id


class InvalidParentError(BearNotesError):
    """Raised when a category would become its own ancestor."""

    def __init__(self, category_id: str, parent_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Category '{category_id}' cannot be its own parent",
            code=ErrorCode.CATEGORY_INVALID_PARENT,
            details={"category_id": category_id, "parent_id": parent_id},
        )
        self.category_id = category_id
        self.parent_id = parent_id


class HasNotesError(BearNotesError):
    """Raised when deleting a category that still has notes."""

    def __init__(self, category_id: str, note_count: int):
        super().__init__(
            f"Cannot delete category '{category_id}': {note_count} notes belong to it. "
            "Move or delete the notes first.",
            code=ErrorCode.CATEGORY_HAS_NOTES,
            details={"category_id": category_id, "note_count": note_count},
        )
        self.category_id = category_id
        self.note_count = note_count


class HasSubcategoriesError(BearNotesError):
    """Raised when deleting a category that still has subcategories."""

    def __init__(self, category_id: str, child_ids: List[str]):
        super().__init__(
            f"Cannot delete category '{category_id}': has subcategories {child_ids}. "
            "Delete or move them first.",
            code=ErrorCode.CATEGORY_HAS_SUBCATEGORIES,
            details={"category_id": category_id, "child_ids": child_ids},
        )
        self.category_id = category_id
        self.child_ids = child_ids


class MissingStrategyError(BearNotesError):
    """Raised when an import merge is requested without a duplicate strategy."""

    def __init__(self, message: str = "A duplicate strategy is required to merge imported notes"):
        super().__init__(message, code=ErrorCode.IMPORT_MISSING_STRATEGY)


class ParseError(BearNotesError):
    """Raised when an import source is malformed."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if source:
            details["source"] = source
        if original_error:
            details["original_error"] = str(original_error)[:200]
        super().__init__(message, code=ErrorCode.IMPORT_PARSE_FAILED, details=details)
        self.source = source
        self.original_error = original_error


class ReadError(BearNotesError):
    """Raised when an import source cannot be read."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if source:
            details["source"] = source
        if original_error:
            details["original_error"] = str(original_error)[:200]
        super().__init__(message, code=ErrorCode.IMPORT_READ_FAILED, details=details)
        self.source = source
        self.original_error = original_error


class StorageError(BearNotesError):
    """Raised for storage/persistence errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error


class BulkOperationError(BearNotesError):
    """Raised when a bulk operation cannot start at all (e.g. empty input).

    Per-item failures are reported through ``BulkResult`` instead.
    """

    def __init__(
        self,
        message: str,
        operation: str,
        total_count: int = 0,
        code: ErrorCode = ErrorCode.BULK_OPERATION_FAILED,
    ):
        super().__init__(
            message,
            code=code,
            details={"operation": operation, "total_count": total_count},
        )
        self.operation = operation
        self.total_count = total_count


class ConfigurationError(BearNotesError):
    """Raised for configuration-related errors."""

    def __init__(self, message: str, setting: Optional[str] = None):
        details = {}
        if setting:
            details["setting"] = setting
        super().__init__(message, code=ErrorCode.CONFIG_INVALID, details=details)
        self.setting = setting
