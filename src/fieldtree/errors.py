"""
Error types for fieldtree schema compilation, writes and queries.
"""

from dataclasses import dataclass
from typing import Optional


class FieldtreeError(Exception):
    """Base exception for all fieldtree errors."""

    def __init__(self, message: str, context: Optional["ErrorContext"] = None):
        self.message = message
        self.context = context
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format error message with context if available."""
        if self.context:
            return f"{self.context.format()}: {self.message}"
        return self.message


@dataclass
class ErrorContext:
    """
    Where an error happened.

    Attributes:
        collection: Collection slug
        path: Dot path of the offending field or filter
        locale: Active locale, if any
    """

    collection: str | None = None
    path: str | None = None
    locale: str | None = None

    def format(self) -> str:
        """
        Format error context as a human-readable string.

        Returns:
            Formatted string like: "text-fields.items.0.text [en]"
        """
        parts = [p for p in (self.collection, self.path) if p]
        location = ".".join(parts) if parts else "<schema>"
        if self.locale:
            location += f" [{self.locale}]"
        return location


class SchemaConfigError(FieldtreeError):
    """
    Raised when a schema cannot be compiled.

    Examples:
    - Duplicate sibling storage keys
    - Relationship to an unregistered collection
    - Lookup of an unknown collection slug
    """

    pass


class StructuralSchemaError(FieldtreeError):
    """
    Raised when the schema cannot interpret an input or a query.

    Examples:
    - Unknown block discriminator on a row
    - Filter path segment that no field declares
    - Join depth exhausted

    Never retried; surfaced immediately.
    """

    pass


@dataclass
class FieldErrorDetail:
    """A single failure attributed to one field path."""

    path: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "message": self.message}


class FieldValidationError(FieldtreeError):
    """
    Raised after a whole-document walk found one or more invalid fields.

    Attributes:
        errors: Every independent failure, in traversal order
    """

    def __init__(self, errors: list[FieldErrorDetail], collection: str | None = None):
        self.errors = errors
        self.collection = collection
        super().__init__(_summarize(errors))

    @property
    def paths(self) -> list[str]:
        return [e.path for e in self.errors]

    @property
    def first_path(self) -> str | None:
        return self.errors[0].path if self.errors else None


class UniquenessConflictError(FieldValidationError):
    """
    Raised when the store rejects a write on a unique index.

    Shaped like a validation failure so callers handle both the same way.
    """

    pass


class DefaultResolutionError(FieldtreeError):
    """Raised when one or more computed defaults failed or timed out."""

    def __init__(self, errors: list[FieldErrorDetail], collection: str | None = None):
        self.errors = errors
        self.collection = collection
        paths = ", ".join(e.path for e in errors)
        super().__init__(f"Could not resolve default value for: {paths}")


class DocumentNotFoundError(FieldtreeError):
    """Raised when a document id does not exist in a collection."""

    pass


def _summarize(errors: list[FieldErrorDetail]) -> str:
    paths = [e.path for e in errors]
    if len(paths) == 1:
        return f"The following field is invalid: {paths[0]}"
    return f"The following fields are invalid: {', '.join(paths)}"


def make_structural_error(
    message: str,
    collection: str | None = None,
    path: str | None = None,
    locale: str | None = None,
) -> StructuralSchemaError:
    """
    Helper to create a StructuralSchemaError with optional context.

    Args:
        message: Error description
        collection: Optional collection slug
        path: Optional dot path
        locale: Optional locale

    Returns:
        StructuralSchemaError with context if any location provided
    """
    if collection or path or locale:
        return StructuralSchemaError(
            message, ErrorContext(collection=collection, path=path, locale=locale)
        )
    return StructuralSchemaError(message)
