"""
Exception hierarchy for the build and validation stages.

Build errors are component-local: builders catch them per source record,
record a rejection and continue. Check failures are raised by individual
checks and turned into findings by the validation engine.
"""

from typing import Any


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class MissingNaturalKey(PipelineError):
    """Raised when a source record carries no natural key."""

    def __init__(self, entity: str, field_name: str, record: dict[str, Any] | None = None):
        self.entity = entity
        self.field_name = field_name
        self.record = record or {}
        super().__init__(f"{entity} record has no value for '{field_name}'")


class UnresolvedDimensionReference(PipelineError):
    """Raised when a transaction references a dimension row that is not built."""

    def __init__(self, dimension: str, natural_key: Any, referenced_by: str | None = None):
        self.dimension = dimension
        self.natural_key = natural_key
        self.referenced_by = referenced_by
        message = f"{dimension} has no row for natural key {natural_key!r}"
        if referenced_by:
            message = f"{referenced_by}: {message}"
        super().__init__(message)


class CatalogError(PipelineError):
    """Raised when a check catalog entry is invalid."""


class CheckFailure(PipelineError):
    """
    Raised by a check that found offending rows or objects.

    Attributes:
        check_name: Catalog name of the failing check
        affected_rows: Number of offending rows (0 for structural findings)
        message: Human-readable description
        sample_values: A few offending values for the report
    """

    category = "BusinessRuleViolation"

    def __init__(
        self,
        check_name: str,
        message: str,
        affected_rows: int = 0,
        sample_values: list[Any] | None = None,
        issue_type: str | None = None,
    ):
        self.check_name = check_name
        self.message = message
        self.affected_rows = affected_rows
        self.sample_values = sample_values or []
        self.issue_type = issue_type
        super().__init__(f"[{check_name}] {message}")


class StructuralMismatch(CheckFailure):
    """Expected table or column absent, or declared type incompatible."""

    category = "StructuralMismatch"


class IntegrityViolation(CheckFailure):
    """Null in a non-nullable column or duplicate in a unique column."""

    category = "IntegrityViolation"


class BusinessRuleViolation(CheckFailure):
    """Semantic inconsistency: date ordering, value set, code format."""

    category = "BusinessRuleViolation"


class ReferentialOrphan(CheckFailure):
    """A row references a dimension row that does not exist."""

    category = "ReferentialOrphan"
