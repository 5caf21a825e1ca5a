"""
Base check interface for the validation catalog.

Every check type inherits from BaseCheck and implements run(). A check that
finds offending rows or objects raises its CheckFailure subclass exactly
once with the total offending count.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any

from star_pipeline.core.exceptions import CatalogError, CheckFailure
from star_pipeline.core.models import CheckDefinition, ExecutionContext, Severity, ValidationStage

MAX_SAMPLES = 5

# Fixed severity per check type
SEVERITY_BY_CHECK_TYPE = {
    "table_exists": Severity.CRITICAL,
    "column_exists": Severity.CRITICAL,
    "foreign_key": Severity.CRITICAL,
    "column_type": Severity.HIGH,
    "not_null": Severity.HIGH,
    "unique": Severity.HIGH,
    "bridge_count": Severity.HIGH,
    "date_order": Severity.HIGH,
    "date_after_reference": Severity.HIGH,
    "dimension_link": Severity.HIGH,
    "not_in_future": Severity.MEDIUM,
    "allowed_values": Severity.MEDIUM,
    "pattern": Severity.MEDIUM,
}


def sample_values(values, limit: int = MAX_SAMPLES) -> list[str]:
    """First `limit` distinct values rendered as strings, in encounter order."""
    samples: list[str] = []
    for value in values:
        rendered = "NULL" if value is None else str(value)
        if rendered not in samples:
            samples.append(rendered)
        if len(samples) == limit:
            break
    return samples


def as_date(value: Any) -> date | None:
    """Normalize date, datetime or ISO string values to a date."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class BaseCheck(ABC):
    """
    Abstract base class for all checks.

    Subclasses set the stage they run in, the failure they raise and the
    issue type code written into findings.
    """

    stage: ValidationStage
    failure: type[CheckFailure]
    issue_type: str
    required_parameters: tuple[str, ...] = ()
    requires_column: bool = True

    def __init__(self, definition: CheckDefinition):
        """
        Initialize check.

        Args:
            definition: Catalog entry (name, table, column, parameters)

        Raises:
            CatalogError: If the entry is missing a column or a parameter
        """
        self.definition = definition
        self.parameters = definition.parameters
        if self.requires_column and not definition.column_name:
            raise CatalogError(f"Check '{definition.check_name}' ({self.check_type}) requires a column")
        missing = [name for name in self.required_parameters if name not in self.parameters]
        if missing:
            raise CatalogError(
                f"Check '{definition.check_name}' ({self.check_type}) is missing parameters: {missing}"
            )

    @property
    @abstractmethod
    def check_type(self) -> str:
        """Return the check type identifier."""

    @abstractmethod
    def run(self, snapshot, context: ExecutionContext) -> None:
        """
        Run the check against a warehouse snapshot.

        Args:
            snapshot: Object with describe_tables() and fetch_rows(table)
            context: Run context (reference date for time-based checks)

        Raises:
            CheckFailure: If offending rows or objects were found
        """

    @property
    def name(self) -> str:
        return self.definition.check_name

    @property
    def table_name(self) -> str:
        return self.definition.table_name

    @property
    def column_name(self) -> str | None:
        return self.definition.column_name

    @property
    def severity(self) -> Severity:
        return SEVERITY_BY_CHECK_TYPE[self.check_type]

    def required_objects(self) -> list[tuple[str, str | None]]:
        """(table, column) pairs that must exist for the check to run."""
        return [(self.table_name, self.column_name)] if self.column_name else [(self.table_name, None)]

    def fail(self, message: str, affected_rows: int = 0, samples: list[str] | None = None) -> None:
        raise self.failure(
            check_name=self.name,
            message=message,
            affected_rows=affected_rows,
            sample_values=samples,
            issue_type=self.issue_type,
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name}, table={self.table_name}, column={self.column_name})"
