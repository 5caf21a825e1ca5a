"""
Integrity checks: non-null, uniqueness and fact/bridge count consistency.
"""

from collections import Counter

from star_pipeline.core.exceptions import CatalogError, IntegrityViolation
from star_pipeline.core.models import ValidationStage

from .base_check import BaseCheck, sample_values


class NotNullCheck(BaseCheck):
    """
    Column must not contain NULL.

    Parameters:
    - sample_column: Optional column whose values identify offending rows
    """

    stage = ValidationStage.INTEGRITY_CHECK
    failure = IntegrityViolation
    issue_type = "NULL_VIOLATION"

    @property
    def check_type(self) -> str:
        return "not_null"

    def run(self, snapshot, context) -> None:
        offending = [row for row in snapshot.fetch_rows(self.table_name) if row.get(self.column_name) is None]
        if offending:
            sample_column = self.parameters.get("sample_column")
            samples = sample_values(row.get(sample_column) for row in offending) if sample_column else []
            self.fail(
                f"{len(offending)} rows of {self.table_name} have NULL {self.column_name}",
                affected_rows=len(offending),
                samples=samples,
            )


class UniqueCheck(BaseCheck):
    """
    Values (or value combinations) must be unique among non-null rows.

    Parameters:
    - columns: Optional list of columns for a composite key; defaults to
      the check's column

    affected_rows counts the excess rows: total non-null minus distinct.
    """

    stage = ValidationStage.INTEGRITY_CHECK
    failure = IntegrityViolation
    issue_type = "DUPLICATES"
    requires_column = False

    def __init__(self, definition):
        super().__init__(definition)
        self.columns = list(self.parameters.get("columns") or [self.column_name])
        if not all(self.columns):
            raise CatalogError(f"Check '{definition.check_name}' needs a column or a 'columns' parameter")

    @property
    def check_type(self) -> str:
        return "unique"

    def required_objects(self) -> list[tuple[str, str | None]]:
        return [(self.table_name, column) for column in self.columns]

    def run(self, snapshot, context) -> None:
        values = []
        for row in snapshot.fetch_rows(self.table_name):
            key = tuple(row.get(column) for column in self.columns)
            if all(part is not None for part in key):
                values.append(key if len(key) > 1 else key[0])

        counts = Counter(values)
        excess = len(values) - len(counts)
        if excess:
            duplicated = [value for value, count in counts.items() if count > 1]
            self.fail(
                f"{excess} duplicate values in {self.table_name}({', '.join(self.columns)})",
                affected_rows=excess,
                samples=sample_values(duplicated),
            )


class BridgeCountCheck(BaseCheck):
    """
    Fact count column must equal the number of bridge rows for the fact.

    Parameters:
    - bridge_table: Bridge table holding the child rows
    - key_column: Join column shared by fact and bridge (default encounter_key)
    """

    stage = ValidationStage.INTEGRITY_CHECK
    failure = IntegrityViolation
    issue_type = "AGGREGATE_MISMATCH"
    required_parameters = ("bridge_table",)

    @property
    def key_column(self) -> str:
        return self.parameters.get("key_column", "encounter_key")

    @property
    def check_type(self) -> str:
        return "bridge_count"

    def required_objects(self) -> list[tuple[str, str | None]]:
        bridge_table = self.parameters["bridge_table"]
        return [
            (self.table_name, self.column_name),
            (self.table_name, self.key_column),
            (bridge_table, self.key_column),
        ]

    def run(self, snapshot, context) -> None:
        bridge_counts = Counter(row.get(self.key_column) for row in snapshot.fetch_rows(self.parameters["bridge_table"]))
        mismatched = [
            row for row in snapshot.fetch_rows(self.table_name)
            if (row.get(self.column_name) or 0) != bridge_counts.get(row.get(self.key_column), 0)
        ]
        if mismatched:
            self.fail(
                f"{len(mismatched)} {self.table_name} rows have {self.column_name} different from "
                f"their {self.parameters['bridge_table']} row count",
                affected_rows=len(mismatched),
                samples=sample_values(row.get(self.key_column) for row in mismatched),
            )
