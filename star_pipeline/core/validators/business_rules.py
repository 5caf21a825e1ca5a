"""
Business-rule checks: date sanity, allowed value sets and code formats.

NULL values are skipped here; not_null checks report them.
"""

import re

from star_pipeline.core.exceptions import BusinessRuleViolation, CatalogError
from star_pipeline.core.models import ValidationStage

from .base_check import BaseCheck, as_date, sample_values


class NotInFutureCheck(BaseCheck):
    """Date must not be after the run's reference date."""

    stage = ValidationStage.BUSINESS_RULE_CHECK
    failure = BusinessRuleViolation
    issue_type = "INVALID_DATE_RANGE"

    @property
    def check_type(self) -> str:
        return "not_in_future"

    def run(self, snapshot, context) -> None:
        reference = context.reference_date
        offending = [
            row[self.column_name] for row in snapshot.fetch_rows(self.table_name)
            if row.get(self.column_name) is not None and as_date(row[self.column_name]) > reference
        ]
        if offending:
            self.fail(
                f"{len(offending)} {self.table_name}.{self.column_name} values are after {reference}",
                affected_rows=len(offending),
                samples=sample_values(offending),
            )


class DateOrderCheck(BaseCheck):
    """
    Column must not precede another column of the same row.

    Parameters:
    - not_before: Column the checked value must be on or after
    """

    stage = ValidationStage.BUSINESS_RULE_CHECK
    failure = BusinessRuleViolation
    issue_type = "INVALID_DATE_LOGIC"
    required_parameters = ("not_before",)

    @property
    def check_type(self) -> str:
        return "date_order"

    def required_objects(self) -> list[tuple[str, str | None]]:
        return [(self.table_name, self.column_name), (self.table_name, self.parameters["not_before"])]

    def run(self, snapshot, context) -> None:
        other = self.parameters["not_before"]
        offending = []
        for row in snapshot.fetch_rows(self.table_name):
            value, earlier = row.get(self.column_name), row.get(other)
            if value is None or earlier is None:
                continue
            if type(value) is not type(earlier):
                value, earlier = as_date(value), as_date(earlier)
            if value < earlier:
                offending.append(row[self.column_name])
        if offending:
            self.fail(
                f"{len(offending)} {self.table_name} rows have {self.column_name} before {other}",
                affected_rows=len(offending),
                samples=sample_values(offending),
            )


class DateAfterReferenceCheck(BaseCheck):
    """
    Date must not precede a date held by a referenced dimension row.

    Typical use: encounter date on or after the patient's birth date.

    Parameters:
    - join_column: Column of the checked table holding the dimension key
    - reference_table: Dimension table
    - reference_column: Date column of the dimension
    - reference_key: Key column of the dimension (default: join_column)
    """

    stage = ValidationStage.BUSINESS_RULE_CHECK
    failure = BusinessRuleViolation
    issue_type = "INVALID_DATE_LOGIC"
    required_parameters = ("join_column", "reference_table", "reference_column")

    @property
    def reference_key(self) -> str:
        return self.parameters.get("reference_key", self.parameters["join_column"])

    @property
    def check_type(self) -> str:
        return "date_after_reference"

    def required_objects(self) -> list[tuple[str, str | None]]:
        reference_table = self.parameters["reference_table"]
        return [
            (self.table_name, self.column_name),
            (self.table_name, self.parameters["join_column"]),
            (reference_table, self.parameters["reference_column"]),
            (reference_table, self.reference_key),
        ]

    def run(self, snapshot, context) -> None:
        reference_dates = {
            row.get(self.reference_key): as_date(row.get(self.parameters["reference_column"]))
            for row in snapshot.fetch_rows(self.parameters["reference_table"])
        }
        offending = []
        for row in snapshot.fetch_rows(self.table_name):
            value = as_date(row.get(self.column_name))
            reference = reference_dates.get(row.get(self.parameters["join_column"]))
            if value is not None and reference is not None and value < reference:
                offending.append(row[self.column_name])
        if offending:
            self.fail(
                f"{len(offending)} {self.table_name}.{self.column_name} values precede "
                f"{self.parameters['reference_table']}.{self.parameters['reference_column']}",
                affected_rows=len(offending),
                samples=sample_values(offending),
            )


class AllowedValuesCheck(BaseCheck):
    """
    Value must be one of a fixed set.

    Parameters:
    - allowed: List of permitted values
    """

    stage = ValidationStage.BUSINESS_RULE_CHECK
    failure = BusinessRuleViolation
    issue_type = "INVALID_VALUES"
    required_parameters = ("allowed",)

    @property
    def check_type(self) -> str:
        return "allowed_values"

    def run(self, snapshot, context) -> None:
        allowed = set(self.parameters["allowed"])
        offending = [
            row[self.column_name] for row in snapshot.fetch_rows(self.table_name)
            if row.get(self.column_name) is not None and row[self.column_name] not in allowed
        ]
        if offending:
            self.fail(
                f"{len(offending)} {self.table_name}.{self.column_name} values are outside {sorted(allowed)}",
                affected_rows=len(offending),
                samples=sample_values(offending),
            )


class PatternCheck(BaseCheck):
    """
    Value must match a regular expression (anchored at the start).

    Parameters:
    - pattern: Regular expression, e.g. ^[0-9]{5}$ for CPT codes
    """

    stage = ValidationStage.BUSINESS_RULE_CHECK
    failure = BusinessRuleViolation
    issue_type = "INVALID_FORMAT"
    required_parameters = ("pattern",)

    def __init__(self, definition):
        super().__init__(definition)
        try:
            self.pattern = re.compile(self.parameters["pattern"])
        except re.error as e:
            raise CatalogError(f"Check '{definition.check_name}' has an invalid pattern: {e}") from e

    @property
    def check_type(self) -> str:
        return "pattern"

    def run(self, snapshot, context) -> None:
        offending = [
            row[self.column_name] for row in snapshot.fetch_rows(self.table_name)
            if row.get(self.column_name) is not None and not self.pattern.match(str(row[self.column_name]))
        ]
        if offending:
            self.fail(
                f"{len(offending)} {self.table_name}.{self.column_name} values do not match "
                f"'{self.pattern.pattern}'",
                affected_rows=len(offending),
                samples=sample_values(offending),
            )
