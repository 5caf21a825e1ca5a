"""
Structural checks: expected tables, columns and declared column types.
"""

import re

from star_pipeline.core.exceptions import StructuralMismatch
from star_pipeline.core.models import ValidationStage

from .base_check import BaseCheck

# Declared type -> family; length and precision are ignored
TYPE_FAMILIES = {
    "integer": "integer", "int": "integer", "int4": "integer", "smallint": "integer",
    "int2": "integer", "bigint": "integer", "int8": "integer", "serial": "integer",
    "bigserial": "integer",
    "numeric": "numeric", "decimal": "numeric",
    "real": "float", "double precision": "float", "float4": "float", "float8": "float",
    "varchar": "text", "character varying": "text", "text": "text", "char": "text",
    "character": "text", "bpchar": "text",
    "date": "date",
    "timestamp": "timestamp", "timestamp without time zone": "timestamp",
    "timestamptz": "timestamp", "timestamp with time zone": "timestamp",
    "boolean": "boolean", "bool": "boolean",
    "json": "json", "jsonb": "json",
    "uuid": "uuid",
}


def type_family(declared_type: str) -> str:
    """
    Family of a declared SQL type.

    Examples:
        >>> type_family("VARCHAR(100)")
        'text'
        >>> type_family("numeric(12,2)")
        'numeric'
    """
    normalized = re.sub(r"\(.*?\)", "", declared_type).strip().lower()
    normalized = re.sub(r"\s+", " ", normalized)
    return TYPE_FAMILIES.get(normalized, normalized)


class TableExistsCheck(BaseCheck):
    stage = ValidationStage.STRUCTURAL_CHECK
    failure = StructuralMismatch
    issue_type = "TABLE_MISSING"
    requires_column = False

    @property
    def check_type(self) -> str:
        return "table_exists"

    def required_objects(self) -> list[tuple[str, str | None]]:
        return []

    def run(self, snapshot, context) -> None:
        if self.table_name not in snapshot.describe_tables():
            self.fail(f"Table {self.table_name} does not exist")


class ColumnExistsCheck(BaseCheck):
    stage = ValidationStage.STRUCTURAL_CHECK
    failure = StructuralMismatch
    issue_type = "COLUMN_MISSING"

    @property
    def check_type(self) -> str:
        return "column_exists"

    def required_objects(self) -> list[tuple[str, str | None]]:
        return [(self.table_name, None)]

    def run(self, snapshot, context) -> None:
        columns = snapshot.describe_tables().get(self.table_name, {})
        if self.column_name not in columns:
            self.fail(f"Column {self.table_name}.{self.column_name} does not exist")


class ColumnTypeCheck(BaseCheck):
    """
    Declared column type must belong to the expected type family.

    Parameters:
    - expected_type: SQL type name ("integer", "varchar(100)", "timestamp")
    """

    stage = ValidationStage.TYPE_CHECK
    failure = StructuralMismatch
    issue_type = "TYPE_MISMATCH"
    required_parameters = ("expected_type",)

    @property
    def check_type(self) -> str:
        return "column_type"

    def run(self, snapshot, context) -> None:
        declared = snapshot.describe_tables()[self.table_name][self.column_name]
        expected = self.parameters["expected_type"]
        if type_family(declared) != type_family(expected):
            self.fail(
                f"Column {self.table_name}.{self.column_name} is declared {declared}, expected {expected}",
                samples=[declared],
            )
