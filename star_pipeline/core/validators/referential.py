"""
Referential checks: every non-null foreign key value must exist in the
referenced table.
"""

from star_pipeline.core.exceptions import ReferentialOrphan
from star_pipeline.core.models import ValidationStage

from .base_check import BaseCheck, sample_values


class ForeignKeyCheck(BaseCheck):
    """
    Fact or bridge column referencing a dimension.

    Parameters:
    - references_table: Referenced table
    - references_column: Referenced key column
    """

    stage = ValidationStage.REFERENTIAL_CHECK
    failure = ReferentialOrphan
    issue_type = "ORPHANED_REFERENCE"
    required_parameters = ("references_table", "references_column")

    @property
    def check_type(self) -> str:
        return "foreign_key"

    def required_objects(self) -> list[tuple[str, str | None]]:
        return [
            (self.table_name, self.column_name),
            (self.parameters["references_table"], self.parameters["references_column"]),
        ]

    def run(self, snapshot, context) -> None:
        target_table = self.parameters["references_table"]
        target_column = self.parameters["references_column"]
        existing = {row.get(target_column) for row in snapshot.fetch_rows(target_table)}
        orphans = [
            row[self.column_name] for row in snapshot.fetch_rows(self.table_name)
            if row.get(self.column_name) is not None and row[self.column_name] not in existing
        ]
        if orphans:
            self.fail(
                f"{len(orphans)} {self.table_name}.{self.column_name} values have no "
                f"matching {target_table}.{target_column}",
                affected_rows=len(orphans),
                samples=sample_values(orphans),
            )


class DimensionLinkCheck(ForeignKeyCheck):
    """Dimension column referencing another dimension (e.g. provider -> specialty)."""

    @property
    def check_type(self) -> str:
        return "dimension_link"
