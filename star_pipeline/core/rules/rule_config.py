"""
Check catalog management.

Loads validation checks from YAML files, derives structural, integrity and
referential checks from the warehouse table specifications, and offers a
builder for programmatic catalogs.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from star_pipeline.core.exceptions import CatalogError
from star_pipeline.core.models import CheckDefinition
from star_pipeline.utils.validation import InputValidationError, sanitize_sql_identifier
from star_pipeline.warehouse.schema_mgmt import BRIDGE_COUNT_COLUMNS, STAR_SCHEMA, TableSpec

ICD10_PATTERN = r"^[A-Z][0-9]{2}(\.[0-9A-Z]*)?$"
CPT_PATTERN = r"^[0-9]{5}$"
GENDER_CODES = ["M", "F", "O", "U"]
AGE_GROUPS = ["0-18", "19-35", "36-60", "60+"]


def make_check(
    check_type: str,
    table_name: str,
    column_name: str | None = None,
    parameters: dict[str, Any] | None = None,
    check_name: str | None = None,
    enabled: bool = True,
) -> CheckDefinition:
    """
    Build a CheckDefinition, validating names used in SQL.

    Raises:
        CatalogError: If the entry is invalid
    """
    name = check_name or "_".join(part for part in (table_name, column_name, check_type) if part)
    try:
        sanitize_sql_identifier(table_name, "table_name")
        if column_name:
            sanitize_sql_identifier(column_name, "column_name")
        return CheckDefinition(
            check_name=name,
            check_type=check_type,
            table_name=table_name,
            column_name=column_name,
            parameters=parameters or {},
            enabled=enabled,
        )
    except (ValidationError, InputValidationError) as e:
        raise CatalogError(f"Invalid check '{name}': {e}") from e


def schema_checks(tables: tuple[TableSpec, ...] = STAR_SCHEMA) -> list[CheckDefinition]:
    """
    Checks implied by the table specifications.

    Per table: existence; per column: existence, declared type, NOT NULL,
    uniqueness and references; per fact count column: bridge consistency.
    """
    checks: list[CheckDefinition] = []
    for spec in tables:
        sample_column = spec.primary_key[0]
        checks.append(make_check("table_exists", spec.name))
        for col in spec.columns:
            checks.append(make_check("column_exists", spec.name, col.name))
            checks.append(make_check("column_type", spec.name, col.name, {"expected_type": col.data_type}))
            if not col.nullable:
                checks.append(make_check("not_null", spec.name, col.name, {"sample_column": sample_column}))
            if col.unique:
                checks.append(make_check("unique", spec.name, col.name))
            if col.references:
                ref_table, ref_column = col.references
                check_type = "dimension_link" if spec.kind == "dimension" else "foreign_key"
                checks.append(make_check(
                    check_type, spec.name, col.name,
                    {"references_table": ref_table, "references_column": ref_column},
                ))
        if len(spec.primary_key) > 1:
            checks.append(make_check(
                "unique", spec.name, None, {"columns": list(spec.primary_key)},
                check_name=f"{spec.name}_{'_'.join(spec.primary_key)}_unique",
            ))
        if spec.kind == "fact":
            for count_column, bridge_table in BRIDGE_COUNT_COLUMNS.items():
                checks.append(make_check("bridge_count", spec.name, count_column, {"bridge_table": bridge_table}))
    return checks


def business_rule_checks() -> list[CheckDefinition]:
    """Domain rules for the healthcare star schema."""
    return (
        RuleConfigBuilder()
        .add_allowed_values("dim_patient", "gender", GENDER_CODES)
        .add_allowed_values("dim_patient", "age_group", AGE_GROUPS)
        .add_not_in_future("dim_patient", "date_of_birth")
        .add_pattern("dim_diagnosis", "icd10_code", ICD10_PATTERN)
        .add_pattern("dim_procedure", "cpt_code", CPT_PATTERN)
        .add_not_in_future("fact_encounters", "encounter_datetime")
        .add_date_order("fact_encounters", "discharge_datetime", not_before="encounter_datetime")
        .add_date_after_reference(
            "fact_encounters", "encounter_datetime",
            reference_table="dim_patient", reference_column="date_of_birth", join_column="patient_key",
        )
        .build()
    )


def default_catalog() -> list[CheckDefinition]:
    """Schema-derived checks followed by the business rules."""
    return schema_checks() + business_rule_checks()


def ensure_unique_names(checks: list[CheckDefinition]) -> list[CheckDefinition]:
    seen: set[str] = set()
    for check in checks:
        if check.check_name in seen:
            raise CatalogError(f"Duplicate check name: {check.check_name}")
        seen.add(check.check_name)
    return checks


class RuleConfigLoader:
    """
    Loads the check catalog from a YAML configuration file.

    Expected YAML format:
    ```yaml
    include_schema_checks: true
    checks:
      dim_patient:
        - type: allowed_values
          column: gender
          params:
            allowed: [M, F, O, U]
      fact_encounters:
        - type: date_order
          column: discharge_datetime
          params:
            not_before: encounter_datetime
    ```
    """

    def __init__(self, config_path: str | Path):
        """
        Args:
            config_path: Path to the YAML catalog file
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"Check catalog file not found: {config_path}")

    def load_checks(self) -> list[CheckDefinition]:
        """
        Load and parse the catalog.

        Returns:
            Ordered list of check definitions

        Raises:
            CatalogError: If the YAML is invalid or an entry is malformed
        """
        with open(self.config_path) as f:
            try:
                config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise CatalogError(f"Invalid YAML in {self.config_path}: {e}") from e

        if not config or "checks" not in config:
            raise CatalogError("Catalog file must contain a 'checks' section")

        checks = schema_checks() if config.get("include_schema_checks", False) else []

        for table_name, entries in (config["checks"] or {}).items():
            if not isinstance(entries, list):
                raise CatalogError(f"Checks for table '{table_name}' must be a list")
            for entry in entries:
                checks.append(self._parse_check(table_name, entry))

        return ensure_unique_names(checks)

    def _parse_check(self, table_name: str, entry: dict[str, Any]) -> CheckDefinition:
        if not isinstance(entry, dict) or "type" not in entry:
            raise CatalogError(f"Check for table '{table_name}' is missing 'type'")

        return make_check(
            check_type=entry["type"],
            table_name=table_name,
            column_name=entry.get("column"),
            parameters=entry.get("params", entry.get("parameters", {})),
            check_name=entry.get("name"),
            enabled=entry.get("enabled", True),
        )


class RuleConfigBuilder:
    """
    Programmatically build a check catalog (for tests or ad-hoc runs).
    """

    def __init__(self):
        self.checks: list[CheckDefinition] = []

    def add(self, check_type: str, table_name: str, column_name: str | None = None, **parameters) -> "RuleConfigBuilder":
        self.checks.append(make_check(check_type, table_name, column_name, parameters))
        return self

    def add_table(self, table_name: str) -> "RuleConfigBuilder":
        return self.add("table_exists", table_name)

    def add_column(self, table_name: str, column_name: str, expected_type: str | None = None) -> "RuleConfigBuilder":
        self.add("column_exists", table_name, column_name)
        if expected_type:
            self.add("column_type", table_name, column_name, expected_type=expected_type)
        return self

    def add_not_null(self, table_name: str, column_name: str) -> "RuleConfigBuilder":
        return self.add("not_null", table_name, column_name)

    def add_unique(self, table_name: str, column_name: str) -> "RuleConfigBuilder":
        return self.add("unique", table_name, column_name)

    def add_bridge_count(self, table_name: str, column_name: str, bridge_table: str) -> "RuleConfigBuilder":
        return self.add("bridge_count", table_name, column_name, bridge_table=bridge_table)

    def add_not_in_future(self, table_name: str, column_name: str) -> "RuleConfigBuilder":
        return self.add("not_in_future", table_name, column_name)

    def add_date_order(self, table_name: str, column_name: str, not_before: str) -> "RuleConfigBuilder":
        return self.add("date_order", table_name, column_name, not_before=not_before)

    def add_date_after_reference(
        self,
        table_name: str,
        column_name: str,
        reference_table: str,
        reference_column: str,
        join_column: str,
    ) -> "RuleConfigBuilder":
        return self.add(
            "date_after_reference", table_name, column_name,
            reference_table=reference_table, reference_column=reference_column, join_column=join_column,
        )

    def add_allowed_values(self, table_name: str, column_name: str, allowed: list[Any]) -> "RuleConfigBuilder":
        return self.add("allowed_values", table_name, column_name, allowed=list(allowed))

    def add_pattern(self, table_name: str, column_name: str, pattern: str) -> "RuleConfigBuilder":
        return self.add("pattern", table_name, column_name, pattern=pattern)

    def add_foreign_key(
        self, table_name: str, column_name: str, references_table: str, references_column: str
    ) -> "RuleConfigBuilder":
        return self.add(
            "foreign_key", table_name, column_name,
            references_table=references_table, references_column=references_column,
        )

    def add_dimension_link(
        self, table_name: str, column_name: str, references_table: str, references_column: str
    ) -> "RuleConfigBuilder":
        return self.add(
            "dimension_link", table_name, column_name,
            references_table=references_table, references_column=references_column,
        )

    def build(self) -> list[CheckDefinition]:
        """Return the catalog; check names must be unique."""
        return ensure_unique_names(list(self.checks))
