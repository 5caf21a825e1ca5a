"""
Warehouse repository interface and the in-memory implementation.

The builders write through `WarehouseRepository`; the validation engine only
reads through its snapshot half (`describe_tables`, `fetch_rows`).
"""

from abc import ABC, abstractmethod
from typing import Any

from star_pipeline.core.models import (
    DIMENSION_MODELS,
    BridgeDiagnosisRow,
    BridgeProcedureRow,
    DimensionRecord,
    FactEncounter,
    ReadmissionAnnotation,
    ValidationFinding,
)

from .schema_mgmt import STAR_SCHEMA, TableSpec

BridgeRow = BridgeDiagnosisRow | BridgeProcedureRow


class WarehouseSnapshot(ABC):
    """Read-only view used by the validation engine."""

    @abstractmethod
    def describe_tables(self) -> dict[str, dict[str, str]]:
        """{table: {column: declared type}} of the tables that exist."""

    @abstractmethod
    def fetch_rows(self, table_name: str) -> list[dict[str, Any]]:
        """All rows of a table as dictionaries."""


class WarehouseRepository(WarehouseSnapshot):
    """Write side of the warehouse."""

    @abstractmethod
    def load_dimension(self, table_name: str) -> dict[Any, DimensionRecord]:
        """Existing rows of a dimension keyed by natural key."""

    @abstractmethod
    def upsert_dimension(self, table_name: str, records: list[DimensionRecord]) -> int:
        """Insert or update dimension rows by natural key; returns rows written."""

    @abstractmethod
    def load_facts(self) -> dict[int, FactEncounter]:
        """Existing fact rows keyed by encounter_id."""

    @abstractmethod
    def upsert_facts(self, facts: list[FactEncounter]) -> int:
        """Insert or update fact rows by encounter_id; returns rows written."""

    @abstractmethod
    def replace_bridge_rows(self, table_name: str, rows_by_fact: dict[int, list[BridgeRow]]) -> tuple[int, int]:
        """
        Replace the full bridge set of each given fact key.

        Args:
            table_name: Bridge table
            rows_by_fact: encounter_key -> complete new row list (may be empty)

        Returns:
            (rows deleted, rows inserted)
        """

    @abstractmethod
    def apply_readmissions(self, annotations: list[ReadmissionAnnotation]) -> int:
        """Write readmission columns onto existing fact rows; returns rows updated."""

    @abstractmethod
    def append_findings(self, findings: list[ValidationFinding]) -> int:
        """Persist findings of a run (append-only)."""

    @abstractmethod
    def max_key(self, table_name: str, key_column: str) -> int:
        """Largest surrogate key present (0 for an empty table)."""


class InMemoryWarehouse(WarehouseRepository):
    """
    Dictionary-backed warehouse for tests and dry runs.

    Enforces the same uniqueness rules as the PostgreSQL schema: one row per
    natural key and one row per (fact key, sequence) in each bridge.
    """

    def __init__(self, schema: tuple[TableSpec, ...] = STAR_SCHEMA):
        self.schema = {spec.name: spec for spec in schema}
        self.tables: dict[str, list[dict[str, Any]]] = {spec.name: [] for spec in schema}
        self.findings: list[ValidationFinding] = []

    def describe_tables(self) -> dict[str, dict[str, str]]:
        return {
            name: {col.name: col.data_type for col in spec.columns}
            for name, spec in self.schema.items()
        }

    def fetch_rows(self, table_name: str) -> list[dict[str, Any]]:
        return [dict(row) for row in self._table(table_name)]

    def insert_rows(self, table_name: str, rows: list[dict[str, Any]]) -> None:
        """Append raw rows without any checks (seeding test fixtures)."""
        self._table(table_name).extend(dict(row) for row in rows)

    def load_dimension(self, table_name: str) -> dict[Any, DimensionRecord]:
        model = DIMENSION_MODELS[table_name]
        loaded = {}
        for row in self._table(table_name):
            record = model(**row)
            loaded[record.natural_key] = record
        return loaded

    def upsert_dimension(self, table_name: str, records: list[DimensionRecord]) -> int:
        model = DIMENSION_MODELS[table_name]
        self._upsert(table_name, [r.model_dump() for r in records], model.natural_key_column, model.key_column)
        return len(records)

    def load_facts(self) -> dict[int, FactEncounter]:
        return {row["encounter_id"]: FactEncounter(**row) for row in self._table(FactEncounter.table_name)}

    def upsert_facts(self, facts: list[FactEncounter]) -> int:
        self._upsert(
            FactEncounter.table_name,
            [fact.model_dump() for fact in facts],
            FactEncounter.natural_key_column,
            FactEncounter.key_column,
        )
        return len(facts)

    def replace_bridge_rows(self, table_name: str, rows_by_fact: dict[int, list[BridgeRow]]) -> tuple[int, int]:
        table = self._table(table_name)
        replaced = set(rows_by_fact)
        kept = [row for row in table if row["encounter_key"] not in replaced]
        deleted = len(table) - len(kept)

        inserted_rows = []
        seen: set[tuple[int, int]] = set()
        for fact_key, rows in rows_by_fact.items():
            for row in rows:
                values = row.model_dump()
                identity = (fact_key, values[row.sequence_column])
                if identity in seen:
                    raise ValueError(f"{table_name}: duplicate sequence {identity}")
                seen.add(identity)
                inserted_rows.append(values)

        self.tables[table_name] = kept + inserted_rows
        return deleted, len(inserted_rows)

    def apply_readmissions(self, annotations: list[ReadmissionAnnotation]) -> int:
        by_key = {a.encounter_key: a for a in annotations}
        updated = 0
        for row in self._table(FactEncounter.table_name):
            annotation = by_key.get(row["encounter_key"])
            if annotation is not None:
                row.update(annotation.model_dump(exclude={"encounter_key"}))
                updated += 1
        return updated

    def append_findings(self, findings: list[ValidationFinding]) -> int:
        self.findings.extend(findings)
        return len(findings)

    def max_key(self, table_name: str, key_column: str) -> int:
        return max((row[key_column] for row in self._table(table_name)), default=0)

    def _table(self, table_name: str) -> list[dict[str, Any]]:
        if table_name not in self.tables:
            raise KeyError(f"Unknown warehouse table: {table_name}")
        return self.tables[table_name]

    def _upsert(self, table_name: str, rows: list[dict[str, Any]], natural_key: str, key_column: str) -> None:
        table = self._table(table_name)
        position = {row[natural_key]: idx for idx, row in enumerate(table)}
        keys_in_use = {row[key_column]: row[natural_key] for row in table}
        for row in rows:
            owner = keys_in_use.get(row[key_column])
            if owner is not None and owner != row[natural_key]:
                raise ValueError(
                    f"{table_name}: surrogate key {row[key_column]} already belongs to {owner!r}"
                )
            idx = position.get(row[natural_key])
            if idx is None:
                position[row[natural_key]] = len(table)
                table.append(dict(row))
            else:
                table[idx] = dict(row)
            keys_in_use[row[key_column]] = row[natural_key]
