"""
Bridge builder: encounter child associations to ordered bridge rows.

Sequences are reassigned 1..n on every build, so a rebuilt fact row always
gets a contiguous bridge set with the primary item at sequence 1.
"""

from typing import Iterable

from star_pipeline.core.exceptions import UnresolvedDimensionReference
from star_pipeline.core.models import (
    BridgeDiagnosisRow,
    BridgeProcedureRow,
    BuildRejection,
    BuildResult,
    DimDiagnosis,
    DimProcedure,
    EncounterDiagnosisSource,
    EncounterProcedureSource,
    ExecutionContext,
    FactEncounter,
)
from star_pipeline.observability.logger import get_logger
from star_pipeline.observability.metrics import record_rejection, record_table_writes
from star_pipeline.warehouse.repository import WarehouseRepository

from .dimension_builder import DimensionLookup

logger = get_logger(__name__)


def order_diagnoses(children: Iterable[EncounterDiagnosisSource]) -> list[EncounterDiagnosisSource]:
    """Clinical order: source sequence, then association id. Missing values sort last."""
    return sorted(
        children,
        key=lambda c: (
            c.diagnosis_sequence is None,
            c.diagnosis_sequence or 0,
            c.encounter_diagnosis_id is None,
            c.encounter_diagnosis_id or 0,
        ),
    )


def order_procedures(children: Iterable[EncounterProcedureSource]) -> list[EncounterProcedureSource]:
    """Chronological order: procedure date, then association id. Missing values sort last."""
    return sorted(
        children,
        key=lambda c: (
            c.procedure_date is None,
            c.procedure_date.toordinal() if c.procedure_date else 0,
            c.encounter_procedure_id is None,
            c.encounter_procedure_id or 0,
        ),
    )


def build_diagnosis_rows(
    fact: FactEncounter,
    children: Iterable[EncounterDiagnosisSource],
    lookup: DimensionLookup,
) -> list[BridgeDiagnosisRow]:
    """
    Ordered diagnosis bridge rows of one fact row.

    Raises:
        UnresolvedDimensionReference: If a diagnosis is not in dim_diagnosis
    """
    referenced_by = f"encounter {fact.encounter_id}"
    return [
        BridgeDiagnosisRow(
            encounter_key=fact.encounter_key,
            diagnosis_key=lookup.key(DimDiagnosis.table_name, child.diagnosis_id, referenced_by),
            diagnosis_sequence=sequence,
            diagnosis_present_on_admission=child.present_on_admission,
        )
        for sequence, child in enumerate(order_diagnoses(children), start=1)
    ]


def build_procedure_rows(
    fact: FactEncounter,
    children: Iterable[EncounterProcedureSource],
    lookup: DimensionLookup,
) -> list[BridgeProcedureRow]:
    """
    Ordered procedure bridge rows of one fact row.

    Raises:
        UnresolvedDimensionReference: If a procedure or procedure date is not
            materialized
    """
    referenced_by = f"encounter {fact.encounter_id}"
    return [
        BridgeProcedureRow(
            encounter_key=fact.encounter_key,
            procedure_key=lookup.key(DimProcedure.table_name, child.procedure_id, referenced_by),
            procedure_date_key=(
                lookup.date_key(child.procedure_date, referenced_by) if child.procedure_date else None
            ),
            procedure_sequence=sequence,
            modifier_codes=child.modifier_codes,
            procedure_status=child.procedure_status,
        )
        for sequence, child in enumerate(order_procedures(children), start=1)
    ]


class BridgeBuilder:
    """
    Replaces the bridge sets of a batch of fact rows.

    Usage:
        builder = BridgeBuilder(warehouse, context)
        builder.build_diagnoses(facts, diagnoses_by_encounter, lookup)
        builder.build_procedures(facts, procedures_by_encounter, lookup)
    """

    def __init__(self, warehouse: WarehouseRepository, context: ExecutionContext):
        self.warehouse = warehouse
        self.context = context

    def build_diagnoses(
        self,
        facts: dict[int, FactEncounter],
        children_by_encounter: dict[int, list[EncounterDiagnosisSource]],
        lookup: DimensionLookup,
    ) -> BuildResult:
        return self._replace(BridgeDiagnosisRow.table_name, facts, children_by_encounter, lookup, build_diagnosis_rows)

    def build_procedures(
        self,
        facts: dict[int, FactEncounter],
        children_by_encounter: dict[int, list[EncounterProcedureSource]],
        lookup: DimensionLookup,
    ) -> BuildResult:
        return self._replace(BridgeProcedureRow.table_name, facts, children_by_encounter, lookup, build_procedure_rows)

    def _replace(self, table_name, facts, children_by_encounter, lookup, build_rows) -> BuildResult:
        result = BuildResult(table_name=table_name)
        rows_by_fact = {}

        for encounter_id, fact in facts.items():
            try:
                rows_by_fact[fact.encounter_key] = build_rows(fact, children_by_encounter.get(encounter_id, []), lookup)
            except UnresolvedDimensionReference as e:
                result.rejections.append(BuildRejection.from_error(table_name, e, encounter_id))

        deleted, inserted = self.warehouse.replace_bridge_rows(table_name, rows_by_fact)
        result.inserted = inserted
        result.deleted = deleted

        record_table_writes(table_name, inserted=inserted, deleted=deleted)
        for rejection in result.rejections:
            record_rejection(table_name, rejection.reason)

        logger.info(
            f"Replaced {table_name} for {len(rows_by_fact)} encounters: {deleted} deleted, {inserted} inserted",
            extra={"run_id": self.context.run_id, "table": table_name, **result.counts()},
        )
        return result
