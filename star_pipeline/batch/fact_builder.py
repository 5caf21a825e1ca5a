"""
Fact builder: one FactEncounter per source encounter.

All dimension references are resolved through the DimensionLookup filled by
the dimension builder. An encounter with an unresolved reference or without
an admission timestamp is rejected and reported; the rest of the batch is
still built.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Iterable

from star_pipeline.core import derivations
from star_pipeline.core.exceptions import MissingNaturalKey, UnresolvedDimensionReference
from star_pipeline.core.models import (
    BillingSource,
    BuildRejection,
    BuildResult,
    DimDepartment,
    DimDiagnosis,
    DimEncounterType,
    DimPatient,
    DimProcedure,
    DimProvider,
    EncounterDiagnosisSource,
    EncounterProcedureSource,
    EncounterSource,
    ExecutionContext,
    FactEncounter,
    ReadmissionAnnotation,
)
from star_pipeline.observability.change_capture import ChangeCaptureTracker
from star_pipeline.observability.logger import get_logger
from star_pipeline.observability.metrics import record_rejection, record_table_writes
from star_pipeline.warehouse.key_allocator import KeyAllocator
from star_pipeline.warehouse.repository import WarehouseRepository

from .bridge_builder import order_diagnoses
from .dimension_builder import PLACEHOLDER_KEY, DimensionLookup

logger = get_logger(__name__)

READMISSION_FIELDS = tuple(field for field in ReadmissionAnnotation.model_fields if field != "encounter_key")


def group_by_encounter(records: Iterable) -> dict[int, list]:
    """Child records keyed by their encounter_id, input order preserved."""
    grouped = defaultdict(list)
    for record in records:
        grouped[record.encounter_id].append(record)
    return dict(grouped)


def build(
    encounter: EncounterSource,
    diagnoses: list[EncounterDiagnosisSource],
    procedures: list[EncounterProcedureSource],
    billing: list[BillingSource],
    lookup: DimensionLookup,
    encounter_key: int = PLACEHOLDER_KEY,
) -> FactEncounter:
    """
    Build one fact row.

    Args:
        encounter: Source encounter
        diagnoses: The encounter's diagnosis associations
        procedures: The encounter's procedure associations
        billing: The encounter's billing records
        lookup: Materialized dimensions
        encounter_key: Surrogate key to assign

    Returns:
        FactEncounter without readmission annotations

    Raises:
        MissingNaturalKey: If encounter_id or encounter_date is missing
        UnresolvedDimensionReference: If any referenced dimension row is missing
    """
    if encounter.encounter_id is None:
        raise MissingNaturalKey("encounters", "encounter_id", encounter.model_dump())
    if encounter.encounter_date is None:
        raise MissingNaturalKey("encounters", "encounter_date", encounter.model_dump())

    referenced_by = f"encounter {encounter.encounter_id}"
    patient = lookup.resolve(DimPatient.table_name, encounter.patient_id, referenced_by)
    provider = lookup.resolve(DimProvider.table_name, encounter.provider_id, referenced_by)
    encounter_type = lookup.resolve(DimEncounterType.table_name, encounter.encounter_type, referenced_by)

    if encounter.department_id is not None:
        department_key = lookup.key(DimDepartment.table_name, encounter.department_id, referenced_by)
    else:
        department_key = provider.department_key

    diagnosis_keys = [
        lookup.key(DimDiagnosis.table_name, child.diagnosis_id, referenced_by)
        for child in order_diagnoses(diagnoses)
    ]
    for child in procedures:
        lookup.key(DimProcedure.table_name, child.procedure_id, referenced_by)
        if child.procedure_date is not None:
            lookup.date_key(child.procedure_date, referenced_by)

    discharge = encounter.discharge_date

    return FactEncounter(
        encounter_key=encounter_key,
        encounter_id=encounter.encounter_id,
        patient_key=patient.surrogate_key,
        provider_key=provider.surrogate_key,
        encounter_date_key=lookup.date_key(encounter.encounter_date, referenced_by),
        discharge_date_key=lookup.date_key(discharge, referenced_by) if discharge else None,
        encounter_type_key=encounter_type.surrogate_key,
        specialty_key=provider.specialty_key,
        department_key=department_key,
        primary_diagnosis_key=diagnosis_keys[0] if diagnosis_keys else None,
        diagnosis_count=len(diagnoses),
        procedure_count=len(procedures),
        total_claim_amount=derivations.to_cents(sum((derivations.to_cents(b.claim_amount) for b in billing), Decimal("0"))),
        total_allowed_amount=derivations.to_cents(sum((derivations.to_cents(b.allowed_amount) for b in billing), Decimal("0"))),
        length_of_stay_hours=derivations.length_of_stay_hours(encounter.encounter_date, discharge),
        encounter_datetime=encounter.encounter_date,
        discharge_datetime=discharge,
    )


class FactBuilder:
    """
    Builds and upserts fact_encounters for a batch of encounters.

    Existing fact rows keep their surrogate key and readmission columns;
    the readmission stage recomputes the latter after the build.
    """

    def __init__(
        self,
        warehouse: WarehouseRepository,
        allocator: KeyAllocator,
        context: ExecutionContext,
        tracker: ChangeCaptureTracker | None = None,
    ):
        self.warehouse = warehouse
        self.allocator = allocator
        self.context = context
        self.tracker = tracker

    def build_batch(
        self,
        encounters: Iterable[EncounterSource],
        diagnoses: Iterable[EncounterDiagnosisSource],
        procedures: Iterable[EncounterProcedureSource],
        billing: Iterable[BillingSource],
        lookup: DimensionLookup,
    ) -> tuple[BuildResult, dict[int, FactEncounter]]:
        """
        Build all encounters of a batch.

        Returns:
            (BuildResult, {encounter_id: fact row}) for every accepted encounter
        """
        diagnoses_by_encounter = group_by_encounter(diagnoses)
        procedures_by_encounter = group_by_encounter(procedures)
        billing_by_encounter = group_by_encounter(billing)

        table_name = FactEncounter.table_name
        existing = self.warehouse.load_facts()
        result = BuildResult(table_name=table_name)
        facts: dict[int, FactEncounter] = {}
        new_facts: list[FactEncounter] = []
        changed_facts: list[FactEncounter] = []

        for encounter in encounters:
            encounter_id = encounter.encounter_id
            if encounter_id is not None and encounter_id in facts:
                result.duplicates += 1
                continue
            try:
                fact = build(
                    encounter,
                    diagnoses_by_encounter.get(encounter_id, []),
                    procedures_by_encounter.get(encounter_id, []),
                    billing_by_encounter.get(encounter_id, []),
                    lookup,
                )
            except (MissingNaturalKey, UnresolvedDimensionReference) as e:
                result.rejections.append(BuildRejection.from_error(table_name, e, encounter_id))
                continue

            current = existing.get(encounter_id)
            if current is None:
                new_facts.append(fact)
                facts[encounter_id] = fact
                continue

            fact = fact.model_copy(update={
                "encounter_key": current.encounter_key,
                **{field: getattr(current, field) for field in READMISSION_FIELDS},
            })
            facts[encounter_id] = fact
            if fact == current:
                result.unchanged += 1
            else:
                changed_facts.append(fact)

        if new_facts:
            self.allocator.sync(table_name, self.warehouse.max_key(table_name, FactEncounter.key_column))
        keys = self.allocator.allocate(table_name, len(new_facts))
        new_facts = [fact.model_copy(update={"encounter_key": key}) for fact, key in zip(new_facts, keys)]
        for fact in new_facts:
            facts[fact.encounter_id] = fact

        result.inserted = len(new_facts)
        result.updated = len(changed_facts)
        if new_facts or changed_facts:
            self.warehouse.upsert_facts(new_facts + changed_facts)

        if self.tracker is not None:
            for fact in new_facts:
                self.tracker.capture(table_name, "INSERT", fact.model_dump())
            for fact in changed_facts:
                self.tracker.capture(table_name, "UPDATE", fact.model_dump())

        record_table_writes(table_name, inserted=result.inserted, updated=result.updated)
        for rejection in result.rejections:
            record_rejection(table_name, rejection.reason)

        logger.info(
            f"Built {table_name}: {result.inserted} inserted, {result.updated} updated, "
            f"{result.unchanged} unchanged, {result.rejected} rejected",
            extra={"run_id": self.context.run_id, "table": table_name, **result.counts()},
        )
        return result, facts
