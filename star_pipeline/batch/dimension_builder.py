"""
Dimension builder: source records to conformed dimension rows.

One build operation per dimension. Each operation:
- rejects records without a natural key (MissingNaturalKey, reported)
- keeps the first record of a natural key seen twice in one batch
- keeps the surrogate key of a natural key already in the warehouse and
  allocates keys only for unseen natural keys
- leaves existing rows untouched unless refresh is enabled, in which case
  descriptive fields are overwritten in place
"""

from datetime import date, datetime, timedelta
from typing import Any, Callable, Iterable

from pydantic import BaseModel

from star_pipeline.core import derivations
from star_pipeline.core.exceptions import MissingNaturalKey, UnresolvedDimensionReference
from star_pipeline.core.models import (
    BuildRejection,
    BuildResult,
    DepartmentSource,
    DiagnosisSource,
    DimDate,
    DimDepartment,
    DimDiagnosis,
    DimEncounterType,
    DimensionRecord,
    DimPatient,
    DimProcedure,
    DimProvider,
    DimSpecialty,
    ExecutionContext,
    PatientSource,
    ProcedureSource,
    ProviderSource,
    SpecialtySource,
)
from star_pipeline.observability.change_capture import ChangeCaptureTracker
from star_pipeline.observability.logger import get_logger
from star_pipeline.observability.metrics import record_rejection, record_table_writes
from star_pipeline.utils.validation import validate_date_range
from star_pipeline.warehouse.key_allocator import KeyAllocator
from star_pipeline.warehouse.repository import WarehouseRepository

logger = get_logger(__name__)

PLACEHOLDER_KEY = 0


class EncounterTypeName(BaseModel):
    """Encounter type value seen in the source."""

    encounter_type: str


class DimensionLookup:
    """
    Natural key -> dimension row, per dimension table.

    Filled by the dimension builder and read by the fact and bridge builders.
    """

    def __init__(self):
        self._tables: dict[str, dict[Any, DimensionRecord]] = {}

    def load(self, table_name: str, records: dict[Any, DimensionRecord]) -> None:
        self._tables[table_name] = dict(records)

    def get(self, table_name: str, natural_key: Any) -> DimensionRecord | None:
        return self._tables.get(table_name, {}).get(natural_key)

    def resolve(self, table_name: str, natural_key: Any, referenced_by: str | None = None) -> DimensionRecord:
        """
        Raises:
            UnresolvedDimensionReference: If the natural key has no row
        """
        record = self.get(table_name, natural_key)
        if record is None:
            raise UnresolvedDimensionReference(table_name, natural_key, referenced_by)
        return record

    def key(self, table_name: str, natural_key: Any, referenced_by: str | None = None) -> int:
        return self.resolve(table_name, natural_key, referenced_by).surrogate_key

    def date_key(self, day: date | datetime, referenced_by: str | None = None) -> int:
        """Calendar key of a day that must exist in dim_date."""
        calendar_day = day.date() if isinstance(day, datetime) else day
        return self.key(DimDate.table_name, calendar_day, referenced_by)

    def records(self, table_name: str) -> dict[Any, DimensionRecord]:
        return dict(self._tables.get(table_name, {}))


class DimensionBuilder:
    """
    Builds all dimensions for one run.

    Usage:
        builder = DimensionBuilder(warehouse, allocator, context)
        builder.build_calendar(date(2024, 1, 1), date(2024, 12, 31))
        builder.build_specialties(reader.read_specialties())
        ...
        lookup = builder.lookup
    """

    def __init__(
        self,
        warehouse: WarehouseRepository,
        allocator: KeyAllocator,
        context: ExecutionContext,
        refresh: bool = False,
        fiscal_year_start_month: int = 1,
        holidays: set[tuple[int, int]] | None = None,
        tracker: ChangeCaptureTracker | None = None,
    ):
        """
        Args:
            warehouse: Target warehouse
            allocator: Surrogate key allocator
            context: Run context (reference date for ages)
            refresh: Overwrite descriptive fields of existing rows
            fiscal_year_start_month: First month of the fiscal year
            holidays: Fixed-date holidays as (month, day)
            tracker: Optional change capture for audited dimensions
        """
        self.warehouse = warehouse
        self.allocator = allocator
        self.context = context
        self.refresh = refresh
        self.fiscal_year_start_month = fiscal_year_start_month
        self.holidays = holidays or set()
        self.tracker = tracker
        self.lookup = DimensionLookup()

    # =======================
    # CALENDAR
    # =======================

    def build_calendar(self, start: date, end: date) -> BuildResult:
        """
        Materialize one dim_date row per day of [start, end].

        Keys are derived from the date (YYYYMMDD); no allocator is used.
        """
        validate_date_range(start, end)
        existing = self.warehouse.load_dimension(DimDate.table_name)
        result = BuildResult(table_name=DimDate.table_name)
        to_write: list[DimensionRecord] = []

        day = start
        while day <= end:
            record = DimDate(**derivations.calendar_attributes(day, self.fiscal_year_start_month, self.holidays))
            current = existing.get(day)
            if current is None:
                result.inserted += 1
                to_write.append(record)
                existing[day] = record
            elif self.refresh and current.descriptive_fields() != record.descriptive_fields():
                result.updated += 1
                to_write.append(record)
                existing[day] = record
            else:
                result.unchanged += 1
            day += timedelta(days=1)

        self._write(DimDate.table_name, to_write, result, existing)
        return result

    # =======================
    # REFERENCE DIMENSIONS
    # =======================

    def build_specialties(self, sources: Iterable[SpecialtySource]) -> BuildResult:
        def make(source: SpecialtySource) -> DimSpecialty:
            if not source.specialty_name:
                raise MissingNaturalKey("specialties", "specialty_name", source.model_dump())
            return DimSpecialty(
                specialty_key=PLACEHOLDER_KEY,
                specialty_id=source.specialty_id,
                specialty_name=source.specialty_name,
                specialty_code=source.specialty_code,
                **derivations.SPECIALTY_CLASSIFIER.classify(source.specialty_name),
            )

        return self._build(DimSpecialty, "specialties", sources, "specialty_id", make)

    def build_departments(self, sources: Iterable[DepartmentSource]) -> BuildResult:
        def make(source: DepartmentSource) -> DimDepartment:
            if not source.department_name:
                raise MissingNaturalKey("departments", "department_name", source.model_dump())
            return DimDepartment(
                department_key=PLACEHOLDER_KEY,
                department_id=source.department_id,
                department_name=source.department_name,
                floor=source.floor,
                capacity=source.capacity,
                cost_center_code=f"CC-{source.department_id:03d}",
                **derivations.DEPARTMENT_CLASSIFIER.classify(source.department_name),
            )

        return self._build(DimDepartment, "departments", sources, "department_id", make)

    def build_patients(
        self,
        sources: Iterable[PatientSource],
        first_encounters: dict[int, datetime] | None = None,
    ) -> BuildResult:
        """
        Build dim_patient.

        Args:
            sources: Patient records
            first_encounters: patient_id -> earliest admission, for
                age_at_first_encounter
        """
        first_encounters = first_encounters or {}
        reference_date = self.context.reference_date

        def make(source: PatientSource) -> DimPatient:
            first_seen = first_encounters.get(source.patient_id)
            return DimPatient(
                patient_key=PLACEHOLDER_KEY,
                patient_id=source.patient_id,
                first_name=source.first_name,
                last_name=source.last_name,
                full_name=derivations.full_name(source.first_name, source.last_name),
                gender=source.gender,
                date_of_birth=source.date_of_birth,
                age_at_first_encounter=(
                    derivations.age_on(source.date_of_birth, first_seen.date()) if first_seen else None
                ),
                current_age=derivations.age_on(source.date_of_birth, reference_date),
                age_group=derivations.age_group(source.date_of_birth, reference_date),
                mrn=source.mrn,
            )

        return self._build(DimPatient, "patients", sources, "patient_id", make, audited=True)

    def build_providers(self, sources: Iterable[ProviderSource]) -> BuildResult:
        """
        Build dim_provider, denormalizing specialty and department.

        Requires build_specialties and build_departments to have run.
        """

        def make(source: ProviderSource) -> DimProvider:
            referenced_by = f"provider {source.provider_id}"
            specialty = self.lookup.resolve(DimSpecialty.table_name, source.specialty_id, referenced_by)
            department = self.lookup.resolve(DimDepartment.table_name, source.department_id, referenced_by)
            return DimProvider(
                provider_key=PLACEHOLDER_KEY,
                provider_id=source.provider_id,
                first_name=source.first_name,
                last_name=source.last_name,
                full_name=derivations.full_name(source.first_name, source.last_name),
                credential=source.credential,
                provider_type=source.provider_type,
                specialty_key=specialty.surrogate_key,
                department_key=department.surrogate_key,
                specialty_name=specialty.specialty_name,
                department_name=department.department_name,
            )

        return self._build(DimProvider, "providers", sources, "provider_id", make)

    def build_diagnoses(self, sources: Iterable[DiagnosisSource]) -> BuildResult:
        def make(source: DiagnosisSource) -> DimDiagnosis:
            if not source.icd10_code:
                raise MissingNaturalKey("diagnoses", "icd10_code", source.model_dump())
            return DimDiagnosis(
                diagnosis_key=PLACEHOLDER_KEY,
                diagnosis_id=source.diagnosis_id,
                icd10_code=source.icd10_code,
                icd10_description=source.icd10_description,
                **derivations.DIAGNOSIS_CLASSIFIER.classify(source.icd10_code),
                **derivations.DIAGNOSIS_SEVERITY_CLASSIFIER.classify(source.icd10_code),
            )

        return self._build(DimDiagnosis, "diagnoses", sources, "diagnosis_id", make, audited=True)

    def build_procedures(self, sources: Iterable[ProcedureSource]) -> BuildResult:
        def make(source: ProcedureSource) -> DimProcedure:
            if not source.cpt_code:
                raise MissingNaturalKey("procedures", "cpt_code", source.model_dump())
            return DimProcedure(
                procedure_key=PLACEHOLDER_KEY,
                procedure_id=source.procedure_id,
                cpt_code=source.cpt_code,
                cpt_description=source.cpt_description,
                **derivations.PROCEDURE_CLASSIFIER.classify(source.cpt_code),
            )

        return self._build(DimProcedure, "procedures", sources, "procedure_id", make)

    def build_encounter_types(self, encounter_types: Iterable[str | None] = ()) -> BuildResult:
        """
        Build dim_encounter_type from the fixed type table plus any other
        type names seen in encounters.

        Encounters without a type are reported by the fact builder, so
        None values are ignored here.
        """

        names = list(derivations.ENCOUNTER_TYPE_ATTRIBUTES)
        for name in encounter_types:
            if name and name not in names:
                names.append(name)

        def make(source: EncounterTypeName) -> DimEncounterType:
            attributes = derivations.encounter_type_attributes(source.encounter_type)
            return DimEncounterType(
                encounter_type_key=PLACEHOLDER_KEY,
                encounter_type=source.encounter_type,
                **attributes._asdict(),
            )

        sources = [EncounterTypeName(encounter_type=name) for name in names]
        return self._build(DimEncounterType, "encounter_types", sources, "encounter_type", make)

    # =======================
    # SHARED BUILD LOGIC
    # =======================

    def _build(
        self,
        model: type[DimensionRecord],
        entity: str,
        sources: Iterable[BaseModel],
        natural_key_field: str,
        make: Callable[[Any], DimensionRecord],
        audited: bool = False,
    ) -> BuildResult:
        table_name = model.table_name
        existing = self.warehouse.load_dimension(table_name)
        result = BuildResult(table_name=table_name)
        seen: set[Any] = set()
        new_records: list[DimensionRecord] = []
        updated_records: list[DimensionRecord] = []

        for source in sources:
            natural_key = getattr(source, natural_key_field)
            try:
                if natural_key is None:
                    raise MissingNaturalKey(entity, natural_key_field, source.model_dump())
                if natural_key in seen:
                    result.duplicates += 1
                    continue
                candidate = make(source)
            except (MissingNaturalKey, UnresolvedDimensionReference) as e:
                result.rejections.append(BuildRejection.from_error(table_name, e, natural_key))
                continue

            seen.add(natural_key)
            current = existing.get(natural_key)
            if current is None:
                new_records.append(candidate)
            elif self.refresh and current.descriptive_fields() != candidate.with_surrogate_key(
                current.surrogate_key
            ).descriptive_fields():
                updated_records.append(candidate.with_surrogate_key(current.surrogate_key))
            else:
                result.unchanged += 1

        if new_records:
            self.allocator.sync(table_name, self.warehouse.max_key(table_name, model.key_column))
        keys = self.allocator.allocate(table_name, len(new_records))
        new_records = [record.with_surrogate_key(key) for record, key in zip(new_records, keys)]
        result.inserted = len(new_records)
        result.updated = len(updated_records)

        for record in new_records + updated_records:
            existing[record.natural_key] = record

        self._write(table_name, new_records + updated_records, result, existing)

        if audited and self.tracker is not None:
            for record in new_records:
                self.tracker.capture(table_name, "INSERT", record.model_dump())
            for record in updated_records:
                self.tracker.capture(table_name, "UPDATE", record.model_dump())

        return result

    def _write(
        self,
        table_name: str,
        records: list[DimensionRecord],
        result: BuildResult,
        current: dict[Any, DimensionRecord],
    ) -> None:
        if records:
            self.warehouse.upsert_dimension(table_name, records)
        self.lookup.load(table_name, current)

        record_table_writes(table_name, inserted=result.inserted, updated=result.updated)
        for rejection in result.rejections:
            record_rejection(table_name, rejection.reason)

        logger.info(
            f"Built {table_name}: {result.inserted} inserted, {result.updated} updated, "
            f"{result.unchanged} unchanged, {result.duplicates} duplicates, {result.rejected} rejected",
            extra={"run_id": self.context.run_id, "table": table_name, **result.counts()},
        )
