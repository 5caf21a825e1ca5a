"""
Unit tests for the dimension builder.
"""

from datetime import date, datetime

import pytest

from star_pipeline.batch.dimension_builder import DimensionBuilder, DimensionLookup
from star_pipeline.core.exceptions import UnresolvedDimensionReference
from star_pipeline.core.models import DepartmentSource, DimSpecialty, PatientSource, ProviderSource, SpecialtySource
from star_pipeline.observability.change_capture import ChangeCaptureTracker, InMemoryAuditSink
from star_pipeline.utils.validation import InputValidationError
from star_pipeline.warehouse.key_allocator import KeyAllocator


@pytest.fixture
def allocator():
    return KeyAllocator()


@pytest.fixture
def builder(warehouse, allocator, context):
    return DimensionBuilder(warehouse, allocator, context)


def build_reference_dimensions(builder, reader):
    builder.build_specialties(reader.read_specialties())
    builder.build_departments(reader.read_departments())


class TestCalendar:
    """Tests for dim_date materialization"""

    def test_one_row_per_day(self, builder, warehouse):
        result = builder.build_calendar(date(2024, 1, 1), date(2024, 1, 31))

        assert result.inserted == 31
        rows = warehouse.fetch_rows("dim_date")
        assert len(rows) == 31
        assert rows[0]["date_key"] == 20240101
        assert rows[0]["day_of_week"] == "Monday"

    def test_rebuild_is_unchanged(self, warehouse, allocator, context):
        DimensionBuilder(warehouse, allocator, context).build_calendar(date(2024, 1, 1), date(2024, 1, 10))
        result = DimensionBuilder(warehouse, allocator, context).build_calendar(date(2024, 1, 1), date(2024, 1, 10))

        assert (result.inserted, result.unchanged) == (0, 10)
        assert len(warehouse.fetch_rows("dim_date")) == 10

    def test_extending_the_range_adds_only_new_days(self, builder, warehouse):
        builder.build_calendar(date(2024, 1, 1), date(2024, 1, 10))
        result = builder.build_calendar(date(2024, 1, 5), date(2024, 1, 15))

        assert (result.inserted, result.unchanged) == (5, 6)
        assert len(warehouse.fetch_rows("dim_date")) == 15

    def test_lookup_resolves_datetimes(self, builder):
        builder.build_calendar(date(2024, 1, 1), date(2024, 1, 31))

        assert builder.lookup.date_key(datetime(2024, 1, 15, 9, 30)) == 20240115
        with pytest.raises(UnresolvedDimensionReference):
            builder.lookup.date_key(date(2024, 2, 1), "encounter 1")

    def test_inverted_range_rejected(self, builder):
        with pytest.raises(InputValidationError):
            builder.build_calendar(date(2024, 2, 1), date(2024, 1, 1))

    def test_holidays_and_fiscal_year(self, warehouse, allocator, context):
        builder = DimensionBuilder(warehouse, allocator, context, fiscal_year_start_month=7, holidays={(7, 4)})
        builder.build_calendar(date(2024, 7, 1), date(2024, 7, 5))

        july_4 = builder.lookup.get("dim_date", date(2024, 7, 4))
        assert july_4.holiday_flag is True
        assert july_4.fiscal_year == 2025


class TestReferenceDimensions:
    """Tests for specialty, department, diagnosis and procedure dimensions"""

    def test_keys_allocated_in_source_order(self, builder, source_reader):
        result = builder.build_specialties(source_reader.read_specialties())

        assert result.inserted == 2
        assert builder.lookup.key("dim_specialty", 1) == 1
        assert builder.lookup.key("dim_specialty", 2) == 2
        assert builder.lookup.get("dim_specialty", 2).specialty_category == "Surgical"

    def test_duplicate_natural_key_keeps_first(self, builder, warehouse):
        sources = [
            SpecialtySource(specialty_id=1, specialty_name="Cardiology", specialty_code="CARD"),
            SpecialtySource(specialty_id=1, specialty_name="Cardiology (dup)", specialty_code="CRD"),
        ]
        result = builder.build_specialties(sources)

        assert (result.inserted, result.duplicates) == (1, 1)
        rows = warehouse.fetch_rows("dim_specialty")
        assert len(rows) == 1
        assert rows[0]["specialty_name"] == "Cardiology"

    def test_rejected_record_does_not_shadow_later_duplicate(self, builder, warehouse):
        """Only accepted records claim a natural key"""
        sources = [
            SpecialtySource(specialty_id=1, specialty_name=None),
            SpecialtySource(specialty_id=1, specialty_name="Cardiology"),
        ]
        result = builder.build_specialties(sources)

        assert (result.inserted, result.duplicates, result.rejected) == (1, 0, 1)
        rows = warehouse.fetch_rows("dim_specialty")
        assert [row["specialty_name"] for row in rows] == ["Cardiology"]

    def test_missing_natural_key_rejected(self, builder, warehouse):
        sources = [
            SpecialtySource(specialty_id=None, specialty_name="Ghost"),
            SpecialtySource(specialty_id=3, specialty_name=None),
            SpecialtySource(specialty_id=4, specialty_name="Neurology"),
        ]
        result = builder.build_specialties(sources)

        assert result.inserted == 1
        assert [r.reason for r in result.rejections] == ["MissingNaturalKey", "MissingNaturalKey"]
        assert result.processed == 3
        assert [row["specialty_id"] for row in warehouse.fetch_rows("dim_specialty")] == [4]

    def test_rebuild_keeps_keys(self, warehouse, allocator, context, source_reader):
        DimensionBuilder(warehouse, allocator, context).build_specialties(source_reader.read_specialties())
        second = DimensionBuilder(warehouse, allocator, context)
        sources = source_reader.read_specialties() + [SpecialtySource(specialty_id=3, specialty_name="Radiology")]
        result = second.build_specialties(sources)

        assert (result.inserted, result.unchanged) == (1, 2)
        assert second.lookup.key("dim_specialty", 1) == 1
        assert second.lookup.key("dim_specialty", 3) == 3

    def test_changed_source_ignored_without_refresh(self, warehouse, allocator, context, source_reader):
        DimensionBuilder(warehouse, allocator, context).build_specialties(source_reader.read_specialties())
        renamed = [SpecialtySource(specialty_id=2, specialty_name="Trauma Surgery", specialty_code="ORTH")]
        result = DimensionBuilder(warehouse, allocator, context).build_specialties(renamed)

        assert (result.updated, result.unchanged) == (0, 1)
        row = next(r for r in warehouse.fetch_rows("dim_specialty") if r["specialty_id"] == 2)
        assert row["specialty_name"] == "Orthopedic Surgery"

    def test_refresh_overwrites_in_place(self, warehouse, allocator, context, source_reader):
        DimensionBuilder(warehouse, allocator, context).build_specialties(source_reader.read_specialties())
        renamed = [SpecialtySource(specialty_id=2, specialty_name="Trauma Surgery", specialty_code="ORTH")]
        result = DimensionBuilder(warehouse, allocator, context, refresh=True).build_specialties(renamed)

        assert (result.inserted, result.updated) == (0, 1)
        rows = warehouse.fetch_rows("dim_specialty")
        assert len(rows) == 2
        row = next(r for r in rows if r["specialty_id"] == 2)
        assert row["specialty_name"] == "Trauma Surgery"
        assert row["specialty_key"] == 2

    def test_new_keys_above_existing_rows(self, warehouse, context):
        """A fresh counter store never reuses keys already in the warehouse"""
        warehouse.insert_rows("dim_specialty", [
            DimSpecialty(specialty_key=10, specialty_id=50, specialty_name="Neurology").model_dump()
        ])
        builder = DimensionBuilder(warehouse, KeyAllocator(), context)
        builder.build_specialties([SpecialtySource(specialty_id=1, specialty_name="Cardiology")])

        assert builder.lookup.key("dim_specialty", 1) == 11
        assert builder.lookup.key("dim_specialty", 50) == 10

    def test_department_attributes(self, builder, source_reader):
        builder.build_departments(source_reader.read_departments())
        department = builder.lookup.get("dim_department", 2)

        assert department.cost_center_code == "CC-002"
        assert department.department_type == "Emergency"
        assert department.capacity == 30

    def test_diagnosis_classification(self, builder, source_reader):
        builder.build_diagnoses(source_reader.read_diagnoses())
        hypertension = builder.lookup.get("dim_diagnosis", 1)

        assert hypertension.diagnosis_category == "Cardiovascular"
        assert hypertension.severity_level == "Medium"
        assert hypertension.chronic_flag is True

    def test_procedure_classification(self, builder, source_reader):
        builder.build_procedures(source_reader.read_procedures())

        assert builder.lookup.get("dim_procedure", 3).procedure_type == "Imaging"


class TestPatients:
    """Tests for dim_patient"""

    def test_derived_demographics(self, builder, source_reader):
        first_encounters = {1001: datetime(2024, 5, 1, 9, 0)}
        result = builder.build_patients(source_reader.read_patients(), first_encounters)

        assert result.inserted == 3
        john = builder.lookup.get("dim_patient", 1001)
        assert john.full_name == "John Doe"
        assert john.current_age == 69
        assert john.age_at_first_encounter == 69
        assert john.age_group == "60+"

        jane = builder.lookup.get("dim_patient", 1002)
        assert jane.age_group == "19-35"
        assert jane.age_at_first_encounter is None

        sam = builder.lookup.get("dim_patient", 1003)
        assert sam.age_group == "0-18"

    def test_changes_captured_for_audit(self, warehouse, allocator, context, source_reader):
        sink = InMemoryAuditSink()
        tracker = ChangeCaptureTracker(sink, run_id=context.run_id)
        builder = DimensionBuilder(warehouse, allocator, context, tracker=tracker)

        builder.build_patients(source_reader.read_patients())
        tracker.flush()

        assert len(sink.entries) == 3
        entry = sink.entries[0]
        assert entry.event_type_code == "PATIENT_INSERT"
        assert entry.table_name == "dim_patient"
        assert entry.patient_id == 1001
        assert entry.captured_fields["mrn"] == "MRN001"
        assert entry.run_id == context.run_id

    def test_unaudited_dimension_not_captured(self, warehouse, allocator, context, source_reader):
        sink = InMemoryAuditSink()
        tracker = ChangeCaptureTracker(sink, run_id=context.run_id)
        DimensionBuilder(warehouse, allocator, context, tracker=tracker).build_specialties(
            source_reader.read_specialties()
        )

        assert tracker.pending == 0


class TestProviders:
    """Tests for dim_provider"""

    def test_denormalized_specialty_and_department(self, builder, source_reader):
        build_reference_dimensions(builder, source_reader)
        builder.build_providers(source_reader.read_providers())
        bob = builder.lookup.get("dim_provider", 102)

        assert bob.full_name == "Bob Jones"
        assert bob.specialty_key == builder.lookup.key("dim_specialty", 2)
        assert bob.specialty_name == "Orthopedic Surgery"
        assert bob.department_name == "Emergency Department"

    def test_unresolved_specialty_rejected(self, builder, source_reader):
        build_reference_dimensions(builder, source_reader)
        sources = [
            ProviderSource(provider_id=103, first_name="Cy", last_name="Lee", specialty_id=99, department_id=1),
            ProviderSource(provider_id=104, first_name="Di", last_name="Ng", specialty_id=1, department_id=1),
        ]
        result = builder.build_providers(sources)

        assert result.inserted == 1
        rejection = result.rejections[0]
        assert rejection.reason == "UnresolvedDimensionReference"
        assert rejection.dimension == "dim_specialty"
        assert rejection.referenced_key == 99
        assert rejection.natural_key == 103
        assert builder.lookup.get("dim_provider", 103) is None


class TestEncounterTypes:
    """Tests for dim_encounter_type"""

    def test_fixed_types_then_extras(self, builder):
        result = builder.build_encounter_types(["ER", "Telehealth", None, "Outpatient", "Telehealth"])

        assert (result.inserted, result.duplicates) == (4, 0)
        assert builder.lookup.key("dim_encounter_type", "Outpatient") == 1
        assert builder.lookup.key("dim_encounter_type", "Telehealth") == 4
        telehealth = builder.lookup.get("dim_encounter_type", "Telehealth")
        assert telehealth.requires_admission is False
        assert telehealth.type_description is None
        assert builder.lookup.get("dim_encounter_type", "Inpatient").requires_admission is True


class TestDimensionLookup:
    """Tests for DimensionLookup"""

    def test_resolve_missing_names_referrer(self):
        lookup = DimensionLookup()
        lookup.load("dim_patient", {})

        with pytest.raises(UnresolvedDimensionReference) as exc_info:
            lookup.resolve("dim_patient", 42, "encounter 7001")

        assert exc_info.value.dimension == "dim_patient"
        assert exc_info.value.natural_key == 42
        assert "encounter 7001" in str(exc_info.value)

    def test_records_returns_copy(self, builder, source_reader):
        builder.build_departments(source_reader.read_departments())
        records = builder.lookup.records("dim_department")
        records.clear()

        assert len(builder.lookup.records("dim_department")) == 2
        assert builder.lookup.records("dim_unknown") == {}


def test_patient_source_accepts_missing_fields():
    """Source records without natural keys still parse"""
    assert PatientSource().patient_id is None
    assert DepartmentSource(department_id=1).department_name is None
