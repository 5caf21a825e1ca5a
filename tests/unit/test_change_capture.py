"""
Unit tests for change capture.
"""

from datetime import date
from decimal import Decimal
from typing import NamedTuple

import pytest

from star_pipeline.observability.change_capture import (
    ChangeCaptureTracker,
    ChangeExtractor,
    ExtractorRegistry,
    InMemoryAuditSink,
    default_registry,
)


class _ProviderFields(NamedTuple):
    provider_id: int


PATIENT_ROW = {
    "patient_key": 1,
    "patient_id": 1001,
    "mrn": "MRN001",
    "first_name": "John",
    "last_name": "Doe",
    "date_of_birth": date(1955, 3, 15),
    "gender": "M",
    "age_group": "60+",
}


class TestChangeCaptureTracker:
    """Tests for ChangeCaptureTracker"""

    def test_patient_update_entry(self):
        sink = InMemoryAuditSink()
        tracker = ChangeCaptureTracker(sink, run_id="run-1")

        entry = tracker.capture("dim_patient", "update", PATIENT_ROW)

        assert entry.event_type_code == "PATIENT_UPDATE"
        assert entry.operation_type == "UPDATE"
        assert entry.record_id == "1001"
        assert entry.patient_id == 1001
        assert entry.run_id == "run-1"
        assert entry.captured_fields["mrn"] == "MRN001"
        assert "age_group" not in entry.captured_fields
        assert tracker.pending == 1
        assert sink.entries == []

    def test_encounter_entry_has_no_patient(self):
        tracker = ChangeCaptureTracker(InMemoryAuditSink())

        entry = tracker.capture("fact_encounters", "INSERT", {
            "encounter_key": 4, "encounter_id": 7004, "patient_key": 2, "total_claim_amount": Decimal("95.00"),
        })

        assert entry.event_type_code == "ENCOUNTER_INSERT"
        assert entry.record_id == "7004"
        assert entry.patient_id is None
        assert entry.captured_fields["total_allowed_amount"] is None

    def test_unregistered_table_is_ignored(self):
        tracker = ChangeCaptureTracker(InMemoryAuditSink())

        assert tracker.capture("dim_procedure", "INSERT", {"procedure_id": 1}) is None
        assert tracker.pending == 0

    def test_unknown_operation(self):
        tracker = ChangeCaptureTracker(InMemoryAuditSink())

        with pytest.raises(ValueError, match="Unsupported operation"):
            tracker.capture("dim_patient", "MERGE", PATIENT_ROW)

    def test_auto_flush_at_batch_size(self):
        sink = InMemoryAuditSink()
        tracker = ChangeCaptureTracker(sink, batch_size=2)

        tracker.capture("dim_patient", "INSERT", PATIENT_ROW)
        tracker.capture("dim_patient", "INSERT", {**PATIENT_ROW, "patient_id": 1002})
        tracker.capture("dim_patient", "INSERT", {**PATIENT_ROW, "patient_id": 1003})

        assert len(sink.entries) == 2
        assert tracker.pending == 1

    def test_context_manager_flushes(self):
        sink = InMemoryAuditSink()
        with ChangeCaptureTracker(sink) as tracker:
            tracker.capture("dim_patient", "DELETE", PATIENT_ROW)

        assert [e.event_type_code for e in sink.entries] == ["PATIENT_DELETE"]

    def test_context_manager_discards_on_error(self):
        sink = InMemoryAuditSink()

        with pytest.raises(RuntimeError):
            with ChangeCaptureTracker(sink) as tracker:
                tracker.capture("dim_patient", "INSERT", PATIENT_ROW)
                raise RuntimeError("build failed")

        assert sink.entries == []
        assert tracker.pending == 0

    def test_flush_without_entries(self):
        assert ChangeCaptureTracker(InMemoryAuditSink()).flush() == 0


class TestExtractorRegistry:

    def test_default_registry_tables(self):
        registry = default_registry()

        for table_name in ("dim_patient", "dim_diagnosis", "fact_encounters"):
            assert table_name in registry
        assert "dim_provider" not in registry
        assert "patients" not in registry

    def test_custom_extractor(self):
        registry = ExtractorRegistry().register(
            "dim_provider",
            ChangeExtractor("PROVIDER", "provider_id", lambda row: _ProviderFields(row["provider_id"])),
        )
        tracker = ChangeCaptureTracker(InMemoryAuditSink(), registry=registry)

        entry = tracker.capture("dim_provider", "INSERT", {"provider_id": 101})

        assert entry.event_type_code == "PROVIDER_INSERT"
        assert entry.captured_fields == {"provider_id": 101}
        assert tracker.capture("dim_patient", "INSERT", PATIENT_ROW) is None
