"""
Unit tests for readmission analytics.
"""

from datetime import datetime, timedelta

import pytest
from hypothesis import given, settings, strategies as st

from star_pipeline.batch.fact_builder import FactBuilder
from star_pipeline.batch.readmission import (
    EncounterTiming,
    ReadmissionEngine,
    pairwise_readmissions,
    windowed_readmissions,
)
from star_pipeline.core.models import FactEncounter

WINDOW = timedelta(days=30)
BASE = datetime(2024, 1, 1)


def timing(key, admitted, discharged=None, patient_key=1):
    return EncounterTiming(key, patient_key, admitted, discharged)


@pytest.fixture
def built_facts(warehouse, key_allocator, context, dimensions, source_reader):
    FactBuilder(warehouse, key_allocator, context).build_batch(
        source_reader.read_encounters(),
        source_reader.read_encounter_diagnoses(),
        source_reader.read_encounter_procedures(),
        source_reader.read_billing(),
        dimensions.lookup,
    )
    return warehouse


@pytest.mark.parametrize("scan", [pairwise_readmissions, windowed_readmissions])
class TestReadmissionScan:
    """Behaviour shared by both scan implementations"""

    def test_readmission_within_window(self, scan):
        encounters = [
            timing(1, datetime(2024, 6, 2, 14), datetime(2024, 6, 6, 9)),
            timing(2, datetime(2024, 6, 20, 8), datetime(2024, 6, 20, 14)),
        ]
        result = scan(encounters, WINDOW)

        assert result[1].has_30day_readmission is True
        assert result[1].days_to_readmission == 13
        assert result[1].readmission_count_30days == 1
        assert result[1].is_readmission is False
        assert result[2].is_readmission is True
        assert result[2].has_30day_readmission is False
        assert result[2].days_to_readmission is None

    def test_gap_of_exactly_window_counts(self, scan):
        discharged = datetime(2024, 3, 1, 12)
        encounters = [
            timing(1, datetime(2024, 2, 28), discharged),
            timing(2, discharged + WINDOW),
        ]

        assert scan(encounters, WINDOW)[1].days_to_readmission == 30

    def test_gap_beyond_window_does_not_count(self, scan):
        discharged = datetime(2024, 3, 1, 12)
        encounters = [
            timing(1, datetime(2024, 2, 28), discharged),
            timing(2, discharged + WINDOW + timedelta(minutes=1)),
        ]
        result = scan(encounters, WINDOW)

        assert result[1].has_30day_readmission is False
        assert result[2].is_readmission is False

    def test_same_instant_transfer_is_not_a_readmission(self, scan):
        discharged = datetime(2024, 3, 1, 12)
        encounters = [
            timing(1, datetime(2024, 2, 28), discharged),
            timing(2, discharged, discharged + timedelta(hours=5)),
        ]
        result = scan(encounters, WINDOW)

        assert result[1].readmission_count_30days == 0
        assert result[2].is_readmission is False

    def test_open_encounter_only_readmits(self, scan):
        encounters = [
            timing(1, datetime(2024, 3, 1), datetime(2024, 3, 2)),
            timing(2, datetime(2024, 3, 10)),
        ]
        result = scan(encounters, WINDOW)

        assert result[2].has_30day_readmission is False
        assert result[2].is_readmission is True

    def test_counts_every_readmission_and_earliest_gap(self, scan):
        encounters = [
            timing(1, datetime(2024, 3, 1), datetime(2024, 3, 2)),
            timing(3, datetime(2024, 3, 20), datetime(2024, 3, 21)),
            timing(2, datetime(2024, 3, 5), datetime(2024, 3, 6)),
        ]
        result = scan(encounters, WINDOW)

        assert result[1].readmission_count_30days == 2
        assert result[1].days_to_readmission == 3
        assert result[2].readmission_count_30days == 1
        assert result[3].is_readmission is True

    def test_single_encounter(self, scan):
        result = scan([timing(1, datetime(2024, 3, 1), datetime(2024, 3, 2))], WINDOW)

        assert result[1].has_30day_readmission is False
        assert result[1].is_readmission is False


encounter_histories = st.lists(
    st.tuples(
        st.integers(min_value=0, max_value=24 * 120),
        st.one_of(st.none(), st.integers(min_value=0, max_value=24 * 20)),
    ),
    max_size=25,
)


class TestScansAgree:
    """The sliding window returns exactly what the pairwise scan returns"""

    @settings(max_examples=200, deadline=None)
    @given(history=encounter_histories, window_days=st.integers(min_value=1, max_value=40))
    def test_windowed_matches_pairwise(self, history, window_days):
        encounters = []
        for key, (admit_hours, stay_hours) in enumerate(history, start=1):
            admitted = BASE + timedelta(hours=admit_hours)
            discharged = admitted + timedelta(hours=stay_hours) if stay_hours is not None else None
            encounters.append(timing(key, admitted, discharged))
        window = timedelta(days=window_days)

        assert windowed_readmissions(encounters, window) == pairwise_readmissions(encounters, window)


class TestReadmissionEngine:
    """Tests for ReadmissionEngine"""

    def test_rejects_non_positive_window(self, warehouse, context):
        with pytest.raises(ValueError, match="window_days"):
            ReadmissionEngine(warehouse, context, window_days=0)

    def test_run_annotates_fact_rows(self, built_facts, context):
        annotations = ReadmissionEngine(built_facts, context).run()

        assert [a.encounter_key for a in annotations] == [1, 2, 3, 4, 5]
        facts = built_facts.load_facts()
        assert facts[7002].has_30day_readmission is True
        assert facts[7002].days_to_readmission == 13
        assert facts[7002].readmission_count_30days == 1
        assert facts[7003].is_readmission is True
        assert facts[7001].has_30day_readmission is False
        assert facts[7004].is_readmission is False
        assert facts[7005].has_30day_readmission is False

    def test_patients_are_independent(self, warehouse, context):
        """Encounters of different patients never pair up"""
        engine = ReadmissionEngine(warehouse, context)
        facts = [
            fact.model_copy(update={"patient_key": patient_key})
            for fact, patient_key in zip(_two_close_facts(), (1, 2))
        ]

        annotations = engine.annotate(facts)

        assert not any(a.has_30day_readmission or a.is_readmission for a in annotations)

    def test_threshold_selects_windowed_scan(self, built_facts, context):
        pairwise = ReadmissionEngine(built_facts, context, pairwise_threshold=100)
        windowed = ReadmissionEngine(built_facts, context, pairwise_threshold=0)
        facts = list(built_facts.load_facts().values())

        assert pairwise.annotate(facts) == windowed.annotate(facts)

    def test_wider_window(self, built_facts, context):
        """7001 is discharged 32 days before 7002 is admitted"""
        ReadmissionEngine(built_facts, context, window_days=60).run()
        facts = built_facts.load_facts()

        assert facts[7001].has_30day_readmission is True
        assert facts[7001].readmission_count_30days == 2
        assert facts[7002].is_readmission is True


def _two_close_facts():
    common = dict(
        patient_key=1, provider_key=1, encounter_date_key=20240301, encounter_type_key=1,
        specialty_key=1, department_key=1,
    )
    return [
        FactEncounter(encounter_key=1, encounter_id=1, encounter_datetime=datetime(2024, 3, 1),
                      discharge_datetime=datetime(2024, 3, 2), **common),
        FactEncounter(encounter_key=2, encounter_id=2, encounter_datetime=datetime(2024, 3, 5),
                      discharge_datetime=datetime(2024, 3, 6), **common),
    ]
