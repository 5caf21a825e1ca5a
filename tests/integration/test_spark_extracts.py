"""
Integration tests for reading operational extracts with Spark.
"""

from datetime import date, datetime

import pytest

from star_pipeline.batch.readers.spark_reader import SparkExtractReader

PATIENTS_CSV = """patient_id,first_name,last_name,date_of_birth,gender,mrn
1001,John,Doe,1955-03-15,M,MRN001
1002,Jane,Roe,1990-07-20,F,MRN002
"""

ENCOUNTERS_CSV = """encounter_id,patient_id,provider_id,encounter_type,encounter_date,discharge_date,department_id
7002,1001,101,Inpatient,2024-06-02T14:00:00,2024-06-06T09:00:00,1
7005,1003,101,ER,2024-08-15T22:00:00,,2
"""


@pytest.fixture
def extract_dir(tmp_path):
    (tmp_path / "patients.csv").write_text(PATIENTS_CSV)
    (tmp_path / "encounters.csv").write_text(ENCOUNTERS_CSV)
    return tmp_path


@pytest.mark.integration
class TestSparkExtractReader:
    """Tests for SparkExtractReader over CSV extracts"""

    def test_reads_typed_patients(self, spark_session, extract_dir):
        patients = SparkExtractReader(spark_session, str(extract_dir)).read_patients()

        assert [p.patient_id for p in patients] == [1001, 1002]
        assert patients[0].date_of_birth == date(1955, 3, 15)
        assert patients[1].mrn == "MRN002"

    def test_reads_encounter_timestamps(self, spark_session, extract_dir):
        encounters = SparkExtractReader(spark_session, str(extract_dir)).read_encounters()
        by_id = {e.encounter_id: e for e in encounters}

        assert by_id[7002].encounter_date == datetime(2024, 6, 2, 14, 0)
        assert by_id[7002].discharge_date == datetime(2024, 6, 6, 9, 0)
        assert by_id[7005].discharge_date is None

    def test_missing_extract_reads_empty(self, spark_session, extract_dir):
        assert SparkExtractReader(spark_session, str(extract_dir)).read_billing() == []

    def test_unsupported_format(self, spark_session, extract_dir):
        with pytest.raises(ValueError, match="Unsupported file format"):
            SparkExtractReader(spark_session, str(extract_dir), file_format="xml")
