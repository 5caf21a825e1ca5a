"""
Unit tests for attribute derivations.

Includes property-based testing with hypothesis for age brackets.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal

from hypothesis import given
from hypothesis import strategies as st

from star_pipeline.core import derivations
from star_pipeline.core.derivations import (
    AGE_BRACKETS,
    age_group,
    age_on,
    calendar_attributes,
    date_key,
    encounter_type_attributes,
    full_name,
    length_of_stay_hours,
    to_cents,
)

REFERENCE = date(2025, 1, 1)


class TestAgeDerivation:
    """Tests for age_on and age_group"""

    def test_age_before_birthday_in_reference_year(self):
        """Birthday not yet reached in the reference year"""
        assert age_on(date(1955, 3, 15), REFERENCE) == 69

    def test_age_on_birthday(self):
        """Birthday itself counts as a completed year"""
        assert age_on(date(2000, 1, 1), REFERENCE) == 25

    def test_missing_birth_date(self):
        """No birth date gives no age and no group"""
        assert age_on(None, REFERENCE) is None
        assert age_group(None, REFERENCE) is None

    def test_bracket_boundaries(self):
        """Upper bounds are inclusive"""
        def born_years_ago(years):
            return date(REFERENCE.year - years, 1, 1)

        assert age_group(born_years_ago(0), REFERENCE) == "0-18"
        assert age_group(born_years_ago(18), REFERENCE) == "0-18"
        assert age_group(born_years_ago(19), REFERENCE) == "19-35"
        assert age_group(born_years_ago(35), REFERENCE) == "19-35"
        assert age_group(born_years_ago(36), REFERENCE) == "36-60"
        assert age_group(born_years_ago(60), REFERENCE) == "36-60"
        assert age_group(born_years_ago(61), REFERENCE) == "60+"

    @given(st.dates(min_value=date(1900, 1, 1), max_value=REFERENCE))
    def test_property_every_past_birth_date_has_a_bracket(self, birth_date):
        """Property test: any birth date up to the reference date maps to exactly one bracket"""
        group = age_group(birth_date, REFERENCE)
        age = age_on(birth_date, REFERENCE)

        assert age >= 0
        assert group in [label for _, label in AGE_BRACKETS]
        expected = next(label for upper, label in AGE_BRACKETS if upper is None or age <= upper)
        assert group == expected


class TestNames:
    """Tests for full_name"""

    def test_joins_trimmed_parts(self):
        assert full_name(" John ", "Doe") == "John Doe"

    def test_single_part(self):
        assert full_name("John", None) == "John"
        assert full_name(None, "Doe") == "Doe"

    def test_no_parts(self):
        assert full_name(None, "  ") is None


class TestClassifiers:
    """Tests for the ordered pattern classifiers"""

    def test_specialty_categories(self):
        classify = derivations.SPECIALTY_CLASSIFIER.classify
        assert classify("Cardiology") == {"specialty_category": "Medical"}
        assert classify("Orthopedic Surgery") == {"specialty_category": "Surgical"}
        assert classify("Radiology") == {"specialty_category": "Diagnostic"}
        assert classify("Chaplaincy") == {"specialty_category": "General"}

    def test_department_types(self):
        classify = derivations.DEPARTMENT_CLASSIFIER.classify
        assert classify("Emergency Department")["department_type"] == "Emergency"
        assert classify("Cardiology Unit")["department_type"] == "Inpatient"
        assert classify("Family Clinic")["department_type"] == "Outpatient"
        assert classify("Pharmacy")["department_type"] == "General"

    def test_diagnosis_chapter_and_severity(self):
        """ICD-10 leading letter decides the category, code prefix the severity"""
        assert derivations.DIAGNOSIS_CLASSIFIER.classify("I10") == {
            "diagnosis_category": "Cardiovascular",
            "body_system": "Circulatory",
        }
        assert derivations.DIAGNOSIS_CLASSIFIER.classify("J18.9")["diagnosis_category"] == "Respiratory"
        assert derivations.DIAGNOSIS_SEVERITY_CLASSIFIER.classify("I10") == {
            "severity_level": "Medium",
            "chronic_flag": True,
        }
        assert derivations.DIAGNOSIS_SEVERITY_CLASSIFIER.classify("I21.4")["severity_level"] == "High"
        assert derivations.DIAGNOSIS_SEVERITY_CLASSIFIER.classify("J18.9") == {
            "severity_level": "Low",
            "chronic_flag": False,
        }

    def test_procedure_ranges(self):
        """The most specific CPT range wins"""
        classify = derivations.PROCEDURE_CLASSIFIER.classify
        assert classify("99213")["procedure_category"] == "Evaluation & Management"
        assert classify("93000")["procedure_type"] == "Cardiac Testing"
        assert classify("71046")["procedure_type"] == "Imaging"
        assert classify("27447")["procedure_category"] == "Surgical"

    def test_empty_input_gets_default(self):
        assert derivations.PROCEDURE_CLASSIFIER.classify(None) == {
            "procedure_category": "General",
            "procedure_type": None,
        }

    def test_classify_returns_copies(self):
        """Callers may mutate the result without affecting later calls"""
        first = derivations.SPECIALTY_CLASSIFIER.classify("Cardiology")
        first["specialty_category"] = "changed"
        assert derivations.SPECIALTY_CLASSIFIER.classify("Cardiology")["specialty_category"] == "Medical"

    def test_encounter_type_attributes(self):
        assert encounter_type_attributes("Inpatient").requires_admission is True
        assert encounter_type_attributes("ER").typical_duration_hours == 6
        assert encounter_type_attributes("Telehealth") == (None, None, False)


class TestCalendar:
    """Tests for date_key and calendar_attributes"""

    def test_date_key_format(self):
        assert date_key(date(2024, 6, 2)) == 20240602
        assert date_key(datetime(2024, 12, 31, 23, 59)) == 20241231

    def test_weekend_and_quarter(self):
        attributes = calendar_attributes(date(2024, 6, 1))

        assert attributes["date_key"] == 20240601
        assert attributes["day_of_week"] == "Saturday"
        assert attributes["is_weekend"] is True
        assert attributes["quarter"] == 2
        assert attributes["fiscal_year"] == 2024
        assert attributes["fiscal_quarter"] == 2
        assert attributes["holiday_flag"] is False

    def test_fiscal_year_starting_in_july(self):
        """The fiscal year is named after the year it ends in"""
        june = calendar_attributes(date(2024, 6, 30), fiscal_year_start_month=7)
        july = calendar_attributes(date(2024, 7, 1), fiscal_year_start_month=7)

        assert (june["fiscal_year"], june["fiscal_quarter"]) == (2024, 4)
        assert (july["fiscal_year"], july["fiscal_quarter"]) == (2025, 1)

    def test_holiday_flag(self):
        attributes = calendar_attributes(date(2024, 7, 4), holidays={(7, 4)})
        assert attributes["holiday_flag"] is True


class TestMeasures:
    """Tests for length of stay and money rounding"""

    def test_length_of_stay_rounds_half_up(self):
        admitted = datetime(2024, 5, 1, 9, 0)
        assert length_of_stay_hours(admitted, admitted + timedelta(minutes=90)) == 2
        assert length_of_stay_hours(admitted, admitted + timedelta(minutes=30)) == 1
        assert length_of_stay_hours(admitted, admitted + timedelta(minutes=29)) == 0

    def test_length_of_stay_multi_day(self):
        assert length_of_stay_hours(datetime(2024, 6, 2, 14, 0), datetime(2024, 6, 6, 9, 0)) == 91

    def test_length_of_stay_without_valid_discharge(self):
        """Open encounters and inverted timestamps give 0"""
        admitted = datetime(2024, 8, 15, 22, 0)
        assert length_of_stay_hours(admitted, None) == 0
        assert length_of_stay_hours(admitted, admitted - timedelta(hours=3)) == 0

    def test_to_cents(self):
        assert to_cents(None) == Decimal("0.00")
        assert to_cents(Decimal("12.5")) == Decimal("12.50")
        assert to_cents(1.005) == Decimal("1.01")
        assert to_cents(7) == Decimal("7.00")
