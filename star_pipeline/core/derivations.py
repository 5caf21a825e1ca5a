"""
Pure derivation functions for dimension and fact attributes.

Everything here is deterministic: the same inputs (including the reference
date) always give the same output, so a rebuilt dimension is identical to
the previous build.
"""

import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, NamedTuple

DEFAULT_CATEGORY = "General"

# (upper bound inclusive, label); None bound means open-ended
AGE_BRACKETS = [
    (18, "0-18"),
    (35, "19-35"),
    (60, "36-60"),
    (None, "60+"),
]

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def age_on(birth_date: date | None, reference_date: date) -> int | None:
    """Whole years between birth date and reference date."""
    if birth_date is None:
        return None
    years = reference_date.year - birth_date.year
    if (reference_date.month, reference_date.day) < (birth_date.month, birth_date.day):
        years -= 1
    return years


def age_group(birth_date: date | None, reference_date: date) -> str | None:
    """
    Age bracket label for a birth date.

    Args:
        birth_date: Patient date of birth (None gives None)
        reference_date: Date the age is measured at

    Returns:
        "0-18", "19-35", "36-60" or "60+"
    """
    age = age_on(birth_date, reference_date)
    if age is None:
        return None
    for upper, label in AGE_BRACKETS:
        if upper is None or age <= upper:
            return label
    return AGE_BRACKETS[-1][1]


def full_name(first_name: str | None, last_name: str | None) -> str | None:
    parts = [part.strip() for part in (first_name, last_name) if part and part.strip()]
    return " ".join(parts) or None


class ClassificationRule(NamedTuple):
    pattern: str
    values: dict[str, Any]


class Classifier:
    """
    Ordered pattern classification: the first matching rule wins.

    Patterns are matched case-insensitively with re.search against the
    input text. When nothing matches, the default values are returned.
    """

    def __init__(self, rules: list[ClassificationRule], default: dict[str, Any]):
        self.rules = [(re.compile(rule.pattern, re.IGNORECASE), rule.values) for rule in rules]
        self.default = default

    def classify(self, text: str | None) -> dict[str, Any]:
        if text:
            for pattern, values in self.rules:
                if pattern.search(text):
                    return dict(values)
        return dict(self.default)


SPECIALTY_CLASSIFIER = Classifier(
    [
        ClassificationRule(r"surg", {"specialty_category": "Surgical"}),
        ClassificationRule(r"radiolog|patholog|imaging|diagnos|laborator", {"specialty_category": "Diagnostic"}),
        ClassificationRule(
            r"cardio|internal|medicine|pediatric|neuro|oncolog|endocrin|pulmon|psychiat|family",
            {"specialty_category": "Medical"},
        ),
    ],
    default={"specialty_category": DEFAULT_CATEGORY},
)

DEPARTMENT_CLASSIFIER = Classifier(
    [
        ClassificationRule(r"emergenc|\bER\b|trauma", {"department_type": "Emergency"}),
        ClassificationRule(r"clinic|outpatient|ambulatory", {"department_type": "Outpatient"}),
        ClassificationRule(r"unit|ward|inpatient|ICU|surgery", {"department_type": "Inpatient"}),
    ],
    default={"department_type": DEFAULT_CATEGORY},
)

# ICD-10 chapters by leading letter
DIAGNOSIS_CLASSIFIER = Classifier(
    [
        ClassificationRule(r"^I", {"diagnosis_category": "Cardiovascular", "body_system": "Circulatory"}),
        ClassificationRule(r"^E", {"diagnosis_category": "Endocrine", "body_system": "Endocrine"}),
        ClassificationRule(r"^J", {"diagnosis_category": "Respiratory", "body_system": "Respiratory"}),
        ClassificationRule(r"^K", {"diagnosis_category": "Digestive", "body_system": "Digestive"}),
        ClassificationRule(r"^N", {"diagnosis_category": "Genitourinary", "body_system": "Genitourinary"}),
        ClassificationRule(r"^(C|D[0-4])", {"diagnosis_category": "Neoplasm", "body_system": None}),
        ClassificationRule(r"^F", {"diagnosis_category": "Mental Health", "body_system": "Nervous"}),
        ClassificationRule(r"^G", {"diagnosis_category": "Neurological", "body_system": "Nervous"}),
        ClassificationRule(r"^M", {"diagnosis_category": "Musculoskeletal", "body_system": "Musculoskeletal"}),
        ClassificationRule(r"^[ST]", {"diagnosis_category": "Injury", "body_system": None}),
    ],
    default={"diagnosis_category": DEFAULT_CATEGORY, "body_system": None},
)

DIAGNOSIS_SEVERITY_CLASSIFIER = Classifier(
    [
        ClassificationRule(r"^(I21|I50|I63|J96|N17|A41|C)", {"severity_level": "High", "chronic_flag": True}),
        ClassificationRule(r"^(I1[0-5]|I25|E1[0-4]|J4[45]|N18|G30|F20|M05)", {"severity_level": "Medium", "chronic_flag": True}),
    ],
    default={"severity_level": "Low", "chronic_flag": False},
)

# CPT code ranges, most specific first
PROCEDURE_CLASSIFIER = Classifier(
    [
        ClassificationRule(r"^99[2-4]", {"procedure_category": "Evaluation & Management", "procedure_type": "Clinical Visit"}),
        ClassificationRule(r"^93[0-7]", {"procedure_category": "Diagnostic", "procedure_type": "Cardiac Testing"}),
        ClassificationRule(r"^7", {"procedure_category": "Diagnostic", "procedure_type": "Imaging"}),
        ClassificationRule(r"^8", {"procedure_category": "Diagnostic", "procedure_type": "Laboratory"}),
        ClassificationRule(r"^9", {"procedure_category": "Therapeutic", "procedure_type": "Medicine"}),
        ClassificationRule(r"^0", {"procedure_category": "Anesthesia", "procedure_type": "Anesthesia"}),
        ClassificationRule(r"^[1-6]", {"procedure_category": "Surgical", "procedure_type": "Surgical Procedure"}),
    ],
    default={"procedure_category": DEFAULT_CATEGORY, "procedure_type": None},
)


class EncounterTypeAttributes(NamedTuple):
    type_description: str | None
    typical_duration_hours: int | None
    requires_admission: bool


ENCOUNTER_TYPE_ATTRIBUTES = {
    "Outpatient": EncounterTypeAttributes("Outpatient clinic visit", 2, False),
    "Inpatient": EncounterTypeAttributes("Inpatient hospital admission", 96, True),
    "ER": EncounterTypeAttributes("Emergency department visit", 6, False),
}


def encounter_type_attributes(encounter_type: str) -> EncounterTypeAttributes:
    return ENCOUNTER_TYPE_ATTRIBUTES.get(
        encounter_type, EncounterTypeAttributes(None, None, False)
    )


def date_key(day: date | datetime) -> int:
    """Calendar surrogate key in YYYYMMDD form."""
    return day.year * 10000 + day.month * 100 + day.day


def calendar_attributes(
    day: date,
    fiscal_year_start_month: int = 1,
    holidays: set[tuple[int, int]] | None = None,
) -> dict[str, Any]:
    """
    Calendar attributes of a day.

    The fiscal year is named after the calendar year it ends in; with the
    default January start it equals the calendar year.

    Args:
        day: Calendar day
        fiscal_year_start_month: First month of the fiscal year (1-12)
        holidays: Fixed-date holidays as (month, day) pairs

    Returns:
        Column values for a dim_date row
    """
    if fiscal_year_start_month == 1 or day.month < fiscal_year_start_month:
        fiscal_year = day.year
    else:
        fiscal_year = day.year + 1
    fiscal_quarter = ((day.month - fiscal_year_start_month) % 12) // 3 + 1

    return {
        "date_key": date_key(day),
        "calendar_date": day,
        "year": day.year,
        "quarter": (day.month - 1) // 3 + 1,
        "month": day.month,
        "day_of_month": day.day,
        "week_of_year": day.isocalendar()[1],
        "day_of_week": DAY_NAMES[day.weekday()],
        "is_weekend": day.weekday() >= 5,
        "fiscal_year": fiscal_year,
        "fiscal_quarter": fiscal_quarter,
        "holiday_flag": (day.month, day.day) in (holidays or set()),
    }


def length_of_stay_hours(admitted: datetime, discharged: datetime | None) -> int:
    """
    Length of stay in whole hours, rounded half-up.

    Returns 0 when the discharge is unknown or precedes the admission.
    """
    if discharged is None or discharged < admitted:
        return 0
    seconds = Decimal(str((discharged - admitted).total_seconds()))
    return int((seconds / Decimal(3600)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_cents(amount: Decimal | int | float | None) -> Decimal:
    if amount is None:
        return Decimal("0.00")
    return Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
