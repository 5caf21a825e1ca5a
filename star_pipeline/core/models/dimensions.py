"""
Warehouse dimension records.

Every dimension carries a warehouse-local surrogate key and the source
system's natural key. The class variables name the table and both key
columns so repositories can handle all dimensions generically.
"""

from datetime import date
from typing import Any, ClassVar

from pydantic import BaseModel


class DimensionRecord(BaseModel):
    """
    Base class for dimension rows.

    Subclasses set:
        table_name: Warehouse table
        key_column: Surrogate key column
        natural_key_column: Source identifier column (unique per table)
    """

    table_name: ClassVar[str]
    key_column: ClassVar[str]
    natural_key_column: ClassVar[str]

    @property
    def surrogate_key(self) -> int:
        return getattr(self, self.key_column)

    @property
    def natural_key(self) -> Any:
        return getattr(self, self.natural_key_column)

    def descriptive_fields(self) -> dict[str, Any]:
        """All columns except the surrogate key."""
        return self.model_dump(exclude={self.key_column})

    def with_surrogate_key(self, key: int) -> "DimensionRecord":
        """Copy of this record carrying another surrogate key."""
        return self.model_copy(update={self.key_column: key})


class DimDate(DimensionRecord):
    """Calendar day; the surrogate key is derived from the date (YYYYMMDD)."""

    table_name: ClassVar[str] = "dim_date"
    key_column: ClassVar[str] = "date_key"
    natural_key_column: ClassVar[str] = "calendar_date"

    date_key: int
    calendar_date: date
    year: int
    quarter: int
    month: int
    day_of_month: int
    week_of_year: int
    day_of_week: str
    is_weekend: bool = False
    fiscal_year: int | None = None
    fiscal_quarter: int | None = None
    holiday_flag: bool = False


class DimPatient(DimensionRecord):
    """Patient with demographic groupings."""

    table_name: ClassVar[str] = "dim_patient"
    key_column: ClassVar[str] = "patient_key"
    natural_key_column: ClassVar[str] = "patient_id"

    patient_key: int
    patient_id: int
    first_name: str | None = None
    last_name: str | None = None
    full_name: str | None = None
    gender: str | None = None
    date_of_birth: date | None = None
    age_at_first_encounter: int | None = None
    current_age: int | None = None
    age_group: str | None = None
    mrn: str | None = None

    class Config:
        json_schema_extra = {
            "example": {
                "patient_key": 1,
                "patient_id": 1001,
                "first_name": "John",
                "last_name": "Doe",
                "full_name": "John Doe",
                "gender": "M",
                "date_of_birth": "1955-03-15",
                "current_age": 69,
                "age_group": "60+",
                "mrn": "MRN001",
            }
        }


class DimSpecialty(DimensionRecord):
    """Medical specialty."""

    table_name: ClassVar[str] = "dim_specialty"
    key_column: ClassVar[str] = "specialty_key"
    natural_key_column: ClassVar[str] = "specialty_id"

    specialty_key: int
    specialty_id: int
    specialty_name: str
    specialty_code: str | None = None
    specialty_category: str = "General"


class DimDepartment(DimensionRecord):
    """Hospital department."""

    table_name: ClassVar[str] = "dim_department"
    key_column: ClassVar[str] = "department_key"
    natural_key_column: ClassVar[str] = "department_id"

    department_key: int
    department_id: int
    department_name: str
    floor: int | None = None
    capacity: int | None = None
    department_type: str = "General"
    cost_center_code: str | None = None


class DimProvider(DimensionRecord):
    """Provider with denormalized specialty and department names."""

    table_name: ClassVar[str] = "dim_provider"
    key_column: ClassVar[str] = "provider_key"
    natural_key_column: ClassVar[str] = "provider_id"

    provider_key: int
    provider_id: int
    first_name: str | None = None
    last_name: str | None = None
    full_name: str | None = None
    credential: str | None = None
    provider_type: str | None = None
    specialty_key: int
    department_key: int
    specialty_name: str | None = None
    department_name: str | None = None


class DimEncounterType(DimensionRecord):
    """Encounter category (Outpatient, Inpatient, ER...)."""

    table_name: ClassVar[str] = "dim_encounter_type"
    key_column: ClassVar[str] = "encounter_type_key"
    natural_key_column: ClassVar[str] = "encounter_type"

    encounter_type_key: int
    encounter_type: str
    type_description: str | None = None
    typical_duration_hours: int | None = None
    requires_admission: bool = False


class DimDiagnosis(DimensionRecord):
    """ICD-10 diagnosis with clinical classification."""

    table_name: ClassVar[str] = "dim_diagnosis"
    key_column: ClassVar[str] = "diagnosis_key"
    natural_key_column: ClassVar[str] = "diagnosis_id"

    diagnosis_key: int
    diagnosis_id: int
    icd10_code: str
    icd10_description: str | None = None
    diagnosis_category: str = "General"
    body_system: str | None = None
    severity_level: str | None = None
    chronic_flag: bool = False


class DimProcedure(DimensionRecord):
    """CPT procedure with category."""

    table_name: ClassVar[str] = "dim_procedure"
    key_column: ClassVar[str] = "procedure_key"
    natural_key_column: ClassVar[str] = "procedure_id"

    procedure_key: int
    procedure_id: int
    cpt_code: str
    cpt_description: str | None = None
    procedure_category: str = "General"
    procedure_type: str | None = None
    typical_cost_range: str | None = None
    duration_minutes: int | None = None


DIMENSION_MODELS: dict[str, type[DimensionRecord]] = {
    model.table_name: model
    for model in (
        DimDate,
        DimPatient,
        DimSpecialty,
        DimDepartment,
        DimProvider,
        DimEncounterType,
        DimDiagnosis,
        DimProcedure,
    )
}
