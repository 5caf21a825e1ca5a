"""
FactEncounter model: one row per encounter at the encounter grain.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar

from pydantic import BaseModel, Field


class FactEncounter(BaseModel):
    """
    Encounter fact row with dimension foreign keys, measures and readmission flags.

    Attributes:
        encounter_key: Surrogate key (allocated under sequence `fact_encounters`)
        encounter_id: Source natural key
        patient_key .. primary_diagnosis_key: Dimension foreign keys
        diagnosis_count: Number of bridge_encounter_diagnoses rows
        procedure_count: Number of bridge_encounter_procedures rows
        total_claim_amount: Sum of billed amounts
        total_allowed_amount: Sum of allowed amounts
        length_of_stay_hours: Discharge minus admission in whole hours (>= 0)
        has_30day_readmission: Another admission follows within the window
        days_to_readmission: Whole days to the earliest readmission
        is_readmission: This encounter is itself a readmission
        readmission_count_30days: Admissions within the window after discharge
    """

    table_name: ClassVar[str] = "fact_encounters"
    key_column: ClassVar[str] = "encounter_key"
    natural_key_column: ClassVar[str] = "encounter_id"

    encounter_key: int
    encounter_id: int
    patient_key: int
    provider_key: int
    encounter_date_key: int
    discharge_date_key: int | None = None
    encounter_type_key: int
    specialty_key: int
    department_key: int
    primary_diagnosis_key: int | None = None
    diagnosis_count: int = Field(0, ge=0)
    procedure_count: int = Field(0, ge=0)
    total_claim_amount: Decimal = Decimal("0.00")
    total_allowed_amount: Decimal = Decimal("0.00")
    length_of_stay_hours: int = Field(0, ge=0)
    has_30day_readmission: bool = False
    days_to_readmission: int | None = None
    is_readmission: bool = False
    readmission_count_30days: int = 0
    encounter_datetime: datetime
    discharge_datetime: datetime | None = None

    class Config:
        json_schema_extra = {
            "example": {
                "encounter_key": 2,
                "encounter_id": 7002,
                "patient_key": 1,
                "provider_key": 3,
                "encounter_date_key": 20240602,
                "discharge_date_key": 20240606,
                "encounter_type_key": 2,
                "specialty_key": 1,
                "department_key": 1,
                "primary_diagnosis_key": 4,
                "diagnosis_count": 2,
                "procedure_count": 1,
                "total_claim_amount": "12500.00",
                "total_allowed_amount": "10000.00",
                "length_of_stay_hours": 91,
                "encounter_datetime": "2024-06-02T14:00:00",
                "discharge_datetime": "2024-06-06T09:00:00",
            }
        }

    @property
    def surrogate_key(self) -> int:
        return self.encounter_key

    @property
    def natural_key(self) -> int:
        return self.encounter_id


class ReadmissionAnnotation(BaseModel):
    """Readmission columns computed for one fact row."""

    encounter_key: int
    has_30day_readmission: bool = False
    days_to_readmission: int | None = None
    readmission_count_30days: int = 0
    is_readmission: bool = False
