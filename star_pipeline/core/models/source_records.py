"""
Source record models mirroring the operational (OLTP) tables.

Natural keys are optional here on purpose: a record without one is still
readable, and the builders reject and report it instead of failing the read.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel


class PatientSource(BaseModel):
    """Row of the `patients` table."""

    patient_id: int | None = None
    first_name: str | None = None
    last_name: str | None = None
    date_of_birth: date | None = None
    gender: str | None = None
    mrn: str | None = None


class SpecialtySource(BaseModel):
    """Row of the `specialties` table."""

    specialty_id: int | None = None
    specialty_name: str | None = None
    specialty_code: str | None = None


class DepartmentSource(BaseModel):
    """Row of the `departments` table."""

    department_id: int | None = None
    department_name: str | None = None
    floor: int | None = None
    capacity: int | None = None


class ProviderSource(BaseModel):
    """Row of the `providers` table."""

    provider_id: int | None = None
    first_name: str | None = None
    last_name: str | None = None
    credential: str | None = None
    provider_type: str | None = None
    specialty_id: int | None = None
    department_id: int | None = None


class DiagnosisSource(BaseModel):
    """Row of the `diagnoses` table (ICD-10 reference)."""

    diagnosis_id: int | None = None
    icd10_code: str | None = None
    icd10_description: str | None = None


class ProcedureSource(BaseModel):
    """Row of the `procedures` table (CPT reference)."""

    procedure_id: int | None = None
    cpt_code: str | None = None
    cpt_description: str | None = None


class EncounterSource(BaseModel):
    """
    Row of the `encounters` table: the transaction the fact table is built from.

    Attributes:
        encounter_id: Natural key of the transaction
        patient_id: FK to patients
        provider_id: FK to providers
        encounter_type: 'Outpatient', 'Inpatient', 'ER', ...
        encounter_date: Admission timestamp
        discharge_date: Discharge timestamp, None while ongoing
        department_id: FK to departments (optional, falls back to provider's)
    """

    encounter_id: int | None = None
    patient_id: int | None = None
    provider_id: int | None = None
    encounter_type: str | None = None
    encounter_date: datetime | None = None
    discharge_date: datetime | None = None
    department_id: int | None = None

    class Config:
        json_schema_extra = {
            "example": {
                "encounter_id": 7002,
                "patient_id": 1001,
                "provider_id": 101,
                "encounter_type": "Inpatient",
                "encounter_date": "2024-06-02T14:00:00",
                "discharge_date": "2024-06-06T09:00:00",
                "department_id": 1,
            }
        }


class EncounterDiagnosisSource(BaseModel):
    """Row of `encounter_diagnoses`: one diagnosis recorded on an encounter."""

    encounter_diagnosis_id: int | None = None
    encounter_id: int
    diagnosis_id: int | None = None
    diagnosis_sequence: int | None = None
    present_on_admission: bool = True


class EncounterProcedureSource(BaseModel):
    """Row of `encounter_procedures`: one procedure performed on an encounter."""

    encounter_procedure_id: int | None = None
    encounter_id: int
    procedure_id: int | None = None
    procedure_date: date | None = None
    modifier_codes: str | None = None
    procedure_status: str = "Completed"


class BillingSource(BaseModel):
    """Row of the `billing` table."""

    billing_id: int | None = None
    encounter_id: int
    claim_amount: Decimal | None = None
    allowed_amount: Decimal | None = None
    claim_date: date | None = None
    claim_status: str | None = None
