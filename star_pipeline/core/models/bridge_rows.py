"""
Bridge rows resolving the many-to-many encounter associations.
"""

from typing import ClassVar

from pydantic import BaseModel, Field


class BridgeDiagnosisRow(BaseModel):
    """
    One diagnosis attached to a fact row.

    (encounter_key, diagnosis_sequence) is unique; sequence 1 is the primary
    diagnosis.
    """

    table_name: ClassVar[str] = "bridge_encounter_diagnoses"
    child_key_column: ClassVar[str] = "diagnosis_key"
    sequence_column: ClassVar[str] = "diagnosis_sequence"

    encounter_key: int
    diagnosis_key: int
    diagnosis_sequence: int = Field(..., ge=1)
    diagnosis_present_on_admission: bool = True


class BridgeProcedureRow(BaseModel):
    """One procedure attached to a fact row, in chronological order."""

    table_name: ClassVar[str] = "bridge_encounter_procedures"
    child_key_column: ClassVar[str] = "procedure_key"
    sequence_column: ClassVar[str] = "procedure_sequence"

    encounter_key: int
    procedure_key: int
    procedure_date_key: int | None = None
    procedure_sequence: int = Field(..., ge=1)
    modifier_codes: str | None = None
    procedure_status: str = "Completed"
