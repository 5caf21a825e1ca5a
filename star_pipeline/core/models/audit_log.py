"""
ChangeAuditEntry model representing one captured change to a sensitive record.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


class ChangeAuditEntry(BaseModel):
    """
    Compliance audit entry.

    Attributes:
        audit_id: Auto-increment primary key (set by the store)
        run_id: Run that made the change, when known
        event_type_code: Entity prefix plus operation ("PATIENT_UPDATE")
        table_name: Table that changed
        operation_type: INSERT, UPDATE or DELETE
        record_id: Primary key of the changed row
        patient_id: Patient the change concerns, when the extractor knows it
        captured_fields: Fields the entity's extractor chose to log
        created_at: When the change was captured
    """

    audit_id: int | None = None
    run_id: str | None = None
    event_type_code: str
    table_name: str
    operation_type: str
    record_id: str | None = None
    patient_id: int | None = None
    captured_fields: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        json_schema_extra = {
            "example": {
                "run_id": "5f0c1f0e-8a43-4a4e-9d3e-2f1c0b7a9e11",
                "event_type_code": "PATIENT_UPDATE",
                "table_name": "dim_patient",
                "operation_type": "UPDATE",
                "record_id": "1001",
                "patient_id": 1001,
                "captured_fields": {"mrn": "MRN001", "gender": "M"},
            }
        }
