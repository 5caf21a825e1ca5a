"""
CheckDefinition model: one entry of the validation check catalog.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field

CheckType = Literal[
    "table_exists",
    "column_exists",
    "column_type",
    "not_null",
    "unique",
    "bridge_count",
    "not_in_future",
    "date_order",
    "date_after_reference",
    "allowed_values",
    "pattern",
    "foreign_key",
    "dimension_link",
]


class CheckDefinition(BaseModel):
    """
    A configurable check run by the validation engine.

    Attributes:
        check_name: Unique catalog name ("dim_patient_gender_values")
        check_type: One of the supported check types
        table_name: Table the check reads
        column_name: Column the check applies to (None for table-level checks)
        parameters: Check-specific params (e.g., {"allowed": ["M", "F"]})
        enabled: Whether the check runs
    """

    check_name: str = Field(..., min_length=1)
    check_type: CheckType
    table_name: str = Field(..., min_length=1)
    column_name: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True

    class Config:
        json_schema_extra = {
            "example": {
                "check_name": "dim_patient_gender_values",
                "check_type": "allowed_values",
                "table_name": "dim_patient",
                "column_name": "gender",
                "parameters": {"allowed": ["M", "F", "O", "U"]},
                "enabled": True,
            }
        }
