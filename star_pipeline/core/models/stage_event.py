"""
StageEvent model: one execution ledger entry.
"""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field


class StageEvent(BaseModel):
    """
    Start or end event of a pipeline stage.

    Attributes:
        run_id: Run the stage belongs to
        procedure_name: Owning procedure ("star_schema_build")
        stage_name: Stage identifier ("build_facts")
        step_order: Ordinal of the stage within the run
        status: STARTED on start; COMPLETED, WARNING or FAILED on end
        rows_*: Row counts reported at stage end
        duration_seconds: Wall time of the stage (end events only)
        error_message: Failure message, if any
        metadata: Free-form details
    """

    run_id: str
    procedure_name: str = "star_schema_build"
    stage_name: str
    step_order: int
    status: Literal["STARTED", "COMPLETED", "WARNING", "FAILED"]
    rows_processed: int = 0
    rows_inserted: int = 0
    rows_updated: int = 0
    rows_deleted: int = 0
    duration_seconds: float | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
