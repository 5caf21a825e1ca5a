"""
ExecutionContext: per-run identity threaded through every component.
"""

import uuid
from datetime import date, datetime, timezone

from pydantic import BaseModel, Field


class ExecutionContext(BaseModel):
    """
    Immutable run context.

    Attributes:
        run_id: Correlation token for ledger events, findings and audit entries
        started_at: Run start (UTC)
        reference_date: "Today" for age derivation and future-date checks
    """

    run_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    reference_date: date = Field(default_factory=date.today)

    class Config:
        frozen = True

    def log_extra(self) -> dict[str, str]:
        """Fields attached to every log line of the run."""
        return {"run_id": self.run_id}
