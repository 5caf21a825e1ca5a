"""
ValidationReport: the structured output document of a run.
"""

import json
from datetime import date, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from star_pipeline.core.models.validation_finding import (
    SEVERITY_ORDER,
    ValidationFinding,
    Verdict,
    compute_verdict,
)


class ValidationReport(BaseModel):
    """
    Run metadata plus the ordered findings of one run.

    The verdict is always derived from the findings, never stored separately.
    """

    run_id: str
    started_at: datetime
    finished_at: datetime | None = None
    reference_date: date
    findings: list[ValidationFinding] = Field(default_factory=list)
    build_summary: dict[str, dict[str, int]] = Field(default_factory=dict)

    @property
    def verdict(self) -> Verdict:
        return compute_verdict(self.findings)

    def summary(self) -> dict[str, int]:
        """Finding counts by severity (every severity present, zero when none)."""
        counts = {severity.value: 0 for severity in SEVERITY_ORDER}
        for finding in self.findings:
            counts[finding.severity.value] += 1
        return counts

    def affected_rows_by_table(self) -> dict[str, int]:
        totals: dict[str, int] = {}
        for finding in self.findings:
            totals[finding.table_name] = totals.get(finding.table_name, 0) + finding.affected_rows
        return totals

    def to_document(self) -> dict[str, Any]:
        """JSON-ready representation of the report."""
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "reference_date": self.reference_date.isoformat(),
            "verdict": self.verdict.value,
            "summary": {
                "total_findings": len(self.findings),
                "by_severity": self.summary(),
                "affected_rows_by_table": self.affected_rows_by_table(),
            },
            "build_summary": self.build_summary,
            "findings": [finding.model_dump(mode="json") for finding in self.findings],
        }

    def write_report(self, path: str | Path) -> Path:
        """
        Write the report document as JSON.

        Args:
            path: Target file; parent directories are created

        Returns:
            The written path
        """
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8") as handle:
            json.dump(self.to_document(), handle, indent=2)
        return target
