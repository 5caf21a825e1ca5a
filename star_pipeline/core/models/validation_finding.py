"""
ValidationFinding model and the fixed finding taxonomy.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return SEVERITY_ORDER.index(self)


SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


class FindingCategory(str, Enum):
    UNRESOLVED_DIMENSION_REFERENCE = "UnresolvedDimensionReference"
    STRUCTURAL_MISMATCH = "StructuralMismatch"
    INTEGRITY_VIOLATION = "IntegrityViolation"
    BUSINESS_RULE_VIOLATION = "BusinessRuleViolation"
    REFERENTIAL_ORPHAN = "ReferentialOrphan"


class ValidationStage(str, Enum):
    """Stages of a run, in execution order. BUILD carries builder rejections."""

    BUILD = "BUILD"
    STRUCTURAL_CHECK = "STRUCTURAL_CHECK"
    TYPE_CHECK = "TYPE_CHECK"
    INTEGRITY_CHECK = "INTEGRITY_CHECK"
    BUSINESS_RULE_CHECK = "BUSINESS_RULE_CHECK"
    REFERENTIAL_CHECK = "REFERENTIAL_CHECK"
    SUMMARY = "SUMMARY"


class Verdict(str, Enum):
    COMPLETED = "COMPLETED"
    WARNING = "WARNING"
    FAILED = "FAILED"


class ValidationFinding(BaseModel):
    """
    One detected issue. Findings are immutable once emitted.

    Attributes:
        run_id: Run that produced the finding
        stage: Stage the check ran in
        check_name: Catalog name of the check (or builder name for BUILD)
        table_name: Table the issue was found in
        column_name: Column, when the check is column-level
        category: Finding category
        issue_type: Fine-grained code (NULL_VIOLATION, ORPHANED_REFERENCE, ...)
        severity: LOW / MEDIUM / HIGH / CRITICAL
        affected_rows: Offending row count (0 for structural findings)
        description: Human-readable message
        sample_values: Up to five offending values, rendered as strings
    """

    run_id: str
    stage: ValidationStage
    check_name: str
    table_name: str
    column_name: str | None = None
    category: FindingCategory
    issue_type: str
    severity: Severity
    affected_rows: int = Field(0, ge=0)
    description: str
    sample_values: tuple[str, ...] = ()
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "run_id": "5f0c1f0e-8a43-4a4e-9d3e-2f1c0b7a9e11",
                "stage": "REFERENTIAL_CHECK",
                "check_name": "fact_encounters_provider_fk",
                "table_name": "fact_encounters",
                "column_name": "provider_key",
                "category": "ReferentialOrphan",
                "issue_type": "ORPHANED_REFERENCE",
                "severity": "CRITICAL",
                "affected_rows": 1,
                "description": "1 fact_encounters rows reference missing dim_provider rows",
                "sample_values": ["999"],
            }
        }


def compute_verdict(findings) -> Verdict:
    """
    Roll findings up to a terminal verdict.

    FAILED if any CRITICAL, WARNING if any HIGH or MEDIUM, COMPLETED otherwise.
    """
    severities = {finding.severity for finding in findings}
    if Severity.CRITICAL in severities:
        return Verdict.FAILED
    if severities & {Severity.HIGH, Severity.MEDIUM}:
        return Verdict.WARNING
    return Verdict.COMPLETED
