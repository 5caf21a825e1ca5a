"""
Core data models for the star-schema pipeline.

All models use Pydantic for runtime validation and type safety.
"""

from .audit_log import ChangeAuditEntry
from .bridge_rows import BridgeDiagnosisRow, BridgeProcedureRow
from .build_result import BuildRejection, BuildResult
from .check_definition import CheckDefinition
from .dimensions import (
    DIMENSION_MODELS,
    DimDate,
    DimDepartment,
    DimDiagnosis,
    DimEncounterType,
    DimensionRecord,
    DimPatient,
    DimProcedure,
    DimProvider,
    DimSpecialty,
)
from .execution_context import ExecutionContext
from .fact_encounter import FactEncounter, ReadmissionAnnotation
from .source_records import (
    BillingSource,
    DepartmentSource,
    DiagnosisSource,
    EncounterDiagnosisSource,
    EncounterProcedureSource,
    EncounterSource,
    PatientSource,
    ProcedureSource,
    ProviderSource,
    SpecialtySource,
)
from .stage_event import StageEvent
from .validation_finding import (
    FindingCategory,
    Severity,
    ValidationFinding,
    ValidationStage,
    Verdict,
    compute_verdict,
)
from .validation_report import ValidationReport

__all__ = [
    "PatientSource",
    "SpecialtySource",
    "DepartmentSource",
    "ProviderSource",
    "DiagnosisSource",
    "ProcedureSource",
    "EncounterSource",
    "EncounterDiagnosisSource",
    "EncounterProcedureSource",
    "BillingSource",
    "DimensionRecord",
    "DimDate",
    "DimPatient",
    "DimSpecialty",
    "DimDepartment",
    "DimProvider",
    "DimEncounterType",
    "DimDiagnosis",
    "DimProcedure",
    "DIMENSION_MODELS",
    "FactEncounter",
    "ReadmissionAnnotation",
    "BridgeDiagnosisRow",
    "BridgeProcedureRow",
    "BuildRejection",
    "BuildResult",
    "CheckDefinition",
    "ValidationFinding",
    "ValidationReport",
    "Severity",
    "FindingCategory",
    "ValidationStage",
    "Verdict",
    "compute_verdict",
    "ExecutionContext",
    "StageEvent",
    "ChangeAuditEntry",
]
