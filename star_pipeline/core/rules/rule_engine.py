"""
Validation engine running the check catalog against a warehouse snapshot.

Stages run in a fixed order and every stage always runs to completion:
STRUCTURAL_CHECK, TYPE_CHECK, INTEGRITY_CHECK, BUSINESS_RULE_CHECK,
REFERENTIAL_CHECK, then SUMMARY. A missing table or column only blocks the
later checks that need that object.
"""

import time
from typing import Any

from star_pipeline.core.exceptions import CatalogError, CheckFailure
from star_pipeline.core.models import (
    CheckDefinition,
    ExecutionContext,
    FindingCategory,
    StageEvent,
    ValidationFinding,
    ValidationStage,
    compute_verdict,
)
from star_pipeline.core.validators import (
    AllowedValuesCheck,
    BaseCheck,
    BridgeCountCheck,
    ColumnExistsCheck,
    ColumnTypeCheck,
    DateAfterReferenceCheck,
    DateOrderCheck,
    DimensionLinkCheck,
    ForeignKeyCheck,
    NotInFutureCheck,
    NotNullCheck,
    PatternCheck,
    TableExistsCheck,
    UniqueCheck,
)
from star_pipeline.observability.logger import get_logger, log_operation
from star_pipeline.observability.metrics import (
    increment_counter,
    record_findings,
    stage_duration_seconds,
    stage_runs_total,
    track_duration,
)

logger = get_logger(__name__)

CHECK_STAGES = [
    ValidationStage.STRUCTURAL_CHECK,
    ValidationStage.TYPE_CHECK,
    ValidationStage.INTEGRITY_CHECK,
    ValidationStage.BUSINESS_RULE_CHECK,
    ValidationStage.REFERENTIAL_CHECK,
]


class CachedSnapshot:
    """Reads each table at most once per validation run."""

    def __init__(self, snapshot):
        self._snapshot = snapshot
        self._schema: dict[str, dict[str, str]] | None = None
        self._rows: dict[str, list[dict[str, Any]]] = {}

    def describe_tables(self) -> dict[str, dict[str, str]]:
        if self._schema is None:
            self._schema = self._snapshot.describe_tables()
        return self._schema

    def fetch_rows(self, table_name: str) -> list[dict[str, Any]]:
        if table_name not in self._rows:
            self._rows[table_name] = self._snapshot.fetch_rows(table_name)
        return self._rows[table_name]


class ValidationEngine:
    """
    Runs catalog checks stage by stage and turns failures into findings.
    """

    CHECK_REGISTRY: dict[str, type[BaseCheck]] = {
        "table_exists": TableExistsCheck,
        "column_exists": ColumnExistsCheck,
        "column_type": ColumnTypeCheck,
        "not_null": NotNullCheck,
        "unique": UniqueCheck,
        "bridge_count": BridgeCountCheck,
        "not_in_future": NotInFutureCheck,
        "date_order": DateOrderCheck,
        "date_after_reference": DateAfterReferenceCheck,
        "allowed_values": AllowedValuesCheck,
        "pattern": PatternCheck,
        "foreign_key": ForeignKeyCheck,
        "dimension_link": DimensionLinkCheck,
    }

    def __init__(self, definitions: list[CheckDefinition], ledger=None, first_step_order: int = 1):
        """
        Initialize the engine with a check catalog.

        Args:
            definitions: Catalog entries; disabled ones are skipped
            ledger: Optional execution ledger receiving one start and one end
                event per stage
            first_step_order: Ledger ordinal of the first validation stage

        Raises:
            CatalogError: If an entry has an unknown type or bad parameters
        """
        self.definitions = definitions
        self.ledger = ledger
        self.first_step_order = first_step_order
        self.checks: list[BaseCheck] = []
        self._build_checks()

    def _build_checks(self) -> None:
        for definition in self.definitions:
            if not definition.enabled:
                continue
            check_class = self.CHECK_REGISTRY.get(definition.check_type)
            if check_class is None:
                raise CatalogError(f"Unknown check type: {definition.check_type}")
            self.checks.append(check_class(definition))

    def checks_for(self, stage: ValidationStage) -> list[BaseCheck]:
        return [check for check in self.checks if check.stage == stage]

    def run(self, snapshot, context: ExecutionContext) -> list[ValidationFinding]:
        """
        Run every stage against the snapshot.

        Args:
            snapshot: Object with describe_tables() and fetch_rows(table)
            context: Run context

        Returns:
            Findings in stage order, then catalog order
        """
        cached = CachedSnapshot(snapshot)
        findings: list[ValidationFinding] = []

        with log_operation("validation", logger=logger, run_id=context.run_id):
            for offset, stage in enumerate(CHECK_STAGES):
                findings.extend(self._run_stage(stage, cached, context, self.first_step_order + offset))
            self._summarize(findings, context, self.first_step_order + len(CHECK_STAGES))

        return findings

    def _run_stage(
        self,
        stage: ValidationStage,
        snapshot: CachedSnapshot,
        context: ExecutionContext,
        step_order: int,
    ) -> list[ValidationFinding]:
        checks = self.checks_for(stage)
        self._record_event(context, stage.value, step_order, "STARTED")
        started = time.time()
        findings: list[ValidationFinding] = []
        skipped = 0

        with track_duration(stage_duration_seconds, stage=stage.value):
            for check in checks:
                missing = self._missing_objects(check, snapshot.describe_tables())
                if missing:
                    skipped += 1
                    logger.debug(
                        f"Skipping {check.name}: missing {missing}",
                        extra={"run_id": context.run_id},
                    )
                    continue
                try:
                    check.run(snapshot, context)
                except CheckFailure as failure:
                    findings.append(self._to_finding(check, failure, context))

        status = compute_verdict(findings).value
        increment_counter(stage_runs_total, 1, stage=stage.value, status=status)
        self._record_event(
            context, stage.value, step_order, status,
            rows_processed=len(checks) - skipped,
            duration_seconds=round(time.time() - started, 3),
            metadata={"checks": len(checks), "skipped": skipped, "findings": len(findings)},
        )
        logger.info(
            f"{stage.value}: {len(checks) - skipped} checks run, {skipped} blocked, {len(findings)} findings",
            extra={"run_id": context.run_id},
        )
        return findings

    def _summarize(self, findings: list[ValidationFinding], context: ExecutionContext, step_order: int) -> None:
        self._record_event(context, ValidationStage.SUMMARY.value, step_order, "STARTED")
        record_findings(findings)
        verdict = compute_verdict(findings)
        self._record_event(
            context, ValidationStage.SUMMARY.value, step_order, verdict.value,
            rows_processed=len(findings),
            metadata={"verdict": verdict.value},
        )

    @staticmethod
    def _missing_objects(check: BaseCheck, schema: dict[str, dict[str, str]]) -> list[str]:
        missing = []
        for table_name, column_name in check.required_objects():
            if table_name not in schema:
                missing.append(table_name)
            elif column_name and column_name not in schema[table_name]:
                missing.append(f"{table_name}.{column_name}")
        return missing

    @staticmethod
    def _to_finding(check: BaseCheck, failure: CheckFailure, context: ExecutionContext) -> ValidationFinding:
        return ValidationFinding(
            run_id=context.run_id,
            stage=check.stage,
            check_name=check.name,
            table_name=check.table_name,
            column_name=check.column_name,
            category=FindingCategory(failure.category),
            issue_type=failure.issue_type or check.issue_type,
            severity=check.severity,
            affected_rows=failure.affected_rows,
            description=failure.message,
            sample_values=tuple(failure.sample_values),
        )

    def _record_event(self, context: ExecutionContext, stage_name: str, step_order: int, status: str, **fields) -> None:
        if self.ledger is None:
            return
        self.ledger.record(StageEvent(
            run_id=context.run_id,
            procedure_name="validation",
            stage_name=stage_name,
            step_order=step_order,
            status=status,
            **fields,
        ))

    def get_catalog_summary(self) -> dict[str, Any]:
        """
        Summary of the loaded checks.

        Returns:
            Dictionary with check counts by type, stage and severity
        """
        by_type: dict[str, int] = {}
        by_stage: dict[str, int] = {}
        by_severity: dict[str, int] = {}
        for check in self.checks:
            by_type[check.check_type] = by_type.get(check.check_type, 0) + 1
            by_stage[check.stage.value] = by_stage.get(check.stage.value, 0) + 1
            by_severity[check.severity.value] = by_severity.get(check.severity.value, 0) + 1
        return {
            "total_checks": len(self.checks),
            "checks_by_type": by_type,
            "checks_by_stage": by_stage,
            "checks_by_severity": by_severity,
        }
