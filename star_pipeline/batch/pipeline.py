"""
Star schema pipeline orchestration.

Coordinates the flow: extract → calendar → dimensions → facts → bridges →
readmissions → validation
"""

import time
from datetime import datetime, timezone
from typing import Any, Callable

from star_pipeline.core.models import (
    BuildRejection,
    BuildResult,
    CheckDefinition,
    ExecutionContext,
    FactEncounter,
    FindingCategory,
    Severity,
    StageEvent,
    ValidationFinding,
    ValidationReport,
    ValidationStage,
)
from star_pipeline.core.rules import RuleConfigLoader, ValidationEngine, default_catalog
from star_pipeline.core.settings import PipelineSettings
from star_pipeline.observability.change_capture import AuditSink, ChangeCaptureTracker
from star_pipeline.observability.ledger import ExecutionLedger, LoggingLedger
from star_pipeline.observability.logger import get_logger, log_operation
from star_pipeline.observability.metrics import (
    increment_counter,
    record_verdict,
    stage_duration_seconds,
    stage_runs_total,
    track_duration,
)
from star_pipeline.warehouse.key_allocator import KeyAllocator
from star_pipeline.warehouse.repository import WarehouseRepository

from .bridge_builder import BridgeBuilder
from .dimension_builder import DimensionBuilder
from .fact_builder import FactBuilder, group_by_encounter
from .readers import SourceReader
from .readmission import ReadmissionEngine

logger = get_logger(__name__)

PROCEDURE_NAME = "star_schema_build"

BUILD_STAGES = [
    "extract_sources",
    "build_calendar",
    "build_dimensions",
    "build_facts",
    "build_bridges",
    "readmission_analysis",
]


def rejection_findings(results: list[BuildResult], run_id: str) -> list[ValidationFinding]:
    """
    Turn builder rejections into findings, one per (table, kind of problem).

    Unresolved references are grouped per referenced dimension; missing
    natural keys per target table. Both are HIGH.
    """
    groups: dict[tuple[str, str, str | None], list[BuildRejection]] = {}
    for result in results:
        for rejection in result.rejections:
            groups.setdefault((rejection.table_name, rejection.reason, rejection.dimension), []).append(rejection)

    findings = []
    for (table_name, reason, dimension), rejections in groups.items():
        if reason == "UnresolvedDimensionReference":
            samples = [str(r.referenced_key) for r in rejections]
            findings.append(ValidationFinding(
                run_id=run_id,
                stage=ValidationStage.BUILD,
                check_name=f"{table_name}_{dimension}_reference",
                table_name=table_name,
                category=FindingCategory.UNRESOLVED_DIMENSION_REFERENCE,
                issue_type="UNRESOLVED_REFERENCE",
                severity=Severity.HIGH,
                affected_rows=len(rejections),
                description=f"{len(rejections)} {table_name} records reference rows missing from {dimension}",
                sample_values=tuple(dict.fromkeys(samples))[:5],
            ))
        else:
            findings.append(ValidationFinding(
                run_id=run_id,
                stage=ValidationStage.BUILD,
                check_name=f"{table_name}_natural_key",
                table_name=table_name,
                category=FindingCategory.INTEGRITY_VIOLATION,
                issue_type="MISSING_NATURAL_KEY",
                severity=Severity.HIGH,
                affected_rows=len(rejections),
                description=f"{len(rejections)} source records for {table_name} rejected: {rejections[0].message}",
                sample_values=tuple(r.message for r in rejections[:5]),
            ))
    return findings


class StarSchemaPipeline:
    """
    Orchestrates one build-and-validate run.

    Flow:
    1. Read all source entities
    2. Materialize the calendar
    3. Build dimensions (reference dimensions before providers)
    4. Build fact rows
    5. Replace bridge rows
    6. Compute readmission metrics
    7. Run the validation stages and assemble the report

    Every stage emits a start and an end ledger event.
    """

    def __init__(
        self,
        reader: SourceReader | None,
        warehouse: WarehouseRepository,
        allocator: KeyAllocator | None = None,
        settings: PipelineSettings | None = None,
        ledger: ExecutionLedger | None = None,
        audit_sink: AuditSink | None = None,
        catalog: list[CheckDefinition] | None = None,
    ):
        """
        Initialize the pipeline.

        Args:
            reader: Source of operational records (None for validation-only use)
            warehouse: Target warehouse
            allocator: Surrogate key allocator (in-memory counters when omitted)
            settings: Run configuration
            ledger: Execution ledger (log lines only when omitted)
            audit_sink: Destination of change audit entries; no capture when omitted
            catalog: Check catalog; defaults to settings.catalog_path or the
                built-in catalog
        """
        self.reader = reader
        self.warehouse = warehouse
        self.allocator = allocator or KeyAllocator()
        self.settings = settings or PipelineSettings()
        self.ledger = ledger or LoggingLedger()
        self.audit_sink = audit_sink

        if catalog is not None:
            self.catalog = catalog
        elif self.settings.catalog_path:
            self.catalog = RuleConfigLoader(self.settings.catalog_path).load_checks()
        else:
            self.catalog = default_catalog()

    def new_context(self) -> ExecutionContext:
        if self.settings.reference_date is not None:
            return ExecutionContext(reference_date=self.settings.reference_date)
        return ExecutionContext()

    def run(self, context: ExecutionContext | None = None) -> ValidationReport:
        """
        Build the star schema and validate it.

        Args:
            context: Run context (a new one is created when omitted)

        Returns:
            ValidationReport with build rejections and check findings

        Raises:
            psycopg.Error: If the warehouse or source store fails
        """
        context = context or self.new_context()
        logger.info(f"Starting star schema run {context.run_id}", extra=context.log_extra())

        with log_operation("star_schema_run", logger=logger, run_id=context.run_id):
            results = self.build(context)
            build_findings = rejection_findings(results, context.run_id)
            report = self._validate(
                context,
                build_findings,
                first_step_order=len(BUILD_STAGES) + 1,
                build_summary={result.table_name: result.counts() for result in results},
            )

        logger.info(
            f"Run {context.run_id} finished with verdict {report.verdict.value}",
            extra={"run_id": context.run_id, "verdict": report.verdict.value, **report.summary()},
        )
        return report

    def validate(self, context: ExecutionContext | None = None) -> ValidationReport:
        """Run the validation stages only, against the current warehouse."""
        context = context or self.new_context()
        with log_operation("star_schema_validation", logger=logger, run_id=context.run_id):
            return self._validate(context, [], first_step_order=1)

    def build(self, context: ExecutionContext) -> list[BuildResult]:
        """
        Run the build stages.

        Returns:
            BuildResult of every table written, in build order
        """
        if self.reader is None:
            raise ValueError("A source reader is required to build the star schema")

        tracker = None
        if self.settings.audit_changes and self.audit_sink is not None:
            tracker = ChangeCaptureTracker(self.audit_sink, run_id=context.run_id)

        dimensions = DimensionBuilder(
            self.warehouse,
            self.allocator,
            context,
            refresh=self.settings.refresh_dimensions,
            fiscal_year_start_month=self.settings.fiscal_year_start_month,
            holidays=self.settings.holiday_dates,
            tracker=tracker,
        )
        facts_builder = FactBuilder(self.warehouse, self.allocator, context, tracker=tracker)
        bridges = BridgeBuilder(self.warehouse, context)
        readmissions = ReadmissionEngine(
            self.warehouse,
            context,
            window_days=self.settings.readmission_window_days,
            pairwise_threshold=self.settings.pairwise_threshold,
        )

        results: list[BuildResult] = []
        state: dict[str, Any] = {}

        def extract() -> list[BuildResult]:
            state["sources"] = self._extract()
            return []

        def build_dimensions() -> list[BuildResult]:
            sources = state["sources"]
            return [
                dimensions.build_specialties(sources["specialties"]),
                dimensions.build_departments(sources["departments"]),
                dimensions.build_patients(sources["patients"], self._first_encounters(sources["encounters"])),
                dimensions.build_providers(sources["providers"]),
                dimensions.build_diagnoses(sources["diagnoses"]),
                dimensions.build_procedures(sources["procedures"]),
                dimensions.build_encounter_types(e.encounter_type for e in sources["encounters"]),
            ]

        def build_facts() -> list[BuildResult]:
            sources = state["sources"]
            result, state["facts"] = facts_builder.build_batch(
                sources["encounters"],
                sources["encounter_diagnoses"],
                sources["encounter_procedures"],
                sources["billing"],
                dimensions.lookup,
            )
            return [result]

        def build_bridges() -> list[BuildResult]:
            sources = state["sources"]
            return [
                bridges.build_diagnoses(
                    state["facts"], group_by_encounter(sources["encounter_diagnoses"]), dimensions.lookup
                ),
                bridges.build_procedures(
                    state["facts"], group_by_encounter(sources["encounter_procedures"]), dimensions.lookup
                ),
            ]

        def analyze_readmissions() -> list[BuildResult]:
            annotations = readmissions.run()
            return [BuildResult(table_name=FactEncounter.table_name, updated=len(annotations))]

        def build_calendar() -> list[BuildResult]:
            return [dimensions.build_calendar(self.settings.calendar_start, self.settings.calendar_end)]

        stages: dict[str, Callable[[], list[BuildResult]]] = {
            "extract_sources": extract,
            "build_calendar": build_calendar,
            "build_dimensions": build_dimensions,
            "build_facts": build_facts,
            "build_bridges": build_bridges,
            "readmission_analysis": analyze_readmissions,
        }

        for step_order, stage_name in enumerate(BUILD_STAGES, start=1):
            stage_results = self._run_stage(context, stage_name, step_order, stages[stage_name])
            if stage_name != "readmission_analysis":
                results.extend(stage_results)

        if tracker is not None:
            tracker.flush()

        return results

    def _extract(self) -> dict[str, list]:
        return {
            "patients": self.reader.read_patients(),
            "specialties": self.reader.read_specialties(),
            "departments": self.reader.read_departments(),
            "providers": self.reader.read_providers(),
            "diagnoses": self.reader.read_diagnoses(),
            "procedures": self.reader.read_procedures(),
            "encounters": self.reader.read_encounters(),
            "encounter_diagnoses": self.reader.read_encounter_diagnoses(),
            "encounter_procedures": self.reader.read_encounter_procedures(),
            "billing": self.reader.read_billing(),
        }

    @staticmethod
    def _first_encounters(encounters) -> dict[int, datetime]:
        first: dict[int, datetime] = {}
        for encounter in encounters:
            if encounter.patient_id is None or encounter.encounter_date is None:
                continue
            current = first.get(encounter.patient_id)
            if current is None or encounter.encounter_date < current:
                first[encounter.patient_id] = encounter.encounter_date
        return first

    def _run_stage(
        self,
        context: ExecutionContext,
        stage_name: str,
        step_order: int,
        work: Callable[[], list[BuildResult]],
    ) -> list[BuildResult]:
        self._record(context, stage_name, step_order, "STARTED")
        started = time.time()

        try:
            with track_duration(stage_duration_seconds, stage=stage_name):
                with log_operation(stage_name, logger=logger, run_id=context.run_id):
                    results = work()
        except Exception as e:
            # store errors are fatal: record the failure, then propagate
            increment_counter(stage_runs_total, 1, stage=stage_name, status="FAILED")
            self._record(
                context, stage_name, step_order, "FAILED",
                duration_seconds=round(time.time() - started, 3),
                error_message=f"{type(e).__name__}: {e}",
            )
            raise

        rejected = sum(r.rejected for r in results)
        status = "WARNING" if rejected else "COMPLETED"
        increment_counter(stage_runs_total, 1, stage=stage_name, status=status)
        self._record(
            context, stage_name, step_order, status,
            rows_processed=sum(r.processed for r in results),
            rows_inserted=sum(r.inserted for r in results),
            rows_updated=sum(r.updated for r in results),
            rows_deleted=sum(r.deleted for r in results),
            duration_seconds=round(time.time() - started, 3),
            metadata={r.table_name: r.counts() for r in results},
        )
        return results

    def _validate(
        self,
        context: ExecutionContext,
        build_findings: list[ValidationFinding],
        first_step_order: int,
        build_summary: dict[str, dict[str, int]] | None = None,
    ) -> ValidationReport:
        engine = ValidationEngine(self.catalog, ledger=self.ledger, first_step_order=first_step_order)
        check_findings = engine.run(self.warehouse, context)
        findings = build_findings + check_findings
        self.warehouse.append_findings(findings)

        report = ValidationReport(
            run_id=context.run_id,
            started_at=context.started_at,
            finished_at=datetime.now(timezone.utc),
            reference_date=context.reference_date,
            findings=findings,
            build_summary=build_summary or {},
        )
        record_verdict(report.verdict.value)
        return report

    def _record(self, context: ExecutionContext, stage_name: str, step_order: int, status: str, **fields) -> None:
        self.ledger.record(StageEvent(
            run_id=context.run_id,
            procedure_name=PROCEDURE_NAME,
            stage_name=stage_name,
            step_order=step_order,
            status=status,
            **fields,
        ))
