"""
Change capture for the compliance audit trail.

Which fields get logged, and where the patient id comes from, is decided by
an explicit registry of extractors per table. Tables without a registered
extractor produce no audit entries.
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Any, Callable, NamedTuple

from star_pipeline.core.models import ChangeAuditEntry
from star_pipeline.observability.logger import get_logger
from star_pipeline.warehouse.audit import insert_change_audit_batch
from star_pipeline.warehouse.connection import DatabaseConnectionPool

logger = get_logger(__name__)

OPERATIONS = ("INSERT", "UPDATE", "DELETE")


class PatientFields(NamedTuple):
    patient_id: int | None
    mrn: str | None
    first_name: str | None
    last_name: str | None
    date_of_birth: date | None
    gender: str | None


class DiagnosisFields(NamedTuple):
    diagnosis_id: int | None
    icd10_code: str | None
    icd10_description: str | None


class EncounterFields(NamedTuple):
    encounter_id: int | None
    patient_key: int | None
    provider_key: int | None
    total_claim_amount: Decimal | None
    total_allowed_amount: Decimal | None


class ChangeExtractor(NamedTuple):
    """
    How one table is audited.

    Attributes:
        event_prefix: Prefix of the event type code ("PATIENT")
        record_id_field: Row field used as the audited record id
        extract: Row -> NamedTuple of the fields to log
        patient_id: Row -> patient natural key, None when not derivable
    """

    event_prefix: str
    record_id_field: str
    extract: Callable[[dict[str, Any]], NamedTuple]
    patient_id: Callable[[dict[str, Any]], int | None] | None = None


def _fields(fields_type: type) -> Callable[[dict[str, Any]], NamedTuple]:
    def extract(row: dict[str, Any]) -> NamedTuple:
        return fields_type(*(row.get(name) for name in fields_type._fields))
    return extract


def _patient_id(row: dict[str, Any]) -> int | None:
    return row.get("patient_id")


class ExtractorRegistry:
    """Table name -> ChangeExtractor."""

    def __init__(self):
        self._extractors: dict[str, ChangeExtractor] = {}

    def register(self, table_name: str, extractor: ChangeExtractor) -> "ExtractorRegistry":
        self._extractors[table_name] = extractor
        return self

    def get(self, table_name: str) -> ChangeExtractor | None:
        return self._extractors.get(table_name)

    def __contains__(self, table_name: str) -> bool:
        return table_name in self._extractors


def default_registry() -> ExtractorRegistry:
    """Extractors for the audited warehouse tables."""
    registry = ExtractorRegistry()
    registry.register("dim_patient", ChangeExtractor("PATIENT", "patient_id", _fields(PatientFields), _patient_id))
    registry.register("dim_diagnosis", ChangeExtractor("DIAGNOSIS", "diagnosis_id", _fields(DiagnosisFields)))
    registry.register("fact_encounters", ChangeExtractor("ENCOUNTER", "encounter_id", _fields(EncounterFields)))
    return registry


class AuditSink(ABC):
    """Destination of flushed audit entries."""

    @abstractmethod
    def write(self, entries: list[ChangeAuditEntry]) -> int:
        """Persist entries; returns the number written."""


class InMemoryAuditSink(AuditSink):
    def __init__(self):
        self.entries: list[ChangeAuditEntry] = []

    def write(self, entries: list[ChangeAuditEntry]) -> int:
        self.entries.extend(entries)
        return len(entries)


class PostgresAuditSink(AuditSink):
    """Writes to the change_audit_log table."""

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def write(self, entries: list[ChangeAuditEntry]) -> int:
        return insert_change_audit_batch(self.pool, entries)


class ChangeCaptureTracker:
    """
    Buffers change audit entries and flushes them to a sink.

    Usage:
        with ChangeCaptureTracker(sink, run_id=ctx.run_id) as tracker:
            tracker.capture("dim_patient", "UPDATE", row)
    """

    def __init__(
        self,
        sink: AuditSink,
        registry: ExtractorRegistry | None = None,
        run_id: str | None = None,
        batch_size: int = 100,
    ):
        """
        Args:
            sink: Where flushed entries go
            registry: Table extractors (default_registry() when omitted)
            run_id: Run the captured changes belong to
            batch_size: Number of entries to buffer before auto-flush
        """
        self.sink = sink
        self.registry = registry or default_registry()
        self.run_id = run_id
        self.batch_size = batch_size
        self._pending: list[ChangeAuditEntry] = []

    @property
    def pending(self) -> int:
        return len(self._pending)

    def capture(self, table_name: str, operation: str, row: dict[str, Any]) -> ChangeAuditEntry | None:
        """
        Record a change to one row.

        Args:
            table_name: Table that changed
            operation: INSERT, UPDATE or DELETE
            row: Row values after the change (before it, for DELETE)

        Returns:
            The buffered entry, or None when the table has no extractor
        """
        operation = operation.upper()
        if operation not in OPERATIONS:
            raise ValueError(f"Unsupported operation: {operation}")

        extractor = self.registry.get(table_name)
        if extractor is None:
            logger.debug(f"No change extractor registered for {table_name}")
            return None

        record_id = row.get(extractor.record_id_field)
        entry = ChangeAuditEntry(
            run_id=self.run_id,
            event_type_code=f"{extractor.event_prefix}_{operation}",
            table_name=table_name,
            operation_type=operation,
            record_id=str(record_id) if record_id is not None else None,
            patient_id=extractor.patient_id(row) if extractor.patient_id else None,
            captured_fields=extractor.extract(row)._asdict(),
        )
        self._pending.append(entry)

        if len(self._pending) >= self.batch_size:
            self.flush()

        return entry

    def flush(self) -> int:
        """Write all pending entries to the sink."""
        if not self._pending:
            return 0

        count = self.sink.write(list(self._pending))
        self._pending.clear()
        logger.info(f"Flushed {count} change audit entries")
        return count

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.flush()
        elif self._pending:
            logger.warning(f"Discarding {len(self._pending)} change audit entries after failure")
            self._pending.clear()
        return False
