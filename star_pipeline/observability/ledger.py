"""
Execution ledger: start and end events for every pipeline stage.

Recording is best-effort. A ledger that cannot write logs the problem and
the run carries on.
"""

from abc import ABC, abstractmethod

from psycopg.types.json import Jsonb

from star_pipeline.core.models import StageEvent
from star_pipeline.observability.logger import get_logger
from star_pipeline.observability.metrics import errors_total, increment_counter
from star_pipeline.warehouse.connection import DatabaseConnectionPool

logger = get_logger(__name__)


class ExecutionLedger(ABC):
    """Base class for ledger implementations."""

    def record(self, event: StageEvent) -> None:
        """Write an event; failures are logged and dropped."""
        try:
            self._write(event)
        except Exception as e:
            increment_counter(errors_total, 1, error_type=type(e).__name__, component="ledger")
            logger.error(
                f"Ledger write failed for stage {event.stage_name}: {e}",
                extra={"run_id": event.run_id},
                exc_info=True,
            )

    @abstractmethod
    def _write(self, event: StageEvent) -> None:
        """Persist one event."""


class LoggingLedger(ExecutionLedger):
    """Ledger that only emits structured log lines."""

    def _write(self, event: StageEvent) -> None:
        logger.info(
            f"Stage {event.stage_name} {event.status}",
            extra={
                "run_id": event.run_id,
                "stage": event.stage_name,
                "step_order": event.step_order,
                "status": event.status,
                "rows_processed": event.rows_processed,
                "rows_inserted": event.rows_inserted,
                "rows_updated": event.rows_updated,
                "rows_deleted": event.rows_deleted,
                "duration_seconds": event.duration_seconds,
                "error_message": event.error_message,
            },
        )


class InMemoryLedger(ExecutionLedger):
    def __init__(self):
        self.events: list[StageEvent] = []

    def _write(self, event: StageEvent) -> None:
        self.events.append(event)

    def events_for(self, stage_name: str) -> list[StageEvent]:
        return [event for event in self.events if event.stage_name == stage_name]


class PostgresLedger(ExecutionLedger):
    """Writes to the etl_execution_log table."""

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def _write(self, event: StageEvent) -> None:
        self.pool.execute_command(
            """
            INSERT INTO etl_execution_log (
                run_id, procedure_name, step_name, step_order, status,
                rows_processed, rows_inserted, rows_updated, rows_deleted,
                duration_seconds, error_message, metadata, recorded_at
            ) VALUES (
                %(run_id)s, %(procedure_name)s, %(stage_name)s, %(step_order)s, %(status)s,
                %(rows_processed)s, %(rows_inserted)s, %(rows_updated)s, %(rows_deleted)s,
                %(duration_seconds)s, %(error_message)s, %(metadata)s, %(recorded_at)s
            )
            """,
            {**event.model_dump(exclude={"metadata"}), "metadata": Jsonb(event.metadata)},
        )
