"""
Surrogate key allocation.

Keys are handed out per named sequence (one per dimension plus
`fact_encounters`). The counter storage is injected, so tests use the
in-memory store while production runs share a PostgreSQL counter table.
"""

import threading
from abc import ABC, abstractmethod

from star_pipeline.observability.logger import get_logger
from star_pipeline.observability.metrics import increment_counter, surrogate_keys_allocated_total
from star_pipeline.utils.validation import sanitize_sql_identifier

from .connection import DatabaseConnectionPool

logger = get_logger(__name__)


class KeyCounterStore(ABC):
    """Storage for per-sequence counters."""

    @abstractmethod
    def reserve(self, sequence: str, count: int) -> int:
        """
        Atomically advance a sequence.

        Args:
            sequence: Sequence name
            count: Number of keys to reserve (>= 1)

        Returns:
            The first key of the reserved block; keys are
            first .. first + count - 1
        """

    @abstractmethod
    def current(self, sequence: str) -> int:
        """Last key handed out (0 when the sequence is unused)."""

    @abstractmethod
    def advance_to(self, sequence: str, value: int) -> None:
        """Move the counter forward to at least `value` (never backwards)."""


class InMemoryKeyCounterStore(KeyCounterStore):
    """Process-local counters guarded by one lock per sequence."""

    def __init__(self):
        self._counters: dict[str, int] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, sequence: str) -> threading.Lock:
        with self._registry_lock:
            return self._locks.setdefault(sequence, threading.Lock())

    def reserve(self, sequence: str, count: int) -> int:
        with self._lock_for(sequence):
            first = self._counters.get(sequence, 0) + 1
            self._counters[sequence] = first + count - 1
            return first

    def current(self, sequence: str) -> int:
        with self._lock_for(sequence):
            return self._counters.get(sequence, 0)

    def advance_to(self, sequence: str, value: int) -> None:
        with self._lock_for(sequence):
            self._counters[sequence] = max(self._counters.get(sequence, 0), value)


class PostgresKeyCounterStore(KeyCounterStore):
    """
    Counters in the `surrogate_key_counters` table.

    Each reservation is a single-row upsert, so concurrent allocators
    never receive overlapping blocks.
    """

    def __init__(self, pool: DatabaseConnectionPool, table_name: str = "surrogate_key_counters"):
        self.pool = pool
        self.table_name = sanitize_sql_identifier(table_name, "table_name")

    def reserve(self, sequence: str, count: int) -> int:
        with self.pool.transaction() as cur:
            cur.execute(
                f"""
                INSERT INTO {self.table_name} (sequence_name, last_value)
                VALUES (%(sequence)s, %(count)s)
                ON CONFLICT (sequence_name) DO UPDATE
                    SET last_value = {self.table_name}.last_value + EXCLUDED.last_value
                RETURNING last_value
                """,
                {"sequence": sequence, "count": count},
            )
            last_value = cur.fetchone()["last_value"]
        return last_value - count + 1

    def current(self, sequence: str) -> int:
        rows = self.pool.execute_query(
            f"SELECT last_value FROM {self.table_name} WHERE sequence_name = %s",
            (sequence,),
        )
        return rows[0]["last_value"] if rows else 0

    def advance_to(self, sequence: str, value: int) -> None:
        self.pool.execute_command(
            f"""
            INSERT INTO {self.table_name} (sequence_name, last_value)
            VALUES (%(sequence)s, %(value)s)
            ON CONFLICT (sequence_name) DO UPDATE
                SET last_value = GREATEST({self.table_name}.last_value, EXCLUDED.last_value)
            """,
            {"sequence": sequence, "value": value},
        )


class KeyAllocator:
    """
    Hands out surrogate keys for unseen natural keys.

    The allocator itself holds no state beyond its store; two allocators
    over the same store never hand out the same key.
    """

    def __init__(self, store: KeyCounterStore | None = None):
        self.store = store or InMemoryKeyCounterStore()

    def next_key(self, sequence: str) -> int:
        return self.allocate(sequence, 1)[0]

    def allocate(self, sequence: str, count: int) -> list[int]:
        """
        Reserve `count` consecutive keys.

        Args:
            sequence: Sequence name (usually the table name)
            count: Number of keys needed

        Returns:
            List of new keys, ascending
        """
        if count <= 0:
            return []
        first = self.store.reserve(sequence, count)
        increment_counter(surrogate_keys_allocated_total, count, sequence=sequence)
        logger.debug(f"Allocated {count} keys for {sequence} starting at {first}")
        return list(range(first, first + count))

    def sync(self, sequence: str, max_existing_key: int) -> None:
        """
        Make sure future keys are above keys already in the warehouse.

        Used when the counter store is newer than the data it guards.
        """
        if max_existing_key > 0:
            self.store.advance_to(sequence, max_existing_key)
