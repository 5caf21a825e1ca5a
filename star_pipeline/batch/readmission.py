"""
Readmission analytics over fact_encounters.

Encounter B is a readmission of encounter A when both belong to the same
patient, B is not A, A has a discharge, and
A.discharge < B.admission <= A.discharge + window.

Two equivalent implementations are provided: a pairwise scan for small
patient histories and a sorted two-pointer sliding window for large ones.
"""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Iterable, NamedTuple

from star_pipeline.core.models import ExecutionContext, FactEncounter, ReadmissionAnnotation
from star_pipeline.observability.logger import get_logger
from star_pipeline.observability.metrics import readmissions_flagged, record_table_writes, set_gauge
from star_pipeline.warehouse.repository import WarehouseRepository

logger = get_logger(__name__)

DEFAULT_WINDOW_DAYS = 30
DEFAULT_PAIRWISE_THRESHOLD = 32


class EncounterTiming(NamedTuple):
    encounter_key: int
    patient_key: int
    admitted: datetime
    discharged: datetime | None

    @classmethod
    def from_fact(cls, fact: FactEncounter) -> "EncounterTiming":
        return cls(fact.encounter_key, fact.patient_key, fact.encounter_datetime, fact.discharge_datetime)


class _Tally:
    __slots__ = ("count", "first_gap", "is_readmission")

    def __init__(self):
        self.count = 0
        self.first_gap: timedelta | None = None
        self.is_readmission = False

    def add(self, gap: timedelta) -> None:
        self.count += 1
        if self.first_gap is None or gap < self.first_gap:
            self.first_gap = gap

    def annotation(self, encounter_key: int) -> ReadmissionAnnotation:
        return ReadmissionAnnotation(
            encounter_key=encounter_key,
            has_30day_readmission=self.count > 0,
            days_to_readmission=self.first_gap.days if self.first_gap is not None else None,
            readmission_count_30days=self.count,
            is_readmission=self.is_readmission,
        )


def pairwise_readmissions(
    encounters: list[EncounterTiming], window: timedelta
) -> dict[int, ReadmissionAnnotation]:
    """
    O(n^2) readmission scan of one patient's encounters.

    Returns:
        encounter_key -> annotation, for every encounter given
    """
    tallies = {e.encounter_key: _Tally() for e in encounters}
    for discharge in encounters:
        if discharge.discharged is None:
            continue
        horizon = discharge.discharged + window
        for readmit in encounters:
            if readmit.encounter_key == discharge.encounter_key:
                continue
            if discharge.discharged < readmit.admitted <= horizon:
                tallies[discharge.encounter_key].add(readmit.admitted - discharge.discharged)
                tallies[readmit.encounter_key].is_readmission = True
    return {key: tally.annotation(key) for key, tally in tallies.items()}


def windowed_readmissions(
    encounters: list[EncounterTiming], window: timedelta
) -> dict[int, ReadmissionAnnotation]:
    """
    O(n log n) readmission scan of one patient's encounters.

    Discharges are visited in time order while two pointers bound the
    admissions falling inside (discharge, discharge + window]; a second pass
    does the same from the admission side to set is_readmission.
    """
    tallies = {e.encounter_key: _Tally() for e in encounters}
    by_admission = sorted(encounters, key=lambda e: (e.admitted, e.encounter_key))
    admissions = [e.admitted for e in by_admission]
    by_discharge = sorted(
        (e for e in encounters if e.discharged is not None),
        key=lambda e: (e.discharged, e.encounter_key),
    )
    discharges = [e.discharged for e in by_discharge]

    lo = hi = 0
    for discharge in by_discharge:
        while lo < len(admissions) and admissions[lo] <= discharge.discharged:
            lo += 1
        while hi < len(admissions) and admissions[hi] <= discharge.discharged + window:
            hi += 1
        tally = tallies[discharge.encounter_key]
        for idx in range(lo, min(lo + 2, hi)):
            # the earliest admission in range that is not the discharge itself
            if by_admission[idx].encounter_key != discharge.encounter_key:
                tally.first_gap = admissions[idx] - discharge.discharged
                break
        own_admission_in_range = discharge.discharged < discharge.admitted <= discharge.discharged + window
        tally.count = hi - lo - (1 if own_admission_in_range else 0)

    lo = hi = 0
    for readmit in by_admission:
        while lo < len(discharges) and discharges[lo] < readmit.admitted - window:
            lo += 1
        while hi < len(discharges) and discharges[hi] < readmit.admitted:
            hi += 1
        own_discharge_in_range = (
            readmit.discharged is not None
            and readmit.admitted - window <= readmit.discharged < readmit.admitted
        )
        tallies[readmit.encounter_key].is_readmission = hi - lo - (1 if own_discharge_in_range else 0) > 0

    return {key: tally.annotation(key) for key, tally in tallies.items()}


class ReadmissionEngine:
    """
    Annotates every fact row with readmission metrics.

    Usage:
        engine = ReadmissionEngine(warehouse, context, window_days=30)
        annotations = engine.run()
    """

    def __init__(
        self,
        warehouse: WarehouseRepository,
        context: ExecutionContext,
        window_days: int = DEFAULT_WINDOW_DAYS,
        pairwise_threshold: int = DEFAULT_PAIRWISE_THRESHOLD,
    ):
        if window_days < 1:
            raise ValueError(f"window_days must be positive, got {window_days}")
        self.warehouse = warehouse
        self.context = context
        self.window = timedelta(days=window_days)
        self.pairwise_threshold = pairwise_threshold

    def annotate(self, facts: Iterable[FactEncounter]) -> list[ReadmissionAnnotation]:
        """
        Compute annotations per patient.

        Returns:
            One annotation per fact row, ordered by encounter_key
        """
        by_patient: dict[int, list[EncounterTiming]] = defaultdict(list)
        for fact in facts:
            by_patient[fact.patient_key].append(EncounterTiming.from_fact(fact))

        annotations: dict[int, ReadmissionAnnotation] = {}
        for encounters in by_patient.values():
            if len(encounters) > self.pairwise_threshold:
                annotations.update(windowed_readmissions(encounters, self.window))
            else:
                annotations.update(pairwise_readmissions(encounters, self.window))

        return [annotations[key] for key in sorted(annotations)]

    def run(self) -> list[ReadmissionAnnotation]:
        """Annotate all fact rows in the warehouse and write the results back."""
        facts = self.warehouse.load_facts().values()
        annotations = self.annotate(facts)
        updated = self.warehouse.apply_readmissions(annotations)

        flagged = sum(1 for a in annotations if a.has_30day_readmission)
        set_gauge(readmissions_flagged, flagged)
        record_table_writes(FactEncounter.table_name, updated=updated)

        logger.info(
            f"Readmission analysis: {flagged} of {len(annotations)} encounters readmitted "
            f"within {self.window.days} days",
            extra={"run_id": self.context.run_id, "flagged": flagged, "encounters": len(annotations)},
        )
        return annotations
