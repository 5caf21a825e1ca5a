"""
Source reader interface and the in-memory implementation.

Builders never query the operational system directly; they receive typed
source records from a SourceReader.
"""

from abc import ABC, abstractmethod
from typing import Any, Iterable

from pydantic import BaseModel

from star_pipeline.core.models import (
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

# Operational table -> record model
SOURCE_MODELS: dict[str, type[BaseModel]] = {
    "patients": PatientSource,
    "specialties": SpecialtySource,
    "departments": DepartmentSource,
    "providers": ProviderSource,
    "diagnoses": DiagnosisSource,
    "procedures": ProcedureSource,
    "encounters": EncounterSource,
    "encounter_diagnoses": EncounterDiagnosisSource,
    "encounter_procedures": EncounterProcedureSource,
    "billing": BillingSource,
}


class SourceReader(ABC):
    """
    Reads operational records, one method per entity type.

    Implementations only provide `_read_rows`; parsing into the source
    models happens here so every reader yields the same types.
    """

    @abstractmethod
    def _read_rows(self, table_name: str) -> Iterable[dict[str, Any]]:
        """Raw rows of an operational table."""

    def read(self, table_name: str) -> list[BaseModel]:
        model = SOURCE_MODELS[table_name]
        return [model(**row) for row in self._read_rows(table_name)]

    def read_patients(self) -> list[PatientSource]:
        return self.read("patients")

    def read_specialties(self) -> list[SpecialtySource]:
        return self.read("specialties")

    def read_departments(self) -> list[DepartmentSource]:
        return self.read("departments")

    def read_providers(self) -> list[ProviderSource]:
        return self.read("providers")

    def read_diagnoses(self) -> list[DiagnosisSource]:
        return self.read("diagnoses")

    def read_procedures(self) -> list[ProcedureSource]:
        return self.read("procedures")

    def read_encounters(self) -> list[EncounterSource]:
        return self.read("encounters")

    def read_encounter_diagnoses(self) -> list[EncounterDiagnosisSource]:
        return self.read("encounter_diagnoses")

    def read_encounter_procedures(self) -> list[EncounterProcedureSource]:
        return self.read("encounter_procedures")

    def read_billing(self) -> list[BillingSource]:
        return self.read("billing")


class InMemorySourceReader(SourceReader):
    """
    Serves records from dictionaries or models held in memory.

    Args:
        tables: operational table name -> rows (dicts or source models);
            missing tables read as empty
    """

    def __init__(self, tables: dict[str, list[Any]] | None = None):
        unknown = set(tables or {}) - set(SOURCE_MODELS)
        if unknown:
            raise ValueError(f"Unknown source tables: {sorted(unknown)}")
        self.tables = tables or {}

    def _read_rows(self, table_name: str) -> Iterable[dict[str, Any]]:
        for row in self.tables.get(table_name, []):
            yield row.model_dump() if isinstance(row, BaseModel) else dict(row)
