"""
Build outcome models: per-table counts and rejected source records.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field

from star_pipeline.core.exceptions import MissingNaturalKey, UnresolvedDimensionReference


class BuildRejection(BaseModel):
    """
    A source record a builder could not turn into a warehouse row.

    Attributes:
        table_name: Target warehouse table
        reason: Exception class name
        natural_key: Natural key of the rejected record, when it has one
        dimension: Unresolved dimension (UnresolvedDimensionReference only)
        referenced_key: Natural key that failed to resolve
        message: Human-readable reason
    """

    table_name: str
    reason: Literal["MissingNaturalKey", "UnresolvedDimensionReference"]
    natural_key: Any = None
    dimension: str | None = None
    referenced_key: Any = None
    message: str

    @classmethod
    def from_error(
        cls,
        table_name: str,
        error: MissingNaturalKey | UnresolvedDimensionReference,
        natural_key: Any = None,
    ) -> "BuildRejection":
        if isinstance(error, UnresolvedDimensionReference):
            return cls(
                table_name=table_name,
                reason="UnresolvedDimensionReference",
                natural_key=natural_key,
                dimension=error.dimension,
                referenced_key=error.natural_key,
                message=str(error),
            )
        return cls(
            table_name=table_name,
            reason="MissingNaturalKey",
            natural_key=natural_key,
            message=str(error),
        )


class BuildResult(BaseModel):
    """
    Counts of one build operation.

    inserted + updated + unchanged equals the number of distinct natural keys
    accepted; duplicates and rejections account for the rest of the input.
    deleted is only used by bridge replacement.
    """

    table_name: str
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    duplicates: int = 0
    deleted: int = 0
    rejections: list[BuildRejection] = Field(default_factory=list)

    @property
    def rejected(self) -> int:
        return len(self.rejections)

    @property
    def processed(self) -> int:
        return self.inserted + self.updated + self.unchanged + self.duplicates + self.rejected

    def counts(self) -> dict[str, int]:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "duplicates": self.duplicates,
            "deleted": self.deleted,
            "rejected": self.rejected,
        }
