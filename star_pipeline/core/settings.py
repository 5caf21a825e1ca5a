"""
Pipeline settings.

Values come from, in increasing precedence: model defaults, a YAML file
(config/pipeline.yaml by default) and STAR_* environment variables
(STAR_READMISSION_WINDOW_DAYS=45 overrides readmission_window_days).
"""

import os
from datetime import date
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

DEFAULT_SETTINGS_PATH = Path("config") / "pipeline.yaml"
ENV_PREFIX = "STAR_"


class PipelineSettings(BaseModel):
    """
    Run configuration.

    Attributes:
        calendar_start: First day materialized in dim_date
        calendar_end: Last day materialized in dim_date
        fiscal_year_start_month: First month of the fiscal year (1 = January)
        holidays: Fixed-date holidays as "MM-DD" strings
        readmission_window_days: Readmission window length
        pairwise_threshold: Encounter count above which the sliding window
            algorithm replaces the pairwise scan
        refresh_dimensions: Update descriptive fields of existing dimension rows
        reference_date: "Today" for ages and future-date checks (None = today)
        catalog_path: YAML check catalog (None = built-in catalog)
        report_path: Where the JSON validation report is written
        audit_changes: Capture patient/diagnosis/encounter changes
    """

    calendar_start: date = date(2020, 1, 1)
    calendar_end: date = date(2030, 12, 31)
    fiscal_year_start_month: int = Field(1, ge=1, le=12)
    holidays: list[str] = Field(default_factory=list)
    readmission_window_days: int = Field(30, ge=1)
    pairwise_threshold: int = Field(32, ge=1)
    refresh_dimensions: bool = False
    reference_date: date | None = None
    catalog_path: str | None = None
    report_path: str = "reports/validation_report.json"
    audit_changes: bool = True

    class Config:
        extra = "forbid"

    @field_validator("holidays", mode="before")
    @classmethod
    def split_holidays(cls, v):
        """Accept a comma-separated string (environment variables)."""
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v

    @field_validator("holidays")
    @classmethod
    def check_holiday_format(cls, v):
        for holiday in v:
            month, _, day = holiday.partition("-")
            if not (month.isdigit() and day.isdigit() and 1 <= int(month) <= 12 and 1 <= int(day) <= 31):
                raise ValueError(f"Holiday '{holiday}' must be formatted MM-DD")
        return v

    @model_validator(mode="after")
    def check_calendar_range(self):
        if self.calendar_start > self.calendar_end:
            raise ValueError("calendar_start must not be after calendar_end")
        return self

    @property
    def holiday_dates(self) -> set[tuple[int, int]]:
        return {(int(h.split("-")[0]), int(h.split("-")[1])) for h in self.holidays}


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides = {}
    for field_name in PipelineSettings.model_fields:
        value = environ.get(f"{ENV_PREFIX}{field_name.upper()}")
        if value is not None:
            overrides[field_name] = value
    return overrides


def load_settings(path: str | Path | None = None, environ: Mapping[str, str] | None = None) -> PipelineSettings:
    """
    Load settings from YAML and the environment.

    Args:
        path: YAML file; when None, config/pipeline.yaml is used if present
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated PipelineSettings

    Raises:
        FileNotFoundError: If an explicit path does not exist
        ValueError: If a value is invalid
    """
    values: dict[str, Any] = {}

    if path is not None:
        settings_path = Path(path)
        if not settings_path.exists():
            raise FileNotFoundError(f"Settings file not found: {path}")
    else:
        settings_path = DEFAULT_SETTINGS_PATH if DEFAULT_SETTINGS_PATH.exists() else None

    if settings_path is not None:
        with open(settings_path) as f:
            loaded = yaml.safe_load(f) or {}
        values.update(loaded.get("pipeline", loaded))

    values.update(_env_overrides(os.environ if environ is None else environ))

    try:
        return PipelineSettings(**values)
    except ValidationError as e:
        raise ValueError(f"Invalid pipeline settings: {e}") from e
