"""
Input validation utilities for the star-schema pipeline.

Checks the values that end up inside dynamically composed SQL (table and
column names from the check catalog) and the identifiers passed on the
command line, so a malformed catalog fails early instead of at query time.
"""

import re
import uuid
from datetime import date


class InputValidationError(ValueError):
    """Raised when input validation fails."""
    pass


RESERVED_KEYWORDS = {
    "select", "insert", "update", "delete", "drop", "create", "alter",
    "table", "database", "index", "view", "user", "grant", "revoke",
}


def sanitize_sql_identifier(identifier: str, field_name: str = "identifier") -> str:
    """
    Validate an SQL identifier (table or column name).

    Args:
        identifier: The identifier to check
        field_name: Name of the field (for error messages)

    Returns:
        The validated identifier, stripped of whitespace

    Raises:
        InputValidationError: If the identifier is unsafe

    Examples:
        >>> sanitize_sql_identifier("fact_encounters")
        'fact_encounters'
        >>> sanitize_sql_identifier("dim_patient; DROP TABLE x")  # doctest: +SKIP
        InputValidationError: identifier contains invalid characters
    """
    if not identifier or not isinstance(identifier, str):
        raise InputValidationError(f"{field_name} must be a non-empty string")

    identifier = identifier.strip()

    if not re.match(r'^[a-zA-Z_][a-zA-Z0-9_]*$', identifier):
        raise InputValidationError(
            f"{field_name} '{identifier}' contains invalid characters. "
            "SQL identifiers must start with a letter or underscore and contain only "
            "alphanumeric characters and underscores."
        )

    if len(identifier) > 63:  # PostgreSQL limit
        raise InputValidationError(f"{field_name} exceeds PostgreSQL maximum length of 63 characters")

    if identifier.lower() in RESERVED_KEYWORDS:
        raise InputValidationError(f"{field_name} '{identifier}' is a reserved SQL keyword")

    return identifier


def validate_run_id(run_id: str, field_name: str = "run_id") -> str:
    """
    Validate a run id (canonical UUID string).

    Examples:
        >>> validate_run_id("5f0c1f0e-8a43-4a4e-9d3e-2f1c0b7a9e11")
        '5f0c1f0e-8a43-4a4e-9d3e-2f1c0b7a9e11'
    """
    if not run_id or not isinstance(run_id, str):
        raise InputValidationError(f"{field_name} must be a non-empty string")

    run_id = run_id.strip()
    try:
        parsed = uuid.UUID(run_id)
    except ValueError as e:
        raise InputValidationError(f"{field_name} '{run_id}' is not a valid UUID") from e

    return str(parsed)


def validate_date_range(start: date, end: date, field_name: str = "calendar range") -> tuple[date, date]:
    """
    Validate an inclusive date range.

    Raises:
        InputValidationError: If start is after end
    """
    if start > end:
        raise InputValidationError(f"{field_name} start {start} is after end {end}")
    return start, end


def validate_file_path(file_path: str, field_name: str = "file_path") -> str:
    """
    Validate a file path for security.

    Rejects path traversal and null bytes.

    Examples:
        >>> validate_file_path("/data/extracts/encounters.parquet")
        '/data/extracts/encounters.parquet'
    """
    if not file_path or not isinstance(file_path, str):
        raise InputValidationError(f"{field_name} must be a non-empty string")

    file_path = file_path.strip()

    if not file_path:
        raise InputValidationError(f"{field_name} cannot be empty or whitespace-only")

    if ".." in file_path:
        raise InputValidationError(f"{field_name} contains path traversal characters (..)")

    if "\x00" in file_path:
        raise InputValidationError(f"{field_name} contains null bytes")

    if len(file_path) > 4096:  # Linux PATH_MAX
        raise InputValidationError(f"{field_name} exceeds maximum length of 4096 characters")

    return file_path
