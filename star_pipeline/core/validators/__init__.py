"""
Validation check implementations.

Provides structural, type, integrity, business-rule and referential checks
run by the validation engine.
"""

from .base_check import SEVERITY_BY_CHECK_TYPE, BaseCheck, sample_values
from .business_rules import (
    AllowedValuesCheck,
    DateAfterReferenceCheck,
    DateOrderCheck,
    NotInFutureCheck,
    PatternCheck,
)
from .integrity import BridgeCountCheck, NotNullCheck, UniqueCheck
from .referential import DimensionLinkCheck, ForeignKeyCheck
from .structural import ColumnExistsCheck, ColumnTypeCheck, TableExistsCheck, type_family

__all__ = [
    "BaseCheck",
    "SEVERITY_BY_CHECK_TYPE",
    "sample_values",
    "TableExistsCheck",
    "ColumnExistsCheck",
    "ColumnTypeCheck",
    "type_family",
    "NotNullCheck",
    "UniqueCheck",
    "BridgeCountCheck",
    "NotInFutureCheck",
    "DateOrderCheck",
    "DateAfterReferenceCheck",
    "AllowedValuesCheck",
    "PatternCheck",
    "ForeignKeyCheck",
    "DimensionLinkCheck",
]
