"""
Validation engine and check catalog management.
"""

from .rule_config import RuleConfigBuilder, RuleConfigLoader, default_catalog, schema_checks
from .rule_engine import ValidationEngine

__all__ = [
    "ValidationEngine",
    "RuleConfigLoader",
    "RuleConfigBuilder",
    "default_catalog",
    "schema_checks",
]
