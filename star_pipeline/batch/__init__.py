"""
Star schema build stages.
"""

from .bridge_builder import BridgeBuilder
from .dimension_builder import DimensionBuilder, DimensionLookup
from .fact_builder import FactBuilder
from .pipeline import StarSchemaPipeline
from .readmission import ReadmissionEngine

__all__ = [
    "StarSchemaPipeline",
    "DimensionBuilder",
    "DimensionLookup",
    "FactBuilder",
    "BridgeBuilder",
    "ReadmissionEngine",
]
