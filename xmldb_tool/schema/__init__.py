"""
Schema module - table layout inference, persistence and DDL generation.
"""

from .value_stats import ValueStatsCollector, PathStats
from .inference import SchemaInferenceEngine, InferenceConfig, InferenceResult, SchemaConflict
from .table_forest import TableForest, TableNode
from .ddl_generator import DdlGenerator
from .conf_store import TableConfStore

__all__ = [
    'ValueStatsCollector',
    'PathStats',
    'SchemaInferenceEngine',
    'InferenceConfig',
    'InferenceResult',
    'SchemaConflict',
    'TableForest',
    'TableNode',
    'DdlGenerator',
    'TableConfStore'
]
