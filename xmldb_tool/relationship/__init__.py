"""
Relationship discovery between columns of an XML corpus.
"""

from .analyzer import AnalysisCancelled, RelationshipAnalyzer
from .collector import ColumnCollector, SemanticKind, tokenize_name
from .config import AnalyzerConfig
from .report import Relationship, RelationshipReport

__all__ = [
    'AnalysisCancelled',
    'AnalyzerConfig',
    'ColumnCollector',
    'Relationship',
    'RelationshipAnalyzer',
    'RelationshipReport',
    'SemanticKind',
    'tokenize_name',
]
