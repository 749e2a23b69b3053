"""
Relationship analysis results and their JSON report.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Union

from .config import AnalyzerConfig


logger = logging.getLogger(__name__)


@dataclass
class Relationship:
    """A source column whose values are largely found in a target key column."""
    source_file: str
    source_column: str
    source_path: str
    target_file: str
    target_column: str
    target_path: str
    match_count: int
    source_coverage: float
    target_coverage: float
    confidence: float
    name_similarity: float
    sample_values: List[str] = field(default_factory=list)

    @property
    def formatted_source(self) -> str:
        return f"{self.source_file} :: {self.source_path}"

    @property
    def formatted_target(self) -> str:
        return f"{self.target_file} :: {self.target_path}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source_file': self.source_file,
            'source_column': self.source_column,
            'source_path': self.source_path,
            'target_file': self.target_file,
            'target_column': self.target_column,
            'target_path': self.target_path,
            'match_count': self.match_count,
            'source_coverage': self.source_coverage,
            'target_coverage': self.target_coverage,
            'confidence': self.confidence,
            'name_similarity': self.name_similarity,
            'sample_values': list(self.sample_values),
        }


@dataclass
class RelationshipReport:
    """Outcome of one analysis run."""
    base_directories: List[str]
    config: AnalyzerConfig
    relationships: List[Relationship] = field(default_factory=list)
    column_count: int = 0
    key_column_count: int = 0
    files_scanned: int = 0
    files_failed: List[str] = field(default_factory=list)
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def empty(cls, base_directories: List[Union[str, Path]], config: AnalyzerConfig) -> 'RelationshipReport':
        return cls([str(d) for d in base_directories], config)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'generated_at': self.generated_at.isoformat(),
            'base_directories': list(self.base_directories),
            'relationship_count': len(self.relationships),
            'config': self.config.to_dict(),
            'relationships': [r.to_dict() for r in self.relationships],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    def persist_report(self, path: Union[str, Path]) -> Path:
        """Write the JSON report, creating parent directories."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_json(), encoding='utf-8')
        logger.info(f"Relationship analysis report written to {path}")
        return path
