"""
Thresholds for relationship discovery.
"""

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict


@dataclass(frozen=True)
class AnalyzerConfig:
    """
    Tunable thresholds of the relationship analyzer.

    All values can be overridden from the settings file under
    ``relationship.<field_name>``.
    """
    min_source_coverage: float = 0.6
    min_target_coverage: float = 0.02
    min_match_count: int = 3
    min_rows_for_key: int = 5
    name_uniqueness: float = 0.95
    max_unique_values_per_column: int = 120_000
    max_value_length: int = 256
    sample_size: int = 5
    max_relationships_per_source: int = 5
    min_source_unique_values: int = 3
    source_coverage_weight: float = 0.7
    target_coverage_weight: float = 0.3
    min_name_token_similarity: float = 0.45
    min_id_name_token_similarity: float = 0.25
    enum_max_unique_values: int = 40
    enum_max_sample_length: int = 32

    def __post_init__(self):
        for name in ('min_source_coverage', 'min_target_coverage', 'name_uniqueness',
                     'min_name_token_similarity', 'min_id_name_token_similarity'):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1, got {value}")
        if self.max_unique_values_per_column <= 0:
            raise ValueError("max_unique_values_per_column must be positive")
        if self.sample_size < 0:
            raise ValueError("sample_size must not be negative")

    @classmethod
    def from_config_manager(cls, config_manager) -> 'AnalyzerConfig':
        """Defaults overridden by any ``relationship.*`` settings."""
        overrides = {}
        for spec in fields(cls):
            value = config_manager.get_property(f"relationship.{spec.name}")
            if value is not None:
                overrides[spec.name] = int(value) if spec.type in (int, 'int') else float(value)
        return cls(**overrides)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
