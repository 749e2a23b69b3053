"""
Per-column value collection for relationship discovery.

A column is one leaf element path or one attribute path inside one file. Each
collector keeps the distinct values seen (bounded), a few samples and blank
counts, plus the name tokens used to judge whether two columns talk about the
same thing.
"""

import math
import re
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from ..models import ATTRIBUTE_PREFIX
from .config import AnalyzerConfig


GENERIC_TOKENS = frozenset({
    "data", "value", "values", "info", "list", "node", "detail", "attr", "attribute",
    "adddatanode", "group", "item", "items", "entry", "entries", "record", "records",
})

_TOKEN_SPLIT = re.compile(r'[^a-z0-9]+')


def tokenize_name(name: Optional[str]) -> Tuple[str, ...]:
    """Meaningful lower-case tokens of a column name, in order of appearance."""
    if not name:
        return ()
    cleaned = name.replace(ATTRIBUTE_PREFIX, "").replace("__", "_").lower()
    tokens = []
    for part in _TOKEN_SPLIT.split(cleaned):
        if part and part not in GENERIC_TOKENS and part not in tokens:
            tokens.append(part)
    return tuple(tokens)


def has_identifier_hint(column_name: str) -> bool:
    """Whether a column name looks like it names or identifies something."""
    lower = column_name.lower()
    if lower.endswith("id") or lower.endswith("_code") or "key" in lower:
        return True
    return lower.endswith("_name") or lower == "name" or "_item" in lower or lower == "item"


def is_numeric(value: Optional[str]) -> bool:
    if not value:
        return False
    try:
        float(value.strip())
    except ValueError:
        return False
    return True


def token_similarity(left: FrozenSet[str], right: FrozenSet[str]) -> float:
    """Jaccard similarity of two token sets."""
    if not left or not right:
        return 0.0
    intersection = left & right
    if not intersection:
        return 0.0
    return len(intersection) / len(left | right)


class SemanticKind(Enum):
    ID = "id"
    CODE = "code"
    NAME = "name"
    DESC = "desc"
    ENUM = "enum"
    NUMERIC = "numeric"
    OTHER = "other"

    @property
    def is_id_like(self) -> bool:
        return self in (SemanticKind.ID, SemanticKind.CODE)

    def is_compatible_with(self, other: 'SemanticKind') -> bool:
        return self == other or (self.is_id_like and other.is_id_like)


class ColumnCollector:
    """
    Values observed for one (file, path) column.

    Args:
        file_key: File path relative to its base directory, ``/`` separated
        column_path: Element path inside the file; attributes end in ``/@name``
        column_name: Local element or attribute name
        attribute: Whether the column is an attribute
    """

    def __init__(self, file_key: str, column_path: str, column_name: str, attribute: bool = False):
        self.file_key = file_key
        self.column_path = column_path
        self.column_name = column_name
        self.attribute = attribute
        self.name_tokens = frozenset(tokenize_name(column_name))
        self.total_count = 0
        self.blank_count = 0
        self.overflow = False
        # dict keeps first-seen order for deterministic samples
        self._values: Dict[str, None] = {}
        self._samples: List[str] = []

    def __repr__(self):
        return f"ColumnCollector({self.file_key!r}, {self.column_path!r})"

    @property
    def key(self) -> Tuple[str, str]:
        return self.file_key, self.column_path

    @property
    def values(self):
        return self._values.keys()

    @property
    def samples(self) -> List[str]:
        return list(self._samples)

    @property
    def unique_value_count(self) -> int:
        return len(self._values)

    @property
    def populated_count(self) -> int:
        return self.total_count - self.blank_count

    def add_value(self, raw_value: Optional[str], config: AnalyzerConfig) -> None:
        self.total_count += 1
        value = raw_value.strip() if raw_value is not None else ''
        if not value:
            self.blank_count += 1
            return
        if len(value) > config.max_value_length:
            return
        if value in self._values:
            return
        if self.overflow or len(self._values) >= config.max_unique_values_per_column:
            self.overflow = True
            return
        self._values[value] = None
        if len(self._samples) < config.sample_size:
            self._samples.append(value)

    def has_token(self, token: str) -> bool:
        return token.lower() in self.name_tokens

    @property
    def has_identifier_hint(self) -> bool:
        return has_identifier_hint(self.column_name)

    def same_file(self, other: 'ColumnCollector') -> bool:
        return self.file_key == other.file_key

    def is_likely_key(self, config: AnalyzerConfig) -> bool:
        """
        Whether the column can be the target of a relationship.

        Only name columns qualify, and only when their values are nearly unique.
        """
        if self.overflow or not self._values:
            return False
        populated = self.populated_count
        if populated < config.min_rows_for_key:
            return False
        lower = self.column_name.lower()
        if lower.endswith("_name") or lower == "name":
            return len(self._values) / populated >= config.name_uniqueness
        return False

    def is_mostly_numeric(self) -> bool:
        if not self._samples:
            return False
        numeric = sum(1 for sample in self._samples if is_numeric(sample))
        return numeric >= max(2, int(math.floor(len(self._samples) * 0.6 + 0.5)))

    def is_enum_like(self, config: AnalyzerConfig) -> bool:
        unique = len(self._values)
        if unique == 0 or unique > config.enum_max_unique_values:
            return False
        if self.is_mostly_numeric():
            return False
        return all(len(sample) <= config.enum_max_sample_length for sample in self._samples)

    def semantic_kind(self, config: AnalyzerConfig) -> SemanticKind:
        lower = self.column_name.lower()
        if self.has_token("name") or lower.endswith("_name") or lower == "name":
            return SemanticKind.NAME
        if self.has_token("id") or lower.endswith("_id") or lower == "id":
            return SemanticKind.ID
        if self.has_token("code") or lower.endswith("_code") or lower == "code":
            return SemanticKind.CODE
        if self.has_token("desc") or self.has_token("description") or "desc" in lower:
            return SemanticKind.DESC
        if self.is_enum_like(config):
            return SemanticKind.ENUM
        if self.is_mostly_numeric():
            return SemanticKind.NUMERIC
        return SemanticKind.OTHER
