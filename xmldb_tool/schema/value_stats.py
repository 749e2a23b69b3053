"""
Structural statistics gathered from XML documents for schema inference.

A single walk over each document records, per element path, how often the element
occurs, whether it carries children, its longest text, how often it repeats under
one parent and which child elements and attributes it has. Child tags are kept in
document order merged across all occurrences.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from ..parsing.xml_parser import element_children, local_name


Path = Tuple[str, ...]


@dataclass
class PathStats:
    """Statistics for every element reachable by the same tag path."""
    path: Path
    occurrences: int = 0
    leaf_occurrences: int = 0
    nonleaf_occurrences: int = 0
    max_length: int = 0
    value_count: int = 0
    max_siblings: int = 0
    child_tags: List[str] = field(default_factory=list)
    attributes: Dict[str, int] = field(default_factory=dict)

    @property
    def tag(self) -> str:
        return self.path[-1]

    @property
    def is_leaf(self) -> bool:
        """True when the element never had child elements."""
        return self.nonleaf_occurrences == 0

    @property
    def repeats(self) -> bool:
        return self.max_siblings > 1

    @property
    def xml_path(self) -> str:
        return '/'.join(self.path)

    def child_tag_list(self) -> List[str]:
        return list(self.child_tags)

    def merge_child_order(self, tags: List[str]) -> None:
        """
        Fold the child order of one element into the known order.

        A tag not seen before is placed right after its nearest preceding known
        sibling in this element, so optional elements keep their document position
        even when the first records lack them.
        """
        for index, tag in enumerate(tags):
            if tag in self.child_tags:
                continue
            position = 0
            for previous in reversed(tags[:index]):
                if previous in self.child_tags:
                    position = self.child_tags.index(previous) + 1
                    break
            self.child_tags.insert(position, tag)


class ValueStatsCollector:
    """
    Accumulates PathStats across any number of documents.

    Usage:
        collector = ValueStatsCollector()
        collector.collect(root)
        stats = collector.get(('quests', 'quest', 'name'))
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._stats: Dict[Path, PathStats] = {}
        self.documents = 0

    def collect(self, root) -> None:
        """Walk one document tree and fold its statistics into the collector."""
        root_path = (local_name(root),)
        root_stats = self._stats_for(root_path)
        root_stats.max_siblings = max(root_stats.max_siblings, 1)

        # Iterative walk; deep game data nests far enough to make recursion awkward
        stack = [(root, root_path)]
        while stack:
            element, path = stack.pop()
            stats = self._stats_for(path)
            stats.occurrences += 1

            for name, value in element.attrib.items():
                attr = self._attribute_name(name)
                stats.attributes[attr] = max(stats.attributes.get(attr, 0), len(value))

            children = element_children(element)
            if not children:
                stats.leaf_occurrences += 1
                text = element.text or ''
                stats.max_length = max(stats.max_length, len(text))
                if text:
                    stats.value_count += 1
                continue

            stats.nonleaf_occurrences += 1
            counts = Counter()
            child_paths = []
            for child in children:
                tag = local_name(child)
                counts[tag] += 1
                child_paths.append((child, path + (tag,)))

            stats.merge_child_order(list(counts))
            for tag, count in counts.items():
                child_stats = self._stats_for(path + (tag,))
                child_stats.max_siblings = max(child_stats.max_siblings, count)

            # Reverse so children are visited in document order
            stack.extend(reversed(child_paths))

        self.documents += 1

    def collect_all(self, roots: Iterable) -> None:
        for root in roots:
            self.collect(root)

    def get(self, path: Path) -> Optional[PathStats]:
        return self._stats.get(tuple(path))

    def paths(self) -> List[Path]:
        return list(self._stats)

    def __contains__(self, path) -> bool:
        return tuple(path) in self._stats

    def _stats_for(self, path: Path) -> PathStats:
        stats = self._stats.get(path)
        if stats is None:
            stats = PathStats(path=path)
            self._stats[path] = stats
        return stats

    @staticmethod
    def _attribute_name(name: str) -> str:
        # Drop namespace URIs ({uri}local)
        return name.rsplit('}', 1)[-1]
