"""
Table forest - parent/child structure of a flat TableConf collection.

Nodes live in a single list and refer to each other by index, so the forest can be
walked, copied and serialized without object cycles. Tables whose declared parent
is missing are reported as orphans instead of being dropped.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional

from ..models import TableConf
from ..exceptions import SchemaValidationError


@dataclass
class TableNode:
    """One table in the forest."""
    conf: TableConf
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.conf.table_name


class TableForest:
    """
    Arena of TableNodes with name lookup.

    Usage:
        forest = TableForest.build(tables)
        for conf in forest.subtree("quest"):
            ...
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.nodes: List[TableNode] = []
        self.index: Dict[str, int] = {}
        self.roots: List[int] = []
        self.orphans: List[str] = []

    @classmethod
    def build(cls, tables: Iterable[TableConf]) -> 'TableForest':
        """
        Build a forest from flat table configurations.

        Pass 1 indexes every table by name, pass 2 wires each table to its parent.

        Raises:
            SchemaValidationError: On duplicate table names or parent cycles
        """
        forest = cls()

        for conf in tables:
            if conf.table_name in forest.index:
                raise SchemaValidationError(f"Duplicate table configuration: {conf.table_name}",
                                            source=conf.table_name)
            forest.index[conf.table_name] = len(forest.nodes)
            forest.nodes.append(TableNode(conf=conf))

        for position, node in enumerate(forest.nodes):
            parent_name = node.conf.parent_table
            if parent_name is None:
                forest.roots.append(position)
                continue
            parent_position = forest.index.get(parent_name)
            if parent_position is None:
                forest.orphans.append(node.name)
                forest.logger.warning(f"Table {node.name} declares missing parent {parent_name}")
                continue
            node.parent = parent_position
            forest.nodes[parent_position].children.append(position)

        forest._check_cycles()
        forest.logger.debug(f"Built table forest: {len(forest.nodes)} tables, "
                            f"{len(forest.roots)} roots, {len(forest.orphans)} orphans")
        return forest

    def _check_cycles(self) -> None:
        for position, node in enumerate(self.nodes):
            seen = {position}
            current = node.parent
            while current is not None:
                if current in seen:
                    raise SchemaValidationError(f"Parent cycle detected at table {node.name}",
                                                source=node.name)
                seen.add(current)
                current = self.nodes[current].parent

    def __contains__(self, table_name: str) -> bool:
        return table_name in self.index

    def __len__(self) -> int:
        return len(self.nodes)

    def get(self, table_name: str) -> TableConf:
        """
        Look up a table configuration by name.

        Raises:
            SchemaValidationError: If the table is unknown
        """
        position = self.index.get(table_name)
        if position is None:
            raise SchemaValidationError(f"Unknown table: {table_name}", source=table_name)
        return self.nodes[position].conf

    def parent_of(self, table_name: str) -> Optional[TableConf]:
        node = self.nodes[self.index[table_name]]
        return None if node.parent is None else self.nodes[node.parent].conf

    def children_of(self, table_name: str) -> List[TableConf]:
        node = self.nodes[self.index[table_name]]
        return [self.nodes[child].conf for child in node.children]

    def root_of(self, table_name: str) -> TableConf:
        position = self.index[table_name]
        while self.nodes[position].parent is not None:
            position = self.nodes[position].parent
        return self.nodes[position].conf

    def depth_of(self, table_name: str) -> int:
        depth = 0
        position = self.index[table_name]
        while self.nodes[position].parent is not None:
            position = self.nodes[position].parent
            depth += 1
        return depth

    def root_tables(self) -> List[TableConf]:
        return [self.nodes[position].conf for position in self.roots]

    def _walk(self, position: int) -> Iterator[int]:
        stack = [position]
        while stack:
            current = stack.pop()
            yield current
            stack.extend(reversed(self.nodes[current].children))

    def subtree(self, table_name: str) -> List[TableConf]:
        """Tables of a subtree in pre-order (parents before children)."""
        return [self.nodes[p].conf for p in self._walk(self.index[table_name])]

    def walk(self) -> List[TableConf]:
        """All wired tables in pre-order, root by root; orphans are excluded."""
        ordered = []
        for root in self.roots:
            ordered.extend(self.nodes[p].conf for p in self._walk(root))
        return ordered

    def to_dict(self) -> Dict[str, object]:
        """Compact description of the forest structure."""
        return {
            "tables": [
                {
                    "name": node.name,
                    "parent": None if node.parent is None else self.nodes[node.parent].name,
                    "children": [self.nodes[c].name for c in node.children],
                }
                for node in self.nodes
            ],
            "roots": [self.nodes[p].name for p in self.roots],
            "orphans": list(self.orphans),
        }
