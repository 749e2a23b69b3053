"""
Row flattening - turn a parsed XML document into table rows.

The persisted table layout drives the walk: each record becomes one root row, each
item of a collection becomes one row in the collection's table carrying the root
record id, its position among its siblings (__order_index) and, below the first
level, the positions of its ancestor items (__parent_order_path).
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from ..models import (
    ATTRIBUTE_PREFIX, ORDER_INDEX_COLUMN, PARENT_ORDER_PATH_COLUMN, ColumnKind, TableConf, element_attribute_column
)
from ..exceptions import SchemaConflictError
from ..parsing.xml_parser import element_children, local_name
from ..schema.table_forest import TableForest


Row = Dict[str, Any]


@dataclass
class FlattenedDocument:
    """Rows of one document, grouped by table in parent-first order."""
    rows: Dict[str, List[Row]] = field(default_factory=dict)
    records: int = 0
    skipped_records: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return sum(len(rows) for rows in self.rows.values())


class RowFlattener:
    """
    Flattens documents of one dataset according to its table forest.

    Args:
        forest: Table forest containing the dataset
        root_table: Name of the dataset's root table
    """

    def __init__(self, forest: TableForest, root_table: str):
        self.logger = logging.getLogger(__name__)
        self.forest = forest
        self.root_conf = forest.get(root_table)
        self.tables = forest.subtree(root_table)
        self._element_columns = {conf.table_name: self._index_elements(conf) for conf in self.tables}
        self._collection_tags = {
            conf.table_name: {c.xml_name for c in conf.collection_columns} for conf in self.tables
        }
        self._reported = set()

    @staticmethod
    def _index_elements(conf: TableConf) -> Dict[str, str]:
        return {c.xml_name: c.name for c in conf.columns if c.kind in (ColumnKind.ELEMENT, ColumnKind.KEY)}

    def flatten(self, document_root, start_index: int = 0, seen_ids: Optional[Set[str]] = None) -> FlattenedDocument:
        """
        Flatten one document.

        A record whose id was already flattened is skipped with its children and
        counted in skipped_records; the first occurrence wins.

        Args:
            document_root: Root element of the parsed document
            start_index: __order_index of the first record (continues across files)
            seen_ids: Record ids of earlier documents of the same run; updated in place

        Raises:
            SchemaConflictError: If the document root does not match the dataset
        """
        result = FlattenedDocument(rows={conf.table_name: [] for conf in self.tables})
        root_tag = local_name(document_root)
        item_tag = self.root_conf.item_tag

        if item_tag is None:
            records = [document_root]
        else:
            if self.root_conf.xml_root_tag and root_tag != self.root_conf.xml_root_tag:
                raise SchemaConflictError(
                    f"Document root <{root_tag}> does not match <{self.root_conf.xml_root_tag}> "
                    f"of dataset {self.root_conf.table_name}", source=self.root_conf.table_name)
            records = []
            for child in element_children(document_root):
                if local_name(child) == item_tag:
                    records.append(child)
                else:
                    self._report(result, self.root_conf.table_name, f"<{local_name(child)}> under document root")

        key_column = self.root_conf.key_column
        order = start_index
        seen_ids = set() if seen_ids is None else seen_ids
        for position, record in enumerate(records):
            row = self._element_row(self.root_conf, record, result)
            record_id = row.get(key_column)
            if record_id is None or record_id == '':
                result.skipped_records += 1
                message = f"Record {position} of {self.root_conf.table_name} has no {key_column}, skipped"
                self.logger.warning(message)
                result.warnings.append(message)
                continue
            if record_id in seen_ids:
                result.skipped_records += 1
                message = f"Record {position} of {self.root_conf.table_name} repeats {key_column} {record_id}, skipped"
                self.logger.warning(message)
                result.warnings.append(message)
                continue
            seen_ids.add(record_id)

            row[ORDER_INDEX_COLUMN] = order
            order += 1
            result.rows[self.root_conf.table_name].append(row)
            result.records += 1
            self._collect_children(self.root_conf, record, record_id, None, result)

        return result

    def _collect_children(self, conf: TableConf, element, record_id: str,
                          parent_path: Optional[str], result: FlattenedDocument) -> None:
        children = element_children(element)
        for placeholder in conf.collection_columns:
            child_conf = self.forest.get(placeholder.child_table)
            if child_conf.container_tag:
                items = [item
                         for wrapper in children if local_name(wrapper) == child_conf.container_tag
                         for item in element_children(wrapper) if local_name(item) == child_conf.item_tag]
            else:
                items = [child for child in children if local_name(child) == child_conf.item_tag]

            for position, item in enumerate(items):
                row = self._element_row(child_conf, item, result)
                row[child_conf.parent_key_column] = record_id
                row[ORDER_INDEX_COLUMN] = position
                if child_conf.has_parent_order_path:
                    row[PARENT_ORDER_PATH_COLUMN] = parent_path
                result.rows[child_conf.table_name].append(row)

                own_path = str(position) if parent_path is None else f"{parent_path}/{position}"
                self._collect_children(child_conf, item, record_id, own_path, result)

    def _element_row(self, conf: TableConf, element, result: FlattenedDocument) -> Row:
        row: Row = {}
        table_name = conf.table_name
        known = set(conf.db_column_names)

        for name, value in element.attrib.items():
            column = ATTRIBUTE_PREFIX + name.rsplit('}', 1)[-1]
            if column in known:
                row[column] = value
            else:
                self._report(result, table_name, f"attribute {column}")

        for column in conf.columns:
            if column.kind == ColumnKind.TEXT:
                row[column.name] = element.text or ''

        element_columns = self._element_columns[table_name]
        collection_tags = self._collection_tags[table_name]
        for child in element_children(element):
            tag = local_name(child)
            column = element_columns.get(tag)
            if column is None:
                if tag not in collection_tags:
                    self._report(result, table_name, f"element <{tag}>")
                continue
            if column in row:
                self._report(result, table_name, f"repeated element <{tag}>, keeping the first")
                continue
            if element_children(child):
                self._report(result, table_name, f"nested content inside <{tag}>")
            row[column] = child.text or ''

            for name, value in child.attrib.items():
                attr_column = element_attribute_column(tag, name.rsplit('}', 1)[-1])
                if attr_column in known:
                    row[attr_column] = value
                else:
                    self._report(result, table_name, f"attribute {attr_column}")

        return row

    def _report(self, result: FlattenedDocument, table_name: str, what: str) -> None:
        """Warn once per table and construct that is not part of the configured layout."""
        key = (table_name, what)
        if key in self._reported:
            return
        self._reported.add(key)
        message = f"Table {table_name}: dropping {what} not present in table configuration"
        self.logger.warning(message)
        result.warnings.append(message)
