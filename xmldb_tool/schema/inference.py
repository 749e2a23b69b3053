"""
Schema inference - derive table layouts from XML game data files.

The engine turns one or more documents of a dataset into a complete, ordered set of
TableConf objects:

- the document root's child element is the record; the dataset's root table holds
  one row per record
- leaf child elements that never repeat become columns
- non-leaf or repeating child elements become auxiliary tables named by joining the
  path with a double underscore; a pure wrapper element around a list of items is
  folded into the name (quest__fighter_selectable_reward__data)
- attributes become _attr_<name> columns, attributes of leaf children
  _attr__<element>__<name>
- column types follow the longest observed value and only ever widen against the
  persisted configuration
"""

import logging
import math
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from ..interfaces import SchemaInferenceInterface
from ..models import (
    ATTRIBUTE_PREFIX, ORDER_INDEX_COLUMN, PARENT_ORDER_PATH_COLUMN, TABLE_NAME_SEPARATOR,
    ColumnKind, ColumnMapping, TableConf, element_attribute_column
)
from ..exceptions import SchemaInferenceError, XMLParsingError
from ..config.processing_defaults import ProcessingDefaults
from ..parsing.xml_parser import XmlDocumentReader, local_name
from ..utils import NameUtils, SqlTypeUtils
from .value_stats import PathStats, ValueStatsCollector


DATA_KINDS = (ColumnKind.ELEMENT, ColumnKind.ATTRIBUTE, ColumnKind.ELEMENT_ATTRIBUTE, ColumnKind.TEXT)


@dataclass
class InferenceConfig:
    """Tunable thresholds for type and name inference."""
    varchar_threshold: int = ProcessingDefaults.VARCHAR_THRESHOLD
    varchar_rounding: int = ProcessingDefaults.VARCHAR_ROUNDING
    default_varchar_length: int = ProcessingDefaults.DEFAULT_VARCHAR_LENGTH
    key_varchar_length: int = ProcessingDefaults.KEY_VARCHAR_LENGTH
    wide_table_columns: int = ProcessingDefaults.WIDE_TABLE_COLUMNS
    max_table_name_length: int = ProcessingDefaults.MAX_TABLE_NAME_LENGTH
    single_record_datasets: Tuple[str, ...] = ("world",)


@dataclass
class SchemaConflict:
    """A document or table that disagrees with the established layout."""
    dataset: str
    reason: str
    table_name: Optional[str] = None
    source: Optional[str] = None

    def __str__(self) -> str:
        where = self.table_name or self.source or self.dataset
        return f"{where}: {self.reason}"


@dataclass
class InferenceResult:
    """Outcome of inferring one dataset."""
    dataset: str
    tables: List[TableConf] = field(default_factory=list)
    conflicts: List[SchemaConflict] = field(default_factory=list)
    skipped_files: List[str] = field(default_factory=list)

    @property
    def root_table(self) -> Optional[TableConf]:
        for table in self.tables:
            if table.is_root_table and table.table_name == self.dataset:
                return table
        return None


class SchemaInferenceEngine(SchemaInferenceInterface):
    """
    Builds TableConf sets for XML datasets.

    Args:
        config: Inference thresholds
        store: Optional TableConfStore; when given, results are merged with the
            persisted configuration (widen only, conflicts reported)
        reader: XML reader, injectable for tests
    """

    def __init__(self, config: Optional[InferenceConfig] = None, store=None,
                 reader: Optional[XmlDocumentReader] = None):
        self.logger = logging.getLogger(__name__)
        self.config = config or InferenceConfig()
        self.store = store
        self.reader = reader or XmlDocumentReader()

    def infer_files(self, files: Sequence[Union[str, Path]], dataset: Optional[str] = None,
                    encoding: Optional[str] = None) -> InferenceResult:
        """
        Infer the table layout of a dataset from its XML files.

        Malformed files are skipped with a warning. A file whose root element differs
        from the first parsed file is reported as a conflict and skipped.

        Raises:
            SchemaInferenceError: If no file could be used
        """
        paths = [Path(f) for f in files]
        if not paths:
            raise SchemaInferenceError("No XML files given for schema inference")

        dataset = dataset or paths[0].stem
        result = InferenceResult(dataset=dataset)
        collector = ValueStatsCollector()
        root_tag = None
        root_attrs: Dict[str, str] = {}
        first_file = None

        for path in paths:
            try:
                root = self.reader.read_file(path, encoding)
            except XMLParsingError as e:
                self.logger.warning(f"Skipping malformed XML {path}: {e}")
                result.skipped_files.append(str(path))
                continue

            tag = local_name(root)
            if root_tag is None:
                root_tag = tag
                first_file = path
            elif tag != root_tag:
                conflict = SchemaConflict(dataset, f"root element <{tag}> differs from <{root_tag}>",
                                          source=str(path))
                self.logger.warning(f"Schema conflict: {conflict}")
                result.conflicts.append(conflict)
                result.skipped_files.append(str(path))
                continue

            for name, value in root.attrib.items():
                root_attrs.setdefault(name, value)
            collector.collect(root)

        if root_tag is None:
            raise SchemaInferenceError(f"No parseable XML documents for dataset {dataset}", source=dataset)

        tables = self.infer_from_stats(collector, dataset, root_tag, root_attrs=root_attrs,
                                       encoding=encoding or "utf-8",
                                       file_path=str(first_file) if first_file else None)

        if self.store is not None:
            persisted = self.store.load(dataset)
            if persisted:
                tables, conflicts = self.merge_with_persisted(dataset, tables, persisted)
                result.conflicts.extend(conflicts)

        result.tables = tables
        self.logger.info(f"Inferred {len(tables)} tables for dataset {dataset} "
                         f"({len(result.skipped_files)} files skipped, {len(result.conflicts)} conflicts)")
        return result

    def infer_from_stats(self, collector: ValueStatsCollector, dataset: str, root_tag: str,
                         root_attrs: Optional[Dict[str, str]] = None, encoding: str = "utf-8",
                         file_path: Optional[str] = None) -> List[TableConf]:
        """Build the TableConf list from collected statistics."""
        root_path = (root_tag,)
        root_stats = collector.get(root_path)

        if dataset in self.config.single_record_datasets:
            item_tag = None
            record_path = root_path
        else:
            record_tags = root_stats.child_tag_list() if root_stats else []
            if not record_tags:
                raise SchemaInferenceError(f"Root element <{root_tag}> of {dataset} has no record elements",
                                           source=dataset)
            # The most frequent child is the record; header-like siblings are ignored
            item_tag = max(record_tags, key=lambda tag: collector.get(root_path + (tag,)).occurrences)
            if len(record_tags) > 1:
                self.logger.warning(f"Dataset {dataset}: only <{item_tag}> records are mapped, "
                                    f"ignoring {[t for t in record_tags if t != item_tag]}")
            record_path = root_path + (item_tag,)

        builder = _TableBuilder(collector, self.config, self)
        tables = builder.build_root(dataset, record_path)

        root_conf = tables[0]
        tables[0] = replace(
            root_conf,
            item_tag=item_tag,
            xml_root_tag=root_tag,
            xml_root_attrs=dict(root_attrs or {}) if item_tag else {},
            encoding=encoding,
            file_path=file_path
        )
        return tables

    def sql_type_for(self, max_length: int) -> str:
        """
        Column type for the longest observed value.

        Lengths up to the threshold map to VARCHAR rounded up to the configured
        multiple (never beyond the threshold); longer values map to TEXT; columns
        that never held a value get the default VARCHAR length.
        """
        if max_length <= 0:
            return f"VARCHAR({self.config.default_varchar_length})"
        if max_length > self.config.varchar_threshold:
            return "TEXT"
        step = max(1, self.config.varchar_rounding)
        rounded = int(math.ceil(max_length / step)) * step
        return f"VARCHAR({min(rounded, self.config.varchar_threshold)})"

    def merge_with_persisted(self, dataset: str, inferred: List[TableConf],
                             persisted: List[TableConf]) -> Tuple[List[TableConf], List[SchemaConflict]]:
        """
        Merge freshly inferred tables into the persisted configuration.

        Persisted tables stay authoritative: known columns keep their position and
        can only widen, new columns are inserted after their inferred predecessor,
        tables that were not seen this time are kept, and tables whose shape changed
        are left untouched and reported.
        """
        persisted_by_name = {t.table_name: t for t in persisted}
        inferred_names = {t.table_name for t in inferred}
        merged: List[TableConf] = []
        conflicts: List[SchemaConflict] = []

        for table in inferred:
            old = persisted_by_name.get(table.table_name)
            if old is None:
                merged.append(table)
                continue

            reason = self._shape_difference(old, table)
            if reason:
                conflict = SchemaConflict(dataset, reason, table_name=table.table_name)
                self.logger.warning(f"Schema conflict, keeping persisted layout: {conflict}")
                conflicts.append(conflict)
                merged.append(old)
                continue

            merged.append(self._widen(old, table))

        for old in persisted:
            if old.table_name not in inferred_names:
                merged.append(old)

        return merged, conflicts

    def _shape_difference(self, old: TableConf, new: TableConf) -> Optional[str]:
        if old.parent_table != new.parent_table:
            return f"parent table changed from {old.parent_table} to {new.parent_table}"
        if old.item_tag != new.item_tag:
            return f"item element changed from <{old.item_tag}> to <{new.item_tag}>"
        if old.container_tag != new.container_tag:
            return f"wrapper element changed from <{old.container_tag}> to <{new.container_tag}>"
        if old.is_root_table and old.xml_root_tag != new.xml_root_tag:
            return f"root element changed from <{old.xml_root_tag}> to <{new.xml_root_tag}>"
        if old.key_column != new.key_column or old.parent_key_column != new.parent_key_column:
            return "key column changed"

        old_columns = {c.name: c for c in old.columns}
        for column in new.columns:
            previous = old_columns.get(column.name)
            if previous is None:
                continue
            if previous.kind != column.kind or previous.owner != column.owner:
                return f"column {column.name} changed from {previous.kind.value} to {column.kind.value}"
        return None

    def _widen(self, old: TableConf, new: TableConf) -> TableConf:
        new_by_name = {c.name: c for c in new.columns}
        columns = []
        for column in old.columns:
            fresh = new_by_name.get(column.name)
            if fresh is not None and column.kind in DATA_KINDS:
                column = replace(
                    column,
                    sql_type=SqlTypeUtils.wider(column.sql_type, fresh.sql_type),
                    max_length=max(column.max_length, fresh.max_length)
                )
            columns.append(column)

        known = {c.name for c in columns}
        for index, column in enumerate(new.columns):
            if column.name in known:
                continue
            position = 0
            for previous in reversed(new.columns[:index]):
                if previous.name in known:
                    position = next(i for i, c in enumerate(columns) if c.name == previous.name) + 1
                    break
            columns.insert(position, column)
            known.add(column.name)
            self.logger.info(f"Table {old.table_name}: new column {column.name}")

        root_attrs = dict(new.xml_root_attrs)
        root_attrs.update(old.xml_root_attrs)
        return replace(old, columns=columns, xml_root_attrs=root_attrs)


class _TableBuilder:
    """Walks the statistics tree for one dataset and emits TableConfs parents first."""

    def __init__(self, collector: ValueStatsCollector, config: InferenceConfig, engine: SchemaInferenceEngine):
        self.collector = collector
        self.config = config
        self.engine = engine
        self.logger = engine.logger
        self._used_names = set()
        self._root_key: Optional[str] = None
        self._root_key_path: Optional[str] = None

    def build_root(self, dataset: str, record_path: Tuple[str, ...]) -> List[TableConf]:
        name = self._claim_name(dataset)
        stats = self._require(record_path)
        columns, children = self._data_columns(name, stats)

        key = self._choose_key(columns)
        if key is None:
            raise SchemaInferenceError(f"Dataset {dataset} has no leaf element usable as key", source=dataset)
        self._root_key = key.name
        self._root_key_path = key.xml_path
        index = columns.index(key)
        columns[index] = replace(key, kind=ColumnKind.KEY, nullable=False,
                                 sql_type=f"VARCHAR({self.config.key_varchar_length})")
        columns.insert(index + 1, ColumnMapping(
            name=ORDER_INDEX_COLUMN, xml_name=ORDER_INDEX_COLUMN, kind=ColumnKind.ORDER,
            sql_type="INT", nullable=False, comment=ORDER_INDEX_COLUMN))

        conf = TableConf(
            table_name=name,
            columns=columns,
            xml_path=stats.xml_path,
            item_tag=stats.tag,
            key_column=key.name
        )
        tables = [conf]
        for child in children:
            tables.extend(self._build_child(conf, depth=1, **child))
        return tables

    def _build_child(self, parent: TableConf, depth: int, table_name: str, item_path: Tuple[str, ...],
                     container_tag: Optional[str]) -> List[TableConf]:
        stats = self._require(item_path)
        data_columns, children = self._data_columns(table_name, stats)

        data_names = {c.name for c in data_columns}
        parent_key = self._root_key if self._root_key not in data_names else f"__parent_{self._root_key}"

        synthetic = [
            ColumnMapping(name=parent_key, xml_name=self._root_key, kind=ColumnKind.PARENT_KEY,
                          sql_type=f"VARCHAR({self.config.key_varchar_length})", nullable=False,
                          comment=self._root_key_path),
            ColumnMapping(name=ORDER_INDEX_COLUMN, xml_name=ORDER_INDEX_COLUMN, kind=ColumnKind.ORDER,
                          sql_type="INT", nullable=False, comment=ORDER_INDEX_COLUMN),
        ]
        if depth >= 2:
            synthetic.append(ColumnMapping(
                name=PARENT_ORDER_PATH_COLUMN, xml_name=PARENT_ORDER_PATH_COLUMN,
                kind=ColumnKind.PARENT_ORDER_PATH,
                sql_type=f"VARCHAR({self.config.key_varchar_length})", nullable=False,
                comment=PARENT_ORDER_PATH_COLUMN))

        conf = TableConf(
            table_name=table_name,
            columns=synthetic + data_columns,
            parent_table=parent.table_name,
            xml_path=stats.xml_path,
            item_tag=stats.tag,
            container_tag=container_tag,
            parent_key_column=parent_key
        )
        tables = [conf]
        for child in children:
            tables.extend(self._build_child(conf, depth=depth + 1, **child))
        return tables

    def _data_columns(self, table_name: str, stats: PathStats) -> Tuple[List[ColumnMapping], List[dict]]:
        """Columns for one record/item element plus the child tables it spawns."""
        columns: List[ColumnMapping] = []
        children: List[dict] = []

        for attr, max_length in stats.attributes.items():
            columns.append(ColumnMapping(
                name=f"{ATTRIBUTE_PREFIX}{attr}", xml_name=attr, kind=ColumnKind.ATTRIBUTE,
                xml_path=f"{stats.xml_path}/@{attr}", max_length=max_length))

        if stats.is_leaf:
            columns.append(ColumnMapping(
                name=stats.tag, xml_name=stats.tag, kind=ColumnKind.TEXT,
                xml_path=stats.xml_path, max_length=stats.max_length))
        else:
            for child_tag in stats.child_tag_list():
                child_stats = self._require(stats.path + (child_tag,))
                if child_stats.is_leaf and not child_stats.repeats:
                    columns.append(ColumnMapping(
                        name=child_tag, xml_name=child_tag, kind=ColumnKind.ELEMENT,
                        xml_path=child_stats.xml_path, max_length=child_stats.max_length))
                    for attr, max_length in child_stats.attributes.items():
                        columns.append(ColumnMapping(
                            name=element_attribute_column(child_tag, attr),
                            xml_name=attr, kind=ColumnKind.ELEMENT_ATTRIBUTE, owner=child_tag,
                            xml_path=f"{child_stats.xml_path}/@{attr}", max_length=max_length))
                    continue

                inner_tag = self._wrapped_item(child_stats)
                if inner_tag is not None:
                    child_name = self._claim_name(TABLE_NAME_SEPARATOR.join([table_name, child_tag, inner_tag]))
                    child = dict(table_name=child_name, item_path=child_stats.path + (inner_tag,),
                                 container_tag=child_tag)
                else:
                    child_name = self._claim_name(TABLE_NAME_SEPARATOR.join([table_name, child_tag]))
                    child = dict(table_name=child_name, item_path=child_stats.path, container_tag=None)
                columns.append(ColumnMapping(
                    name=child_name, xml_name=child_tag, kind=ColumnKind.COLLECTION,
                    xml_path=child_stats.xml_path, child_table=child_name))
                children.append(child)

        data = [c for c in columns if c.kind in DATA_KINDS]
        wide = len(data) > self.config.wide_table_columns
        if wide:
            self.logger.info(f"Table {table_name} has {len(data)} data columns, using TEXT for all of them")
        typed = []
        for column in columns:
            if column.kind in DATA_KINDS:
                sql_type = "TEXT" if wide else self.engine.sql_type_for(column.max_length)
                column = replace(column, sql_type=sql_type)
            typed.append(column)
        return typed, children

    def _wrapped_item(self, stats: PathStats) -> Optional[str]:
        """Item tag when ``stats`` describes a pure wrapper around a list of items."""
        if stats.is_leaf or stats.repeats or stats.attributes or stats.value_count:
            return None
        tags = stats.child_tag_list()
        if len(tags) != 1:
            return None
        inner = self._require(stats.path + (tags[0],))
        if inner.is_leaf and not inner.repeats:
            return None
        return tags[0]

    def _choose_key(self, columns: List[ColumnMapping]) -> Optional[ColumnMapping]:
        elements = [c for c in columns if c.kind == ColumnKind.ELEMENT]
        for column in elements:
            if column.name == "id":
                return column
        return elements[0] if elements else None

    def _claim_name(self, name: str) -> str:
        candidate = NameUtils.shorten_table_name(name, self.config.max_table_name_length)
        base = candidate
        suffix = 2
        while candidate in self._used_names:
            candidate = f"{base}_{suffix}"
            suffix += 1
        self._used_names.add(candidate)
        return candidate

    def _require(self, path: Tuple[str, ...]) -> PathStats:
        stats = self.collector.get(path)
        if stats is None:
            raise SchemaInferenceError(f"No statistics collected for {'/'.join(path)}")
        return stats
