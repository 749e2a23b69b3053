"""
Database to XML export - paged, parallel, merged in order.

The root table is read in pages ordered by __order_index. Pages run on a bounded
thread pool; each worker loads the auxiliary rows of its page's records, rebuilds
the record elements and writes them to a private shard file. A single-threaded
merge then streams the shards, in page order, into the destination document under
the dataset's root element, using the dataset's declared encoding.
"""

import logging
import math
import shutil
import tempfile
import time
from dataclasses import dataclass
from multiprocessing.pool import ThreadPool
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from lxml import etree

from ..interfaces import DataExporterInterface
from ..models import ORDER_INDEX_COLUMN, PARENT_ORDER_PATH_COLUMN, ColumnKind, ExportResult, TableConf
from ..exceptions import DatabaseConnectionError, ExportError
from ..config.processing_defaults import ProcessingDefaults
from ..database.migration_engine import MigrationEngine
from ..monitoring.performance_monitor import PerformanceMonitor
from ..parsing.xml_parser import normalize_encoding
from ..schema.table_forest import TableForest


GroupKey = Tuple[str, Optional[str]]
ChildIndex = Dict[str, Dict[GroupKey, List[Dict[str, Any]]]]


@dataclass
class PageWork:
    """One page of root rows."""
    page_number: int
    offset: int
    limit: int
    shard_path: Path


@dataclass
class PageOutcome:
    """Result of exporting one page to its shard."""
    page_number: int
    shard_path: Path
    success: bool
    records_written: int = 0
    records_skipped: int = 0
    orphan_rows: int = 0
    error_message: Optional[str] = None


class RecordBuilder:
    """
    Rebuilds record elements from a row and the grouped rows of its child tables.

    Child rows are grouped by (root record id, __parent_order_path). Groups that are
    never reached from a record are orphans.
    """

    def __init__(self, forest: TableForest, child_index: ChildIndex):
        self.forest = forest
        self.child_index = child_index
        self._consumed = {table_name: set() for table_name in child_index}

    def build(self, conf: TableConf, tag: str, row: Dict[str, Any], record_id: str,
              own_path: Optional[str]):
        element = etree.Element(tag)
        owned_attributes = {}
        for column in conf.columns:
            if column.kind == ColumnKind.ELEMENT_ATTRIBUTE:
                owned_attributes.setdefault(column.owner, []).append(column)

        for column in conf.columns:
            value = row.get(column.name)
            kind = column.kind

            if kind == ColumnKind.ATTRIBUTE:
                if value is not None:
                    element.set(column.xml_name, str(value))

            elif kind in (ColumnKind.ELEMENT, ColumnKind.KEY):
                attributes = [(a.xml_name, row.get(a.name)) for a in owned_attributes.get(column.xml_name, [])]
                attributes = [(name, v) for name, v in attributes if v is not None]
                if value is None and not attributes:
                    continue
                child = etree.SubElement(element, column.xml_name)
                if value not in (None, ''):
                    child.text = str(value)
                for name, attr_value in attributes:
                    child.set(name, str(attr_value))

            elif kind == ColumnKind.TEXT:
                if value not in (None, ''):
                    element.text = str(value)

            elif kind == ColumnKind.COLLECTION:
                self._append_collection(element, column.child_table, record_id, own_path)

        return element

    def _append_collection(self, element, child_table: str, record_id: str, own_path: Optional[str]) -> None:
        groups = self.child_index.get(child_table)
        if not groups:
            return
        key = (record_id, own_path)
        items = groups.get(key)
        if not items:
            return
        self._consumed[child_table].add(key)

        child_conf = self.forest.get(child_table)
        parent = etree.SubElement(element, child_conf.container_tag) if child_conf.container_tag else element
        for item in items:
            order = item.get(ORDER_INDEX_COLUMN)
            item_path = str(order) if own_path is None else f"{own_path}/{order}"
            parent.append(self.build(child_conf, child_conf.item_tag, item, record_id, item_path))

    def orphan_rows(self) -> Dict[str, int]:
        """Rows per table whose parent was never built."""
        orphans = {}
        for table_name, groups in self.child_index.items():
            count = sum(len(rows) for key, rows in groups.items() if key not in self._consumed[table_name])
            if count:
                orphans[table_name] = count
        return orphans


class DbToXmlExporter(DataExporterInterface):
    """
    Regenerates a dataset's XML document from its tables.

    Args:
        engine: Database gateway
        page_size: Root rows per page
        workers: Size of the page thread pool
        max_retry_attempts: Attempts per page on database errors
        retry_delay_seconds: Base delay; attempt n waits n times this long
        temp_dir: Parent directory for shard files (system temp by default)
        sleep: Delay function, injectable for tests
        enable_monitoring: Attach psutil resource metrics to results
    """

    def __init__(self, engine: MigrationEngine,
                 page_size: int = ProcessingDefaults.PAGE_SIZE,
                 workers: int = ProcessingDefaults.WORKERS,
                 max_retry_attempts: int = ProcessingDefaults.MAX_RETRY_ATTEMPTS,
                 retry_delay_seconds: float = ProcessingDefaults.RETRY_DELAY_SECONDS,
                 temp_dir: Optional[Union[str, Path]] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 enable_monitoring: bool = True):
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        if workers <= 0:
            raise ValueError("workers must be positive")

        self.logger = logging.getLogger(__name__)
        self.engine = engine
        self.page_size = page_size
        self.workers = workers
        self.max_retry_attempts = max(1, max_retry_attempts)
        self.retry_delay_seconds = retry_delay_seconds
        self.temp_dir = Path(temp_dir) if temp_dir else None
        self.sleep = sleep
        self.enable_monitoring = enable_monitoring

    @classmethod
    def from_config(cls, engine: MigrationEngine, config_manager, **overrides) -> 'DbToXmlExporter':
        """Build an exporter from the configured processing parameters."""
        params = config_manager.processing_params
        settings = dict(
            page_size=params.page_size,
            workers=params.workers,
            max_retry_attempts=params.max_retry_attempts,
            retry_delay_seconds=params.retry_delay_seconds,
        )
        settings.update({k: v for k, v in overrides.items() if v is not None})
        return cls(engine, **settings)

    def export(self, forest: TableForest, root_table: str, destination: Union[str, Path],
               encoding: Optional[str] = None) -> ExportResult:
        """
        Write the dataset rooted at ``root_table`` to ``destination``.

        Raises:
            ExportError: If any page cannot be read after its retries; the
                destination is not written in that case. Also raised when a
                single-record dataset holds more than one record
        """
        root_conf = forest.get(root_table)
        encoding = normalize_encoding(encoding or root_conf.encoding)
        destination = Path(destination)
        result = ExportResult(destination=str(destination))

        total_rows = self.engine.count_rows(root_table)
        if root_conf.item_tag is None and total_rows > 1:
            raise ExportError(f"{root_table} is a single-record dataset but holds {total_rows} records; "
                              f"one document can carry only one", source=root_table)

        monitor = PerformanceMonitor() if self.enable_monitoring else None
        if monitor:
            monitor.start_monitoring()

        pages = int(math.ceil(total_rows / self.page_size)) if total_rows else 0
        result.pages = pages
        if monitor:
            monitor.record_metric('pages', pages)
        self.logger.info(f"Exporting {root_table}: {total_rows} records in {pages} pages")

        if self.temp_dir:
            self.temp_dir.mkdir(parents=True, exist_ok=True)
        shard_dir = Path(tempfile.mkdtemp(prefix=f"{root_table}_", dir=str(self.temp_dir) if self.temp_dir else None))
        try:
            work_items = [
                PageWork(page, page * self.page_size, self.page_size,
                         shard_dir / f"{ProcessingDefaults.SHARD_PREFIX}{page:06d}.xml")
                for page in range(pages)
            ]

            if monitor:
                monitor.start_stage('query')
            with ThreadPool(processes=self.workers) as pool:
                async_results = [pool.apply_async(self._export_page, (work, forest, root_conf))
                                 for work in work_items]
                outcomes = [async_result.get() for async_result in async_results]
            if monitor:
                monitor.end_stage('query')

            failed = [o for o in outcomes if not o.success]
            if failed:
                for outcome in failed:
                    result.errors.append(f"page {outcome.page_number}: {outcome.error_message}")
                raise ExportError(f"{len(failed)} of {pages} pages of {root_table} failed: "
                                  f"{failed[0].error_message}", source=root_table)

            for outcome in outcomes:
                result.records_written += outcome.records_written
                result.records_skipped += outcome.records_skipped
                result.orphan_rows += outcome.orphan_rows
            result.orphan_rows += self._count_unparented(forest, root_conf)

            if monitor:
                monitor.start_stage('merge')
            self._merge(outcomes, root_conf, destination, encoding)
            if monitor:
                monitor.end_stage('merge')
                monitor.record_processing_results(result.records_written, result.records_skipped)
        finally:
            shutil.rmtree(shard_dir, ignore_errors=True)
            if monitor:
                result.performance_metrics = monitor.stop_monitoring()

        self.logger.info(f"Exported {result.records_written} records of {root_table} to {destination} "
                         f"({result.records_skipped} skipped, {result.orphan_rows} orphan rows)")
        return result

    def _export_page(self, work: PageWork, forest: TableForest, root_conf: TableConf) -> PageOutcome:
        retryable = (DatabaseConnectionError,) + self.engine.database_errors
        last_error = None
        for attempt in range(1, self.max_retry_attempts + 1):
            try:
                return self._write_shard(work, forest, root_conf)
            except retryable as e:
                last_error = e
                self.logger.warning(f"Page {work.page_number} of {root_conf.table_name} failed "
                                    f"(attempt {attempt}/{self.max_retry_attempts}): {e}")
                if attempt < self.max_retry_attempts:
                    self.sleep(self.retry_delay_seconds * attempt)
        return PageOutcome(work.page_number, work.shard_path, False, error_message=str(last_error))

    def _write_shard(self, work: PageWork, forest: TableForest, root_conf: TableConf) -> PageOutcome:
        key_column = root_conf.key_column
        with self.engine.get_connection() as connection:
            root_rows = self.engine.fetch_page(connection, root_conf, work.limit, work.offset)
            record_ids = [str(row[key_column]) for row in root_rows if row.get(key_column) not in (None, '')]
            child_index = self._load_children(connection, forest, root_conf, record_ids)

        builder = RecordBuilder(forest, child_index)
        shard_root = etree.Element("shard")
        outcome = PageOutcome(work.page_number, work.shard_path, True)
        record_tag = root_conf.item_tag or root_conf.xml_root_tag or root_conf.table_name

        for row in root_rows:
            record_id = row.get(key_column)
            if record_id in (None, ''):
                outcome.records_skipped += 1
                self.logger.warning(f"Skipping {root_conf.table_name} row without {key_column} "
                                    f"(order {row.get(ORDER_INDEX_COLUMN)})")
                continue
            shard_root.append(builder.build(root_conf, record_tag, row, str(record_id), None))
            outcome.records_written += 1

        for table_name, count in builder.orphan_rows().items():
            self.logger.warning(f"Page {work.page_number}: {count} rows of {table_name} have no resolvable parent")
            outcome.orphan_rows += count

        etree.ElementTree(shard_root).write(str(work.shard_path), encoding='utf-8', xml_declaration=True)
        return outcome

    def _count_unparented(self, forest: TableForest, root_conf: TableConf) -> int:
        """Rows of auxiliary tables whose root record no longer exists; never read by any page."""
        total = 0
        for conf in forest.subtree(root_conf.table_name)[1:]:
            try:
                count = self.engine.count_unparented_rows(conf, root_conf)
            except self.engine.database_errors as e:
                self.logger.warning(f"Could not check {conf.table_name} for orphan rows: {e}")
                continue
            if count:
                self.logger.warning(f"{count} rows of {conf.table_name} reference a missing "
                                    f"{root_conf.table_name} record")
                total += count
        return total

    def _load_children(self, connection, forest: TableForest, root_conf: TableConf,
                       record_ids: List[str]) -> ChildIndex:
        index: ChildIndex = {}
        for conf in forest.subtree(root_conf.table_name)[1:]:
            try:
                rows = self.engine.fetch_children(connection, conf, record_ids)
            except self.engine.database_errors as e:
                self.logger.warning(f"Child table {conf.table_name} unavailable, exporting without it: {e}")
                rows = []

            groups: Dict[GroupKey, List[Dict[str, Any]]] = {}
            for row in rows:
                key = (str(row.get(conf.parent_key_column)), row.get(PARENT_ORDER_PATH_COLUMN))
                groups.setdefault(key, []).append(row)
            for items in groups.values():
                items.sort(key=lambda r: int(r.get(ORDER_INDEX_COLUMN) or 0))
            index[conf.table_name] = groups
        return index

    def _merge(self, outcomes: List[PageOutcome], root_conf: TableConf, destination: Path, encoding: str) -> None:
        """Stream shards in page order into the destination document."""
        destination.parent.mkdir(parents=True, exist_ok=True)
        parser = etree.XMLParser(remove_blank_text=True, resolve_entities=False, no_network=True, huge_tree=True)
        ordered = sorted(outcomes, key=lambda o: o.page_number)

        with etree.xmlfile(str(destination), encoding=encoding) as xf:
            xf.write_declaration()
            if root_conf.item_tag is None:
                # Single-record dataset: the record is the document element
                for outcome in ordered:
                    for record in etree.parse(str(outcome.shard_path), parser).getroot():
                        xf.write(record, pretty_print=True)
                return

            with xf.element(root_conf.xml_root_tag or root_conf.table_name, dict(root_conf.xml_root_attrs)):
                xf.write("\n")
                for outcome in ordered:
                    for record in etree.parse(str(outcome.shard_path), parser).getroot():
                        xf.write(record, pretty_print=True)
