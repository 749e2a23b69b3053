"""
XML to database import - batched, transactional, parallel.

Each file of a dataset is parsed, flattened into rows following the persisted table
forest and written table by table in forest order. A table's rows are split into
fixed size batches; every batch is its own transaction and runs on a bounded thread
pool. A failing batch is retried with linearly increasing delay and, once its
retries are exhausted, rolled back and counted as failed while the remaining
batches carry on. Committed batches stay committed.

Reloading is truncate-then-load: all tables of the dataset are emptied (deepest
first) before the first batch, so running an import twice leaves the same rows.
"""

import logging
import time
from dataclasses import dataclass
from multiprocessing.pool import ThreadPool
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from ..interfaces import DataImporterInterface
from ..models import ImportResult, TableConf
from ..exceptions import BatchWriteError, DatabaseConnectionError, SchemaConflictError, XMLParsingError
from ..config.processing_defaults import ProcessingDefaults
from ..database.migration_engine import MigrationEngine
from ..monitoring.performance_monitor import PerformanceMonitor
from ..parsing.xml_parser import XmlDocumentReader
from ..schema.table_forest import TableForest
from ..utils import SqlTypeUtils, chunked
from .row_flattener import FlattenedDocument, RowFlattener


@dataclass
class BatchWork:
    """One batch of rows destined for one table."""
    table_name: str
    batch_number: int
    rows: List[Dict[str, Any]]


@dataclass
class BatchOutcome:
    """Result of writing a batch."""
    table_name: str
    batch_number: int
    row_count: int
    success: bool
    attempts: int = 0
    error_message: Optional[str] = None
    error_category: Optional[str] = None


class XmlToDbImporter(DataImporterInterface):
    """
    Loads XML files of a dataset into its tables.

    Args:
        engine: Database gateway
        batch_size: Rows per transaction
        workers: Size of the batch thread pool
        max_retry_attempts: Attempts per batch before it is counted as failed
        retry_delay_seconds: Base delay; attempt n waits n times this long
        reader: XML reader, injectable for tests
        sleep: Delay function, injectable for tests
        enable_monitoring: Attach psutil resource metrics to results
    """

    def __init__(self, engine: MigrationEngine,
                 batch_size: int = ProcessingDefaults.BATCH_SIZE,
                 workers: int = ProcessingDefaults.WORKERS,
                 max_retry_attempts: int = ProcessingDefaults.MAX_RETRY_ATTEMPTS,
                 retry_delay_seconds: float = ProcessingDefaults.RETRY_DELAY_SECONDS,
                 reader: Optional[XmlDocumentReader] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 enable_monitoring: bool = True):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if workers <= 0:
            raise ValueError("workers must be positive")
        if max_retry_attempts <= 0:
            raise ValueError("max_retry_attempts must be positive")

        self.logger = logging.getLogger(__name__)
        self.engine = engine
        self.batch_size = batch_size
        self.workers = workers
        self.max_retry_attempts = max_retry_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self.reader = reader or XmlDocumentReader()
        self.sleep = sleep
        self.enable_monitoring = enable_monitoring

    @classmethod
    def from_config(cls, engine: MigrationEngine, config_manager, **overrides) -> 'XmlToDbImporter':
        """Build an importer from the configured processing parameters."""
        params = config_manager.processing_params
        settings = dict(
            batch_size=params.batch_size,
            workers=params.workers,
            max_retry_attempts=params.max_retry_attempts,
            retry_delay_seconds=params.retry_delay_seconds,
        )
        settings.update({k: v for k, v in overrides.items() if v is not None})
        return cls(engine, **settings)

    def import_file(self, xml_file: Union[str, Path], forest: TableForest, root_table: str,
                    encoding: Optional[str] = None, **kwargs) -> ImportResult:
        """Load one XML file, replacing the dataset's current rows."""
        return self.import_files([xml_file], forest, root_table, encoding=encoding, **kwargs)

    def import_files(self, files: Sequence[Union[str, Path]], forest: TableForest, root_table: str,
                     encoding: Optional[str] = None, reload: bool = True,
                     field_rewriter=None, rewrite_columns: Sequence[str] = ()) -> ImportResult:
        """
        Load several XML files of one dataset.

        Args:
            files: Documents to load, in record order
            forest: Table forest containing the dataset
            root_table: Root table of the dataset
            encoding: Declared encoding; defaults to the dataset's configured encoding
            reload: Empty the dataset's tables before loading
            field_rewriter: Optional BatchFieldRewriter applied to root rows
            rewrite_columns: Root table columns passed through the rewriter

        Returns:
            ImportResult aggregated over all files
        """
        root_conf = forest.get(root_table)
        tables = forest.subtree(root_table)
        encoding = encoding or root_conf.encoding
        flattener = RowFlattener(forest, root_table)
        result = ImportResult()

        monitor = PerformanceMonitor() if self.enable_monitoring else None
        if monitor:
            monitor.start_monitoring()

        if reload:
            self.engine.truncate_tables([conf.table_name for conf in reversed(tables)])

        next_index = 0
        seen_ids = set()
        for xml_file in files:
            try:
                if monitor:
                    monitor.start_stage('parsing')
                root = self.reader.read_file(xml_file, encoding)
                document = flattener.flatten(root, start_index=next_index, seen_ids=seen_ids)
            except (XMLParsingError, SchemaConflictError) as e:
                self.logger.error(f"Skipping {xml_file}: {e}")
                result.files_skipped.append(str(xml_file))
                result.errors.append(f"{xml_file}: {e}")
                continue
            finally:
                if monitor:
                    monitor.end_stage('parsing')

            next_index += document.records
            result.rows_failed += document.skipped_records

            if field_rewriter is not None and rewrite_columns:
                self._apply_rewrites(document, root_conf, field_rewriter, rewrite_columns)

            if monitor:
                monitor.start_stage('insertion')
            file_result = self._write_document(document, tables)
            if monitor:
                monitor.end_stage('insertion')
                monitor.record_processing_results(file_result.rows_written, file_result.rows_failed)
            result.merge(file_result)

            self.logger.info(f"Imported {xml_file}: {file_result.rows_written} rows written, "
                             f"{file_result.rows_failed} failed, {document.records} records")

        if monitor:
            result.performance_metrics = monitor.stop_monitoring()

        self.logger.info(f"Import of {root_table} finished: {result.rows_written} rows written, "
                         f"{result.rows_failed} rows failed, {result.batches_failed} failed batches, "
                         f"{len(result.files_skipped)} files skipped")
        return result

    def _write_document(self, document: FlattenedDocument, tables: List[TableConf]) -> ImportResult:
        result = ImportResult()

        with ThreadPool(processes=self.workers) as pool:
            for conf in tables:
                rows = document.rows.get(conf.table_name) or []
                if not rows:
                    continue
                columns = conf.db_column_names
                work_items = [BatchWork(conf.table_name, number, batch)
                              for number, batch in enumerate(chunked(rows, self.batch_size), start=1)]

                async_results = [pool.apply_async(self._write_batch, (work, columns)) for work in work_items]
                # Barrier: a table's batches finish before its children start
                outcomes = [async_result.get() for async_result in async_results]

                for outcome in outcomes:
                    if outcome.success:
                        result.rows_written += outcome.row_count
                        result.batches_succeeded += 1
                        result.rows_by_table[outcome.table_name] = (
                            result.rows_by_table.get(outcome.table_name, 0) + outcome.row_count)
                    else:
                        result.rows_failed += outcome.row_count
                        result.batches_failed += 1
                        result.errors.append(
                            f"{outcome.table_name} batch {outcome.batch_number}: {outcome.error_message}")

        return result

    def _write_batch(self, work: BatchWork, columns: List[str]) -> BatchOutcome:
        """Write one batch in its own transaction, retrying with linear backoff."""
        retryable = (DatabaseConnectionError,) + self.engine.database_errors
        last_error = None
        attempts = 0

        for attempt in range(1, self.max_retry_attempts + 1):
            attempts = attempt
            try:
                with self.engine.get_connection() as connection:
                    with self.engine.transaction(connection) as cursor:
                        self.engine.insert_rows(cursor, work.table_name, columns, work.rows)
                if attempt > 1:
                    self.logger.info(f"Batch {work.batch_number} of {work.table_name} succeeded on attempt {attempt}")
                return BatchOutcome(work.table_name, work.batch_number, len(work.rows), True, attempts=attempt)
            except retryable as e:
                last_error = e
                self.logger.warning(f"Batch {work.batch_number} of {work.table_name} failed "
                                    f"(attempt {attempt}/{self.max_retry_attempts}): {e}")
                if self.engine.insert_strategy.is_permanent(e):
                    break
                if attempt < self.max_retry_attempts:
                    self.sleep(self.retry_delay_seconds * attempt)

        error = BatchWriteError(
            f"Batch {work.batch_number} of {work.table_name} failed after {attempts} attempts: "
            f"{last_error}", work.table_name, work.batch_number,
            self.engine.insert_strategy.categorize_error(last_error))
        self.logger.error(f"{error} ({error.error_category}), rolled back")
        return BatchOutcome(work.table_name, work.batch_number, len(work.rows), False,
                            attempts=attempts, error_message=str(last_error),
                            error_category=error.error_category)

    def _apply_rewrites(self, document: FlattenedDocument, root_conf: TableConf,
                        field_rewriter, rewrite_columns: Sequence[str]) -> None:
        rows = document.rows.get(root_conf.table_name) or []
        for column_name in rewrite_columns:
            column = root_conf.get_column(column_name)
            if column is None:
                self.logger.warning(f"Cannot rewrite unknown column {column_name} of {root_conf.table_name}")
                continue
            capacity = SqlTypeUtils.varchar_capacity(column.sql_type)
            rewritten = field_rewriter.rewrite_field(root_conf.table_name, column_name,
                                                     [row.get(column_name) for row in rows])
            changed = 0
            for row, value in zip(rows, rewritten):
                if not value or value == row.get(column_name):
                    continue
                if capacity is not None and len(value) > capacity:
                    self.logger.warning(f"Rewritten {column_name} of {row.get(root_conf.key_column)} exceeds "
                                        f"{column.sql_type}, keeping original value")
                    continue
                row[column_name] = value
                changed += 1
            self.logger.info(f"Rewrote {changed} values of {root_conf.table_name}.{column_name}")
