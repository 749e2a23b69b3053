"""
Bulk Insert Strategy - Optimized Row Loading

Encapsulates inserting a batch of rows with automatic fallback from executemany
(fast_executemany when the driver offers it) to individual inserts when the driver
rejects the batch for type-conversion reasons.
"""

import logging

from typing import Any, Dict, List, Sequence, Tuple, Type

from ..utils import NameUtils


class BulkInsertStrategy:
    """
    Strategy for bulk inserting rows into one table.

    Implements two-tier insertion:
    1. Fast path: executemany for optimal performance
    2. Fallback path: individual executes when the fast path hits conversion errors

    Any other database error propagates to the caller, which owns the transaction.
    """

    TYPE_CONVERSION_MARKERS = ("cast specification", "converting", "conversion", "string data, right truncation")
    # Categories a retry cannot fix: the same rows fail the same way
    PERMANENT_CATEGORIES = ("type_conversion", "primary_key_violation", "foreign_key_violation", "not_null_violation")

    def __init__(self, database_errors: Tuple[Type[BaseException], ...], logger: logging.Logger = None):
        """
        Initialize bulk insert strategy.

        Args:
            database_errors: Exception types raised by the DB-API driver
            logger: Optional logger instance
        """
        self.database_errors = database_errors
        self.logger = logger or logging.getLogger(__name__)

    def insert(
        self,
        cursor,
        table_name: str,
        qualified_table_name: str,
        columns: Sequence[str],
        rows: List[Dict[str, Any]]
    ) -> int:
        """
        Insert rows using the optimized strategy with automatic fallback.

        Args:
            cursor: Active database cursor inside the caller's transaction
            table_name: Unqualified table name (for log messages)
            qualified_table_name: Quoted, optionally schema qualified name
            columns: Column order for the INSERT statement
            rows: Rows keyed by column name; missing keys insert NULL

        Returns:
            Number of rows inserted
        """
        if not rows:
            return 0

        column_list = ', '.join(NameUtils.quote_identifier(c) for c in columns)
        placeholders = ', '.join('?' * len(columns))
        sql = f"INSERT INTO {qualified_table_name} ({column_list}) VALUES ({placeholders})"
        data = [tuple(row.get(column) for column in columns) for row in rows]

        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"SQL: {sql}")
            self.logger.debug(f"Sample params (first row): {dict(zip(columns, data[0]))}")

        if len(data) > 1:
            inserted, used_fast_path = self._try_fast_insert(cursor, sql, data, table_name)
            if used_fast_path:
                return inserted

        return self._individual_insert(cursor, sql, data)

    def _try_fast_insert(self, cursor, sql: str, data: List[Tuple], table_name: str) -> Tuple[int, bool]:
        """
        Attempt bulk insert using executemany.

        Returns:
            (rows_inserted, success) where success=False asks for the fallback path
        """
        if hasattr(cursor, 'fast_executemany'):
            cursor.fast_executemany = True
        try:
            cursor.executemany(sql, data)
            return len(data), True
        except self.database_errors as e:
            if self.categorize_error(e) == "type_conversion":
                self.logger.debug(f"executemany into {table_name} failed with type error, using individual inserts: {e}")
                return 0, False
            raise

    def _individual_insert(self, cursor, sql: str, data: List[Tuple]) -> int:
        for values in data:
            cursor.execute(sql, values)
        return len(data)

    def is_permanent(self, error: BaseException) -> bool:
        return self.categorize_error(error) in self.PERMANENT_CATEGORIES

    def categorize_error(self, error: BaseException) -> str:
        """Classify a driver error by its message."""
        error_str = str(error).lower()
        if any(marker in error_str for marker in self.TYPE_CONVERSION_MARKERS):
            return "type_conversion"
        if 'primary key' in error_str or 'duplicate' in error_str or 'unique constraint' in error_str:
            return "primary_key_violation"
        if 'foreign key' in error_str:
            return "foreign_key_violation"
        if 'not null' in error_str or 'cannot be null' in error_str:
            return "not_null_violation"
        if any(marker in error_str for marker in ('connection', 'timeout', 'gone away', 'lost', 'deadlock')):
            return "transient"
        return "database_error"
