"""
Migration Engine - database access for the XML/relational bridge

Owns connections, transactions and the SQL the import and export pipelines need.

KEY FEATURES:
- Injectable connection factory: production uses pyodbc with the configured MySQL
  ODBC connection string; any DB-API 2.0 driver with qmark parameters works
- Explicit transactions: commit on success, rollback (and re-raise) on failure
- Bulk inserts through BulkInsertStrategy (fast_executemany with fallback)
- Paged reads of root tables and IN-list reads of child tables
"""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type

from ..models import ORDER_INDEX_COLUMN, TableConf
from ..exceptions import DatabaseConnectionError
from ..config.config_manager import get_config_manager
from ..config.processing_defaults import ProcessingDefaults
from ..utils import NameUtils, chunked
from .bulk_insert_strategy import BulkInsertStrategy


ConnectionFactory = Callable[[], Any]


class MigrationEngine:
    """
    Database gateway shared by the importer and exporter.

    Every unit of work opens its own connection through the factory, so worker
    threads never share a connection. pyodbc pooling makes this cheap in production.

    Args:
        connection_factory: Zero-argument callable returning a DB-API connection.
            Defaults to pyodbc.connect with the configured connection string.
        schema_name: Optional schema prefix for table names
        database_errors: Exception types raised by the driver (defaults to pyodbc.Error)
        connection_timeout: Login timeout for the default pyodbc factory
    """

    def __init__(self, connection_factory: Optional[ConnectionFactory] = None,
                 schema_name: Optional[str] = None,
                 database_errors: Optional[Sequence[Type[BaseException]]] = None,
                 connection_timeout: int = 30):
        self.logger = logging.getLogger(__name__)

        if connection_factory is None:
            config_manager = get_config_manager()
            self.connection_string = config_manager.get_database_connection_string()
            if schema_name is None:
                schema_name = config_manager.database_config.schema_name
            connection_factory = self._pyodbc_connect

        if database_errors is None:
            import pyodbc
            database_errors = (pyodbc.Error,)

        self.connection_factory = connection_factory
        self.schema_name = schema_name or None
        self.database_errors: Tuple[Type[BaseException], ...] = tuple(database_errors)
        self.connection_timeout = connection_timeout
        self.insert_strategy = BulkInsertStrategy(self.database_errors)

    def _pyodbc_connect(self):
        import pyodbc
        connection = pyodbc.connect(self.connection_string, autocommit=False, timeout=self.connection_timeout)
        connection.setdecoding(pyodbc.SQL_CHAR, encoding='utf-8')
        connection.setdecoding(pyodbc.SQL_WCHAR, encoding='utf-8')
        connection.setencoding(encoding='utf-8')
        return connection

    def qualified(self, table_name: str) -> str:
        """Quoted, schema-qualified table name."""
        name = f"{self.schema_name}.{table_name}" if self.schema_name else table_name
        return NameUtils.quote_identifier(name)

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections with automatic cleanup.

        Raises:
            DatabaseConnectionError: If connection cannot be established
        """
        try:
            connection = self.connection_factory()
        except self.database_errors as e:
            self.logger.error(f"Database connection failed: {e}")
            raise DatabaseConnectionError(f"Failed to connect to database: {e}", error_category="connection_error")

        try:
            yield connection
        finally:
            try:
                connection.close()
            except self.database_errors as e:
                self.logger.debug(f"Ignoring error while closing connection: {e}")

    @contextmanager
    def transaction(self, connection):
        """
        Context manager for one explicit transaction.

        Yields:
            Cursor bound to the transaction; committed on success, rolled back on error
        """
        cursor = connection.cursor()
        try:
            yield cursor
            connection.commit()
            self.logger.debug("Transaction committed")
        except Exception as e:
            try:
                connection.rollback()
                self.logger.debug(f"Transaction rolled back due to error: {str(e)[:200]}")
            except self.database_errors as rollback_error:
                self.logger.critical(f"ROLLBACK FAILED - Database may be in inconsistent state: {rollback_error}")
            raise
        finally:
            try:
                cursor.close()
            except self.database_errors:
                pass

    def execute_script(self, script: str) -> int:
        """
        Execute a semicolon separated script (such as generated DDL) in one transaction.

        Returns:
            Number of statements executed
        """
        statements = [s.strip() for s in script.split(";\n") if s.strip()]
        with self.get_connection() as connection:
            with self.transaction(connection) as cursor:
                for statement in statements:
                    cursor.execute(statement.rstrip(';'))
        self.logger.info(f"Executed {len(statements)} statements")
        return len(statements)

    def truncate_tables(self, table_names: Sequence[str]) -> None:
        """Delete every row of the given tables in one transaction, in the given order."""
        with self.get_connection() as connection:
            with self.transaction(connection) as cursor:
                for table_name in table_names:
                    cursor.execute(f"DELETE FROM {self.qualified(table_name)}")
                    self.logger.debug(f"Cleared table {table_name}")
        self.logger.info(f"Cleared {len(table_names)} tables before reload")

    def insert_rows(self, cursor, table_name: str, columns: Sequence[str], rows: List[Dict[str, Any]]) -> int:
        """Insert rows through the bulk insert strategy on an open transaction cursor."""
        return self.insert_strategy.insert(cursor, table_name, self.qualified(table_name), columns, rows)

    def count_rows(self, table_name: str) -> int:
        with self.get_connection() as connection:
            cursor = connection.cursor()
            try:
                cursor.execute(f"SELECT COUNT(*) FROM {self.qualified(table_name)}")
                return int(cursor.fetchone()[0])
            finally:
                cursor.close()

    def count_unparented_rows(self, conf: TableConf, root_conf: TableConf) -> int:
        """Count rows of an auxiliary table whose root record id is not in the root table."""
        parent_key = NameUtils.quote_identifier(conf.parent_key_column)
        root_key = NameUtils.quote_identifier(root_conf.key_column)
        sql = (f"SELECT COUNT(*) FROM {self.qualified(conf.table_name)} "
               f"WHERE {parent_key} NOT IN (SELECT {root_key} FROM {self.qualified(root_conf.table_name)} "
               f"WHERE {root_key} IS NOT NULL)")
        with self.get_connection() as connection:
            cursor = connection.cursor()
            try:
                cursor.execute(sql)
                return int(cursor.fetchone()[0])
            finally:
                cursor.close()

    def fetch_page(self, connection, conf: TableConf, limit: int, offset: int) -> List[Dict[str, Any]]:
        """Read one page of a root table in document order."""
        columns = ', '.join(NameUtils.quote_identifier(c) for c in conf.db_column_names)
        order_by = f"{NameUtils.quote_identifier(ORDER_INDEX_COLUMN)}, {NameUtils.quote_identifier(conf.key_column)}"
        sql = (f"SELECT {columns} FROM {self.qualified(conf.table_name)} "
               f"ORDER BY {order_by} LIMIT {int(limit)} OFFSET {int(offset)}")
        return self._query(connection, sql, ())

    def fetch_children(self, connection, conf: TableConf, parent_ids: Sequence[str],
                       chunk_size: int = ProcessingDefaults.IN_CLAUSE_LIMIT) -> List[Dict[str, Any]]:
        """Read the rows of an auxiliary table belonging to the given root record ids."""
        if not parent_ids:
            return []
        columns = ', '.join(NameUtils.quote_identifier(c) for c in conf.db_column_names)
        id_column = NameUtils.quote_identifier(conf.parent_key_column)
        rows: List[Dict[str, Any]] = []
        for chunk in chunked(list(parent_ids), chunk_size):
            placeholders = ', '.join('?' * len(chunk))
            sql = (f"SELECT {columns} FROM {self.qualified(conf.table_name)} "
                   f"WHERE {id_column} IN ({placeholders}) "
                   f"ORDER BY {NameUtils.quote_identifier(ORDER_INDEX_COLUMN)}")
            rows.extend(self._query(connection, sql, tuple(chunk)))
        return rows

    def _query(self, connection, sql: str, params: Tuple) -> List[Dict[str, Any]]:
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"SQL: {sql} params={len(params)}")
        cursor = connection.cursor()
        try:
            cursor.execute(sql, params)
            names = [d[0] for d in cursor.description]
            return [dict(zip(names, row)) for row in cursor.fetchall()]
        finally:
            cursor.close()
