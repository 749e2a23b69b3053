"""
MySQL DDL generation for inferred table layouts.

Each table is emitted as ``DROP TABLE IF EXISTS`` followed by ``CREATE TABLE`` in
forest order, with every column commented with the XML path it came from.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

from ..models import ColumnKind, ColumnMapping, TableConf
from ..utils import NameUtils
from .table_forest import TableForest


TABLE_OPTIONS = "ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 ROW_FORMAT=DYNAMIC"


class DdlGenerator:
    """
    Renders CREATE TABLE scripts.

    Root tables get the key as ``VARCHAR(255) PRIMARY KEY``; auxiliary tables get a
    non-unique, indexed parent id column. Synthetic columns come first, data columns
    follow in configuration order; collection placeholders produce no column.
    """

    def __init__(self, schema_name: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self.schema_name = schema_name or None

    def qualified(self, table_name: str) -> str:
        name = f"{self.schema_name}.{table_name}" if self.schema_name else table_name
        return NameUtils.quote_identifier(name)

    def generate(self, forest: TableForest, root_table: Optional[str] = None) -> str:
        """
        Script for every table of the forest, or of one dataset's subtree.

        Orphan tables are skipped with a warning since they cannot be loaded or exported.
        """
        tables = forest.subtree(root_table) if root_table else forest.walk()
        for orphan in forest.orphans:
            self.logger.warning(f"Skipping DDL for orphan table {orphan}")
        statements = [self.table_ddl(conf) for conf in tables]
        self.logger.info(f"Generated DDL for {len(statements)} tables")
        return "\n\n".join(statements) + "\n"

    def table_ddl(self, conf: TableConf) -> str:
        lines = [self._column_definition(column, conf) for column in self._ordered_columns(conf)]
        if not conf.is_root_table:
            lines.append(f"KEY ({NameUtils.quote_identifier(conf.parent_key_column)})")

        body = ",\n".join(f"    {line}" for line in lines)
        comment = NameUtils.escape_comment(conf.xml_path or conf.table_name)
        qualified = self.qualified(conf.table_name)
        return (
            f"DROP TABLE IF EXISTS {qualified};\n"
            f"CREATE TABLE {qualified} (\n"
            f"{body}\n"
            f") {TABLE_OPTIONS} COMMENT = '{comment}';"
        )

    def _ordered_columns(self, conf: TableConf) -> List[ColumnMapping]:
        synthetic_order = [ColumnKind.KEY, ColumnKind.PARENT_KEY, ColumnKind.ORDER, ColumnKind.PARENT_ORDER_PATH]
        columns = conf.db_columns
        leading = sorted((c for c in columns if c.kind in synthetic_order),
                         key=lambda c: synthetic_order.index(c.kind))
        return leading + [c for c in columns if c.kind not in synthetic_order]

    def _column_definition(self, column: ColumnMapping, conf: TableConf) -> str:
        name = NameUtils.quote_identifier(column.name)
        comment = NameUtils.escape_comment(column.comment)

        if column.kind == ColumnKind.KEY:
            definition = f"{name} {column.sql_type or 'VARCHAR(255)'} PRIMARY KEY"
        elif column.kind == ColumnKind.ORDER:
            definition = f"{name} INT NOT NULL DEFAULT 0"
        elif column.kind in (ColumnKind.PARENT_KEY, ColumnKind.PARENT_ORDER_PATH):
            definition = f"{name} {column.sql_type or 'VARCHAR(255)'} NOT NULL"
        else:
            definition = f"{name} {column.sql_type or 'VARCHAR(64)'}"
            if not column.nullable:
                definition += " NOT NULL"
        return f"{definition} COMMENT '{comment}'"

    def write(self, forest: TableForest, path: Union[str, Path], root_table: Optional[str] = None) -> Path:
        """Write the script to ``path`` as UTF-8."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.generate(forest, root_table), encoding='utf-8')
        self.logger.info(f"Wrote DDL to {path}")
        return path
