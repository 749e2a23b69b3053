"""
Core data models for the XML/relational data bridge.

This module defines the table configuration structures that describe how an XML
dataset is laid out in the database, plus the result objects returned by the
import and export pipelines.
"""

from dataclasses import dataclass, field, asdict
from typing import List, Optional, Dict, Any
from enum import Enum


ORDER_INDEX_COLUMN = "__order_index"
PARENT_ORDER_PATH_COLUMN = "__parent_order_path"
ATTRIBUTE_PREFIX = "_attr_"
TABLE_NAME_SEPARATOR = "__"


def element_attribute_column(element: str, attribute: str) -> str:
    """Column name for an attribute of a leaf child element (_attr__<element>__<attr>)."""
    return f"{ATTRIBUTE_PREFIX}_{element}{TABLE_NAME_SEPARATOR}{attribute}"


class ColumnKind(Enum):
    """How a column is populated from (and rendered back to) XML."""
    KEY = "key"
    ELEMENT = "element"
    ATTRIBUTE = "attribute"
    ELEMENT_ATTRIBUTE = "element_attribute"
    TEXT = "text"
    COLLECTION = "collection"
    PARENT_KEY = "parent_key"
    ORDER = "order"
    PARENT_ORDER_PATH = "parent_order_path"


@dataclass
class ColumnMapping:
    """
    Maps one XML element or attribute to one database column.

    Collection placeholders (``kind == COLLECTION``) have no database column; they
    only remember where a child table's elements sit among their siblings.

    Attributes:
        name: Database column name
        xml_name: Local name of the element or attribute
        kind: How the value is read from and written to XML
        xml_path: Slash separated path from the document root (attributes as /@name)
        sql_type: Column type used in DDL (VARCHAR(n), TEXT, INT)
        max_length: Longest value observed during inference
        nullable: Whether the column accepts NULL
        owner: Element that carries the attribute, for ELEMENT_ATTRIBUTE columns
        child_table: Table holding the items, for COLLECTION placeholders
        comment: Column comment, the XML path for data columns
    """
    name: str
    xml_name: str
    kind: ColumnKind
    xml_path: str = ""
    sql_type: Optional[str] = None
    max_length: int = 0
    nullable: bool = True
    owner: Optional[str] = None
    child_table: Optional[str] = None
    comment: Optional[str] = None

    def __post_init__(self):
        """Validate column mapping and normalize kind."""
        if not self.name:
            raise ValueError("name cannot be empty")
        if isinstance(self.kind, str):
            self.kind = ColumnKind(self.kind)
        if self.kind == ColumnKind.COLLECTION and not self.child_table:
            raise ValueError(f"collection column {self.name} requires child_table")
        if self.kind == ColumnKind.ELEMENT_ATTRIBUTE and not self.owner:
            raise ValueError(f"element attribute column {self.name} requires owner")
        if self.comment is None:
            self.comment = self.xml_path or self.name

    @property
    def is_db_column(self) -> bool:
        return self.kind != ColumnKind.COLLECTION

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ColumnMapping':
        return cls(**data)


@dataclass
class TableConf:
    """
    Layout of one table generated from an XML dataset.

    Root tables hold one row per record element and carry the document level
    information needed to write the file back. Auxiliary tables hold the items
    of a repeated or nested child element and point back at the root record.

    Attributes:
        table_name: Table name, levels joined by a double underscore
        columns: Ordered column mappings, collection placeholders included
        parent_table: Name of the parent table, None for root tables
        xml_path: Path of the record/item element from the document root
        item_tag: Element name of one record or item
        container_tag: Wrapper element around the items, if any
        xml_root_tag: Document root element (root tables only)
        xml_root_attrs: Attributes of the document root (root tables only)
        encoding: Declared file encoding of the dataset (root tables only)
        file_path: Source file the layout was inferred from (root tables only)
        key_column: Primary key column (root tables only)
        parent_key_column: Column holding the root record id (auxiliary tables only)
    """
    table_name: str
    columns: List[ColumnMapping] = field(default_factory=list)
    parent_table: Optional[str] = None
    xml_path: str = ""
    item_tag: Optional[str] = None
    container_tag: Optional[str] = None
    xml_root_tag: Optional[str] = None
    xml_root_attrs: Dict[str, str] = field(default_factory=dict)
    encoding: str = "utf-8"
    file_path: Optional[str] = None
    key_column: Optional[str] = None
    parent_key_column: Optional[str] = None

    def __post_init__(self):
        """Validate table configuration."""
        if not self.table_name:
            raise ValueError("table_name cannot be empty")
        self.columns = [c if isinstance(c, ColumnMapping) else ColumnMapping.from_dict(c)
                        for c in self.columns]
        seen = set()
        for column in self.columns:
            if column.name in seen:
                raise ValueError(f"Duplicate column '{column.name}' in table '{self.table_name}'")
            seen.add(column.name)
        if self.parent_table is None and self.key_column and self.key_column not in seen:
            raise ValueError(f"key_column '{self.key_column}' not defined in table '{self.table_name}'")

    @property
    def is_root_table(self) -> bool:
        return self.parent_table is None

    @property
    def db_columns(self) -> List[ColumnMapping]:
        """Columns that exist in the database, in declaration order."""
        return [c for c in self.columns if c.is_db_column]

    @property
    def db_column_names(self) -> List[str]:
        return [c.name for c in self.columns if c.is_db_column]

    @property
    def collection_columns(self) -> List[ColumnMapping]:
        return [c for c in self.columns if c.kind == ColumnKind.COLLECTION]

    @property
    def id_column(self) -> Optional[str]:
        """Column carrying the root record id in this table."""
        return self.key_column if self.is_root_table else self.parent_key_column

    @property
    def has_parent_order_path(self) -> bool:
        return any(c.kind == ColumnKind.PARENT_ORDER_PATH for c in self.columns)

    def get_column(self, name: str) -> Optional[ColumnMapping]:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["columns"] = [c.to_dict() for c in self.columns]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TableConf':
        return cls(**data)


@dataclass
class ImportResult:
    """
    Results from importing one or more XML files of a dataset.

    Attributes:
        rows_written: Rows committed to the database
        rows_failed: Rows that were rolled back or could not be built
        errors: Error messages encountered
        batches_succeeded: Number of committed batches
        batches_failed: Number of batches that exhausted their retries
        rows_by_table: Committed rows per table
        files_skipped: Files that could not be parsed
        performance_metrics: Timing and resource figures
    """
    rows_written: int = 0
    rows_failed: int = 0
    errors: List[str] = None
    batches_succeeded: int = 0
    batches_failed: int = 0
    rows_by_table: Dict[str, int] = None
    files_skipped: List[str] = None
    performance_metrics: Dict[str, Any] = None

    def __post_init__(self):
        """Initialize default values for mutable fields."""
        if self.errors is None:
            self.errors = []
        if self.rows_by_table is None:
            self.rows_by_table = {}
        if self.files_skipped is None:
            self.files_skipped = []
        if self.performance_metrics is None:
            self.performance_metrics = {}

    @property
    def success_rate(self) -> float:
        """Calculate the success rate as a percentage."""
        total = self.rows_written + self.rows_failed
        if total == 0:
            return 0.0
        return (self.rows_written / total) * 100

    def merge(self, other: 'ImportResult') -> None:
        """Fold another result into this one."""
        self.rows_written += other.rows_written
        self.rows_failed += other.rows_failed
        self.errors.extend(other.errors)
        self.batches_succeeded += other.batches_succeeded
        self.batches_failed += other.batches_failed
        self.files_skipped.extend(other.files_skipped)
        for table_name, count in other.rows_by_table.items():
            self.rows_by_table[table_name] = self.rows_by_table.get(table_name, 0) + count


@dataclass
class ExportResult:
    """
    Results from exporting a dataset to an XML file.

    Attributes:
        destination: File that was written
        records_written: Record elements written
        records_skipped: Root rows without a key value
        orphan_rows: Auxiliary rows whose parent could not be resolved
        pages: Number of pages read from the root table
        errors: Error messages encountered
        performance_metrics: Timing and resource figures
    """
    destination: Optional[str] = None
    records_written: int = 0
    records_skipped: int = 0
    orphan_rows: int = 0
    pages: int = 0
    errors: List[str] = None
    performance_metrics: Dict[str, Any] = None

    def __post_init__(self):
        if self.errors is None:
            self.errors = []
        if self.performance_metrics is None:
            self.performance_metrics = {}
