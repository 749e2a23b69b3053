"""
XML <-> Relational Game Data Bridge

Infers relational table layouts from nested XML game configuration files, moves
data between those files and the database in both directions, and discovers
value-based relationships between columns across an XML corpus.
"""

__version__ = "1.0.0"

# Import core models and interfaces for easy access
from .models import (
    ColumnKind,
    ColumnMapping,
    TableConf,
    ImportResult,
    ExportResult
)

from .interfaces import (
    ConfigurationManagerInterface,
    XmlReaderInterface,
    SchemaInferenceInterface,
    DataImporterInterface,
    DataExporterInterface,
    PerformanceMonitorInterface
)

from .exceptions import (
    XmlDbError,
    XMLParsingError,
    EncodingMismatchError,
    SchemaInferenceError,
    SchemaConflictError,
    SchemaValidationError,
    DatabaseConnectionError,
    BatchWriteError,
    ExportError,
    ConfigurationError,
    TextServiceError,
    TransportError,
    AuthError
)

__all__ = [
    # Core models
    "ColumnKind",
    "ColumnMapping",
    "TableConf",
    "ImportResult",
    "ExportResult",

    # Interfaces
    "ConfigurationManagerInterface",
    "XmlReaderInterface",
    "SchemaInferenceInterface",
    "DataImporterInterface",
    "DataExporterInterface",
    "PerformanceMonitorInterface",

    # Exceptions
    "XmlDbError",
    "XMLParsingError",
    "EncodingMismatchError",
    "SchemaInferenceError",
    "SchemaConflictError",
    "SchemaValidationError",
    "DatabaseConnectionError",
    "BatchWriteError",
    "ExportError",
    "ConfigurationError",
    "TextServiceError",
    "TransportError",
    "AuthError"
]
