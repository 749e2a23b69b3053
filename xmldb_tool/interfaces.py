"""
Abstract interfaces and base classes for the XML/relational data bridge.

This module defines the contracts that the system components implement so they
can be swapped in tests and wired together through dependency injection.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

from .models import ExportResult, ImportResult


class ConfigurationManagerInterface(ABC):
    """Abstract interface for configuration management."""

    @abstractmethod
    def get_database_connection_string(self) -> str:
        """
        Get the database connection string.

        Returns:
            Connection string for the configured database
        """
        pass

    @abstractmethod
    def get_property(self, key: str, default: Any = None) -> Any:
        """
        Look up a dotted settings key.

        Args:
            key: Dotted key such as ``xmlPath.xmldb`` or ``ai.qwen.apikey``
            default: Value returned when the key is not configured
        """
        pass

    @abstractmethod
    def get_dataset_encoding(self, dataset: str) -> str:
        """Declared file encoding of a dataset."""
        pass


class XmlReaderInterface(ABC):
    """Abstract interface for XML document reading."""

    @abstractmethod
    def read_file(self, path: Union[str, Path], encoding: Optional[str] = None):
        """
        Parse an XML file using its declared encoding.

        Args:
            path: File to read
            encoding: Declared encoding; None lets the parser follow the document

        Returns:
            Root element of the parsed document

        Raises:
            XMLParsingError: If the file is malformed or its encoding does not match
        """
        pass


class SchemaInferenceInterface(ABC):
    """Abstract interface for deriving table layouts from XML documents."""

    @abstractmethod
    def infer_files(self, files: Sequence[Union[str, Path]], dataset: Optional[str] = None):
        """
        Infer the complete table configuration of a dataset.

        Args:
            files: XML documents belonging to one dataset
            dataset: Dataset (root table) name; defaults to the first file's stem

        Returns:
            InferenceResult with tables, conflicts and skipped files
        """
        pass


class DataImporterInterface(ABC):
    """Abstract interface for loading XML documents into the database."""

    @abstractmethod
    def import_file(self, xml_file: Union[str, Path], forest, root_table: str) -> ImportResult:
        """
        Load one XML file into the tables of a dataset.

        Args:
            xml_file: Document to load
            forest: TableForest describing the dataset's tables
            root_table: Root table of the dataset

        Returns:
            ImportResult with written and failed row counts
        """
        pass


class DataExporterInterface(ABC):
    """Abstract interface for writing database content back to XML."""

    @abstractmethod
    def export(self, forest, root_table: str, destination: Union[str, Path]) -> ExportResult:
        """
        Regenerate the XML document of a dataset.

        Args:
            forest: TableForest describing the dataset's tables
            root_table: Root table of the dataset
            destination: File to write

        Returns:
            ExportResult with record counts
        """
        pass


class PerformanceMonitorInterface(ABC):
    """Abstract interface for performance monitoring."""

    @abstractmethod
    def start_monitoring(self) -> None:
        """Start performance monitoring session."""
        pass

    @abstractmethod
    def stop_monitoring(self) -> Dict[str, Any]:
        """
        Stop monitoring and return the collected metrics.

        Returns:
            Performance summary dictionary
        """
        pass

    @abstractmethod
    def record_metric(self, metric_name: str, value: Any) -> None:
        """
        Record a custom performance metric.

        Args:
            metric_name: Name of the metric
            value: Metric value
        """
        pass
