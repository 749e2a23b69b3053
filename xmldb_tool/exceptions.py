"""
Custom exceptions for the XML/relational data bridge.

This module defines specific exception types for the different error conditions
that can occur while inferring schemas, moving data between XML files and the
database, and calling the external text-rewriting services.
"""


class XmlDbError(Exception):
    """Base exception for all XML/database bridge errors."""

    def __init__(self, message: str, source: str = None, error_category: str = None):
        """
        Initialize bridge error.

        Args:
            message: Error description
            source: Optional file, table or record identifier the error relates to
            error_category: Optional machine-readable category (e.g. "database_error")
        """
        super().__init__(message)
        self.source = source
        self.error_category = error_category


class XMLParsingError(XmlDbError):
    """Exception raised when an XML document cannot be parsed."""

    def __init__(self, message: str, xml_content: str = None, source: str = None):
        """
        Initialize XML parsing error.

        Args:
            message: Error description
            xml_content: Optional XML content that failed to parse (truncated for logging)
            source: Optional path of the offending file
        """
        super().__init__(message, source, error_category="parsing_error")
        self.xml_content = xml_content[:500] + "..." if xml_content and len(xml_content) > 500 else xml_content


class EncodingMismatchError(XMLParsingError):
    """Raised when file bytes contradict the encoding declared for the dataset."""
    pass


class SchemaInferenceError(XmlDbError):
    """Exception raised when no usable table layout can be derived from a dataset."""
    pass


class SchemaConflictError(XmlDbError):
    """Exception raised when a document or table disagrees with the persisted layout."""
    pass


class SchemaValidationError(XmlDbError):
    """Exception raised when a table configuration set is structurally invalid."""
    pass


class DatabaseConnectionError(XmlDbError):
    """Exception raised when database connection fails."""
    pass


class BatchWriteError(XmlDbError):
    """Exception raised when a batch of rows cannot be written."""

    def __init__(self, message: str, table_name: str = None, batch_number: int = None,
                 error_category: str = "database_error"):
        super().__init__(message, table_name, error_category)
        self.table_name = table_name
        self.batch_number = batch_number


class ExportError(XmlDbError):
    """Exception raised when a dataset cannot be exported to XML."""
    pass


class ConfigurationError(XmlDbError):
    """Exception raised when configuration is invalid or missing."""
    pass


class TextServiceError(XmlDbError):
    """Base exception for failures of the external text-rewriting service."""
    pass


class TransportError(TextServiceError):
    """The text service could not be reached or returned an unusable response."""
    pass


class AuthError(TextServiceError):
    """The text service rejected the configured credentials."""
    pass
