"""
Data transfer between XML documents and database tables.
"""

from .row_flattener import FlattenedDocument, RowFlattener
from .xml_importer import BatchOutcome, BatchWork, XmlToDbImporter
from .db_exporter import DbToXmlExporter, PageOutcome, RecordBuilder

__all__ = [
    'BatchOutcome',
    'BatchWork',
    'DbToXmlExporter',
    'FlattenedDocument',
    'PageOutcome',
    'RecordBuilder',
    'RowFlattener',
    'XmlToDbImporter',
]
