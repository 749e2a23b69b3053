"""XML document reading."""

from .xml_parser import XmlDocumentReader, element_children, local_name, normalize_encoding

__all__ = ['XmlDocumentReader', 'element_children', 'local_name', 'normalize_encoding']
