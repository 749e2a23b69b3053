"""
XML document reading for game configuration files.

Documents are parsed with lxml with entity resolution and network access disabled.
When a dataset declares its encoding (UTF-16 for world data, UTF-8 otherwise) the
bytes are decoded strictly with that encoding instead of trusting the document, so a
mislabelled file fails loudly rather than being silently corrupted.
"""

import codecs
import logging
import re

from pathlib import Path
from typing import List, Optional, Union

from lxml import etree

from ..interfaces import XmlReaderInterface
from ..exceptions import ConfigurationError, EncodingMismatchError, XMLParsingError


_XML_DECLARATION = re.compile(r'^\s*<\?xml[^>]*\?>')
_UTF16_BOMS = (codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)


def element_children(element) -> List:
    """Child elements of ``element``, skipping comments and processing instructions."""
    return [child for child in element if isinstance(child.tag, str)]


def local_name(element) -> str:
    """Element tag without any namespace."""
    return etree.QName(element).localname


def normalize_encoding(encoding: str) -> str:
    """
    Canonical codec name for a declared encoding.

    Raises:
        ConfigurationError: If the encoding is unknown
    """
    try:
        return codecs.lookup(encoding).name
    except LookupError:
        raise ConfigurationError(f"Unknown encoding declared: {encoding}")


class XmlDocumentReader(XmlReaderInterface):
    """
    lxml based reader honouring per-dataset encodings.

    Blank text between elements is dropped so pretty-printed and compact files
    produce the same tree.
    """

    def __init__(self, huge_tree: bool = True):
        self.logger = logging.getLogger(__name__)
        self.huge_tree = huge_tree
        self.parse_count = 0

    def _make_parser(self):
        return etree.XMLParser(
            resolve_entities=False,
            no_network=True,
            remove_blank_text=True,
            huge_tree=self.huge_tree
        )

    def read_file(self, path: Union[str, Path], encoding: Optional[str] = None):
        """
        Parse an XML file.

        Args:
            path: File to read
            encoding: Declared dataset encoding; None lets lxml follow the document

        Returns:
            Root element

        Raises:
            XMLParsingError: If the file is missing, malformed or mislabelled
        """
        path = Path(path)
        try:
            raw = path.read_bytes()
        except OSError as e:
            raise XMLParsingError(f"Cannot read XML file {path}: {e}", source=str(path))
        return self.parse_bytes(raw, encoding=encoding, source=str(path))

    def parse_bytes(self, raw: bytes, encoding: Optional[str] = None, source: Optional[str] = None):
        """Parse XML bytes, decoding them with ``encoding`` when one is declared."""
        try:
            if encoding:
                text = self.decode(raw, encoding, source)
                root = etree.fromstring(_XML_DECLARATION.sub('', text, count=1), self._make_parser())
            else:
                root = etree.fromstring(raw, self._make_parser())
        except etree.XMLSyntaxError as e:
            preview = raw[:500].decode('utf-8', errors='replace')
            raise XMLParsingError(f"Malformed XML in {source or '<bytes>'}: {e}", xml_content=preview, source=source)

        if root is None:
            raise XMLParsingError(f"Empty XML document: {source or '<bytes>'}", source=source)

        self.parse_count += 1
        return root

    def decode(self, raw: bytes, encoding: str, source: Optional[str] = None) -> str:
        """
        Strictly decode file bytes with the declared encoding.

        Raises:
            EncodingMismatchError: If a byte-order mark or the byte layout contradicts
                the declared encoding, or the bytes are invalid for it
        """
        codec = normalize_encoding(encoding)
        has_utf16_bom = raw.startswith(_UTF16_BOMS)

        if codec.startswith('utf-16'):
            if not has_utf16_bom and raw[:1] == b'<' and raw[1:2] not in (b'\x00', b''):
                raise EncodingMismatchError(
                    f"{source or 'document'} is declared {codec} but looks like single-byte text",
                    source=source)
        elif has_utf16_bom:
            raise EncodingMismatchError(
                f"{source or 'document'} is declared {codec} but starts with a UTF-16 byte-order mark",
                source=source)

        try:
            text = raw.decode(codec)
        except UnicodeDecodeError as e:
            raise EncodingMismatchError(f"{source or 'document'} is not valid {codec}: {e}", source=source)

        return text.lstrip("\ufeff")
