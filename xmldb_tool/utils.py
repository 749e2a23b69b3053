"""
Utility functions for common patterns across the XML/relational data bridge.
"""

import re
from typing import Any, Iterator, List, Optional, Sequence, Tuple


class NameUtils:
    """Utility methods for building table and column identifiers."""

    _regex_cache = {
        'varchar': re.compile(r'^VARCHAR\((\d+)\)$', re.IGNORECASE),
    }

    @staticmethod
    def quote_identifier(name: str) -> str:
        """
        Quote a table or column name with backticks.

        Args:
            name: Identifier, optionally schema qualified with a dot

        Returns:
            Quoted identifier (e.g. `xmldb`.`quest`)
        """
        return '.'.join('`' + part.replace('`', '``') + '`' for part in name.split('.'))

    @staticmethod
    def shorten_table_name(name: str, max_length: int = 60) -> str:
        """
        Shorten a hierarchical table name to fit the database identifier limit.

        Segments are abbreviated from the last one backwards; each underscore
        separated word of a segment is reduced to its first letter until the
        joined name fits.

        Examples:
            'quest__fighter_selectable_reward__data' (fits) -> unchanged
            'a__very_long_segment_name' (limit 12) -> 'a__v_l_s_n'

        Returns:
            The shortened name, or the original name when it cannot be made to fit
        """
        if len(name) <= max_length:
            return name

        parts = name.split('__')
        for i in range(len(parts) - 1, -1, -1):
            parts[i] = NameUtils._abbreviate_segment(parts[i])
            candidate = '__'.join(parts)
            if len(candidate) <= max_length:
                return candidate
        return name

    @staticmethod
    def _abbreviate_segment(segment: str) -> str:
        words = segment.split('_')
        return '_'.join(word[0] if len(word) > 1 else word for word in words)

    @staticmethod
    def escape_comment(text: Optional[str]) -> str:
        """Escape a string for use inside a single-quoted SQL literal."""
        if text is None:
            return ''
        return str(text).replace('\\', '\\\\').replace("'", "''")


class SqlTypeUtils:
    """Helpers for comparing and widening inferred column types."""

    _RANKS = {'TEXT': 1, 'MEDIUMTEXT': 2}

    @staticmethod
    def rank(sql_type: Optional[str]) -> Tuple[int, int]:
        """
        Order column types from narrowest to widest.

        VARCHAR(n) ranks below TEXT, which ranks below MEDIUMTEXT; among VARCHAR
        types the declared length decides. Unknown types rank lowest.
        """
        if not sql_type:
            return (-1, 0)
        match = NameUtils._regex_cache['varchar'].match(sql_type.strip())
        if match:
            return (0, int(match.group(1)))
        return (SqlTypeUtils._RANKS.get(sql_type.strip().upper(), -1), 0)

    @staticmethod
    def wider(first: Optional[str], second: Optional[str]) -> Optional[str]:
        """Return whichever of two column types holds more data."""
        if SqlTypeUtils.rank(second) > SqlTypeUtils.rank(first):
            return second
        return first

    @staticmethod
    def varchar_capacity(sql_type: Optional[str]) -> Optional[int]:
        """Declared length of a VARCHAR type, or None for unbounded text types."""
        if not sql_type:
            return None
        match = NameUtils._regex_cache['varchar'].match(sql_type.strip())
        return int(match.group(1)) if match else None


def chunked(items: Sequence[Any], size: int) -> Iterator[List[Any]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size <= 0:
        raise ValueError("size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])
