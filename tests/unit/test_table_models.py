"""
Unit tests for the table configuration models and naming utilities.
"""

import unittest

from xmldb_tool.models import (
    ColumnKind, ColumnMapping, ImportResult, TableConf, element_attribute_column
)
from xmldb_tool.utils import NameUtils, SqlTypeUtils, chunked


class TestColumnMapping(unittest.TestCase):
    """Validation of single column mappings."""

    def test_kind_accepts_string_value(self):
        column = ColumnMapping(name="name", xml_name="name", kind="element", xml_path="quests/quest/name")
        self.assertEqual(column.kind, ColumnKind.ELEMENT)
        self.assertEqual(column.comment, "quests/quest/name")

    def test_collection_requires_child_table(self):
        with self.assertRaises(ValueError):
            ColumnMapping(name="quest__tag", xml_name="tag", kind=ColumnKind.COLLECTION)

    def test_element_attribute_requires_owner(self):
        with self.assertRaises(ValueError):
            ColumnMapping(name="_attr__name__lang", xml_name="lang", kind=ColumnKind.ELEMENT_ATTRIBUTE)

    def test_collection_is_not_a_database_column(self):
        column = ColumnMapping(name="quest__tag", xml_name="tag", kind=ColumnKind.COLLECTION,
                               child_table="quest__tag")
        self.assertFalse(column.is_db_column)

    def test_element_attribute_column_name(self):
        self.assertEqual(element_attribute_column("name", "lang"), "_attr__name__lang")


class TestTableConf(unittest.TestCase):
    """Validation and serialization of table configurations."""

    def _columns(self):
        return [
            ColumnMapping(name="id", xml_name="id", kind=ColumnKind.KEY, sql_type="VARCHAR(255)"),
            ColumnMapping(name="__order_index", xml_name="__order_index", kind=ColumnKind.ORDER, sql_type="INT"),
            ColumnMapping(name="name", xml_name="name", kind=ColumnKind.ELEMENT, sql_type="VARCHAR(16)"),
            ColumnMapping(name="quest__tag", xml_name="tag", kind=ColumnKind.COLLECTION, child_table="quest__tag"),
        ]

    def test_duplicate_column_rejected(self):
        columns = self._columns() + [ColumnMapping(name="name", xml_name="name", kind=ColumnKind.ELEMENT)]
        with self.assertRaises(ValueError):
            TableConf(table_name="quest", columns=columns, key_column="id")

    def test_unknown_key_column_rejected(self):
        with self.assertRaises(ValueError):
            TableConf(table_name="quest", columns=self._columns(), key_column="code")

    def test_db_column_names_skip_collections(self):
        conf = TableConf(table_name="quest", columns=self._columns(), key_column="id")
        self.assertEqual(conf.db_column_names, ["id", "__order_index", "name"])
        self.assertEqual([c.name for c in conf.collection_columns], ["quest__tag"])
        self.assertEqual(conf.id_column, "id")
        self.assertTrue(conf.is_root_table)

    def test_dict_round_trip(self):
        conf = TableConf(table_name="quest", columns=self._columns(), key_column="id",
                         item_tag="quest", xml_root_tag="quests", xml_root_attrs={"version": "3"})
        restored = TableConf.from_dict(conf.to_dict())
        self.assertEqual(restored, conf)
        self.assertEqual(conf.to_dict()["columns"][0]["kind"], "key")


class TestImportResult(unittest.TestCase):

    def test_merge_accumulates_counts(self):
        first = ImportResult(rows_written=3, batches_succeeded=1, rows_by_table={"quest": 3})
        second = ImportResult(rows_written=2, rows_failed=1, batches_failed=1,
                              rows_by_table={"quest": 2}, errors=["boom"])
        first.merge(second)
        self.assertEqual(first.rows_written, 5)
        self.assertEqual(first.rows_failed, 1)
        self.assertEqual(first.rows_by_table, {"quest": 5})
        self.assertEqual(first.errors, ["boom"])
        self.assertAlmostEqual(first.success_rate, 5 / 6 * 100)

    def test_success_rate_without_rows(self):
        self.assertEqual(ImportResult().success_rate, 0.0)


class TestNameUtils:
    """Identifier helpers."""

    def test_quote_identifier_with_schema(self):
        assert NameUtils.quote_identifier("xmldb.quest") == "`xmldb`.`quest`"

    def test_quote_identifier_escapes_backticks(self):
        assert NameUtils.quote_identifier("odd`name") == "`odd``name`"

    def test_short_names_unchanged(self):
        name = "quest__fighter_selectable_reward__data"
        assert NameUtils.shorten_table_name(name, 60) == name

    def test_long_names_abbreviated_from_the_end(self):
        assert NameUtils.shorten_table_name("a__very_long_segment_name", 12) == "a__v_l_s_n"

    def test_escape_comment(self):
        assert NameUtils.escape_comment("it's") == "it''s"
        assert NameUtils.escape_comment(None) == ""


class TestSqlTypeUtils:
    """Type ranking used when widening persisted columns."""

    def test_varchar_widens_to_text(self):
        assert SqlTypeUtils.wider("VARCHAR(64)", "TEXT") == "TEXT"
        assert SqlTypeUtils.wider("TEXT", "VARCHAR(64)") == "TEXT"

    def test_longer_varchar_wins(self):
        assert SqlTypeUtils.wider("VARCHAR(48)", "VARCHAR(16)") == "VARCHAR(48)"
        assert SqlTypeUtils.wider("VARCHAR(16)", "VARCHAR(112)") == "VARCHAR(112)"

    def test_varchar_capacity(self):
        assert SqlTypeUtils.varchar_capacity("VARCHAR(32)") == 32
        assert SqlTypeUtils.varchar_capacity("TEXT") is None


def test_chunked_splits_in_order():
    assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
