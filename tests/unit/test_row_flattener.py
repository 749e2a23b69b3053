"""
Unit tests for RowFlattener: documents to table rows following the table forest.
"""

import pytest

from xmldb_tool.exceptions import SchemaConflictError
from xmldb_tool.parsing.xml_parser import XmlDocumentReader
from xmldb_tool.processing import RowFlattener

from helpers import QUEST_XML

DATA = "quest__fighter_selectable_reward__data"
REQ = "quest__fighter_selectable_reward__data__reqs__req"


@pytest.fixture
def flattener(quest_forest):
    return RowFlattener(quest_forest, "quest")


def _parse(text):
    return XmlDocumentReader().parse_bytes(text.encode("utf-8"), encoding="utf-8")


class TestQuestDocument:
    """The quest sample flattens into one row per record and per item."""

    @pytest.fixture
    def document(self, flattener):
        return flattener.flatten(_parse(QUEST_XML))

    def test_root_rows(self, document):
        rows = document.rows["quest"]
        assert document.records == 5
        assert [row["id"] for row in rows] == ["1", "2", "3", "4", "5"]
        assert [row["__order_index"] for row in rows] == [0, 1, 2, 3, 4]
        assert rows[0] == {
            "_attr_type": "main",
            "id": "1",
            "name": "First Steps",
            "_attr__name__lang": "en",
            "__order_index": 0,
        }

    def test_wrapped_collection_rows(self, document):
        rows = document.rows[DATA]
        assert len(rows) == 3
        assert [row["__order_index"] for row in rows] == [0, 1, 2]
        assert [row["item"] for row in rows] == ["sword", "shield", "potion"]
        assert {row["id"] for row in rows} == {"1"}
        assert all("__parent_order_path" not in row for row in rows)

    def test_nested_rows_carry_parent_order_path(self, document):
        rows = document.rows[REQ]
        assert [(row["__parent_order_path"], row["__order_index"], row["req"]) for row in rows] == [
            ("0", 0, "level 5"),
            ("0", 1, "class fighter"),
            ("2", 0, "level 1"),
        ]

    def test_repeated_leaf_rows(self, document):
        rows = document.rows["quest__tag"]
        assert [(row["id"], row["__order_index"], row["tag"]) for row in rows] == [
            ("1", 0, "intro"),
            ("1", 1, "tutorial"),
            ("3", 0, "village"),
        ]

    def test_totals(self, document):
        assert document.total_rows == 5 + 3 + 3 + 3
        assert document.skipped_records == 0
        assert document.warnings == []


class TestEdgeCases:

    def test_order_continues_across_files(self, flattener):
        document = flattener.flatten(_parse(QUEST_XML), start_index=5)
        assert [row["__order_index"] for row in document.rows["quest"]] == [5, 6, 7, 8, 9]

    def test_record_without_key_is_skipped(self, flattener):
        document = flattener.flatten(_parse("<quests><quest><name>nameless</name></quest>"
                                            "<quest><id>7</id></quest></quests>"))
        assert document.records == 1
        assert document.skipped_records == 1
        assert document.rows["quest"][0]["__order_index"] == 0
        assert len(document.warnings) == 1

    def test_wrong_document_root(self, flattener):
        with pytest.raises(SchemaConflictError):
            flattener.flatten(_parse("<items><quest><id>1</id></quest></items>"))

    def test_unknown_constructs_are_reported_once(self, flattener):
        document = flattener.flatten(_parse(
            '<quests><quest hidden="1"><id>1</id><secret>x</secret></quest>'
            '<quest hidden="1"><id>2</id><secret>y</secret></quest></quests>'))
        assert [row["id"] for row in document.rows["quest"]] == ["1", "2"]
        assert all("secret" not in row for row in document.rows["quest"])
        assert len(document.warnings) == 2
        assert any("<secret>" in warning for warning in document.warnings)
        assert any("_attr_hidden" in warning for warning in document.warnings)

    def test_missing_optional_elements(self, flattener):
        document = flattener.flatten(_parse("<quests><quest><id>9</id></quest></quests>"))
        assert document.rows["quest"] == [{"id": "9", "__order_index": 0}]
        assert document.rows[DATA] == []

    def test_repeated_record_id_is_skipped_with_its_children(self, flattener):
        document = flattener.flatten(_parse(
            "<quests><quest><id>1</id><tag>a</tag></quest>"
            "<quest><id>1</id><tag>b</tag></quest>"
            "<quest><id>2</id></quest></quests>"))
        assert [row["id"] for row in document.rows["quest"]] == ["1", "2"]
        assert [row["__order_index"] for row in document.rows["quest"]] == [0, 1]
        assert [row["tag"] for row in document.rows["quest__tag"]] == ["a"]
        assert document.skipped_records == 1
        assert any("repeats id 1" in warning for warning in document.warnings)

    def test_record_ids_are_shared_across_documents(self, flattener):
        seen = set()
        flattener.flatten(_parse("<quests><quest><id>1</id></quest></quests>"), seen_ids=seen)
        document = flattener.flatten(_parse("<quests><quest><id>1</id></quest><quest><id>3</id></quest></quests>"),
                                     start_index=1, seen_ids=seen)
        assert [row["id"] for row in document.rows["quest"]] == ["3"]
        assert seen == {"1", "3"}
