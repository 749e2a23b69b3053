"""
End-to-end tests: infer, create tables, import and export against SQLite, then
compare the regenerated document with the source document.
"""

import json

import pytest
import yaml
from lxml import etree

from xmldb_tool.config.config_manager import ConfigManager
from xmldb_tool.processing import DbToXmlExporter, XmlToDbImporter
from xmldb_tool.relationship import RelationshipAnalyzer
from xmldb_tool.schema import SchemaInferenceEngine, TableForest

from helpers import WORLD_XML, canonical, create_sqlite_tables, fetch_all, sqlite_engine, write_xml


def _round_trip(tmp_path, source, dataset, encoding, page_size=2):
    tables = SchemaInferenceEngine().infer_files([source], dataset=dataset, encoding=encoding).tables
    forest = TableForest.build(tables)
    db_path = tmp_path / f"{dataset}.sqlite"
    create_sqlite_tables(db_path, tables)
    engine = sqlite_engine(db_path)

    imported = XmlToDbImporter(engine, workers=2, enable_monitoring=False).import_file(
        source, forest, dataset, encoding=encoding)
    destination = tmp_path / "export" / f"{dataset}.xml"
    exported = DbToXmlExporter(engine, page_size=page_size, workers=2, enable_monitoring=False).export(
        forest, dataset, destination)
    return imported, exported, destination, db_path


class TestQuestRoundTrip:

    def test_document_survives_round_trip(self, tmp_path, quest_file):
        imported, exported, destination, db_path = _round_trip(tmp_path, quest_file, "quest", "utf-8")

        assert imported.batches_failed == 0
        assert imported.rows_by_table["quest"] == 5
        assert exported.records_written == 5
        assert exported.orphan_rows == 0

        original = etree.parse(str(quest_file)).getroot()
        regenerated = etree.parse(str(destination)).getroot()
        assert canonical(regenerated) == canonical(original)

    def test_rows_keep_document_positions(self, tmp_path, quest_file):
        _, _, _, db_path = _round_trip(tmp_path, quest_file, "quest", "utf-8")
        rows = fetch_all(db_path, "SELECT `id`, `__order_index` FROM `quest` ORDER BY `__order_index`")
        assert rows == [("1", 0), ("2", 1), ("3", 2), ("4", 3), ("5", 4)]

    @pytest.mark.parametrize("page_size", [1, 5, 100])
    def test_page_size_does_not_change_output(self, tmp_path, quest_file, page_size):
        _, _, destination, _ = _round_trip(tmp_path, quest_file, "quest", "utf-8", page_size=page_size)
        original = etree.parse(str(quest_file)).getroot()
        assert canonical(etree.parse(str(destination)).getroot()) == canonical(original)


class TestWorldRoundTrip:
    """The world dataset is a single UTF-16 record without a wrapping root."""

    def test_single_record_utf16(self, tmp_path):
        source = write_xml(tmp_path / "xml" / "world.xml", WORLD_XML, encoding="utf-16")

        imported, exported, destination, _ = _round_trip(tmp_path, source, "world", "utf-16")

        assert imported.rows_by_table == {"world": 1, "world__zones__zone": 2}
        assert exported.records_written == 1

        tree = etree.parse(str(destination))
        assert tree.docinfo.encoding.upper().startswith("UTF-16")
        assert canonical(tree.getroot()) == canonical(etree.parse(str(source)).getroot())


class TestOptionalElements:
    """Elements missing from the first records keep their place in later ones."""

    def test_sibling_order_survives_round_trip(self, tmp_path):
        source = write_xml(tmp_path / "xml" / "items.xml", (
            "<items>"
            "<item><id>1</id><name>a</name><desc>x</desc></item>"
            "<item><id>2</id><name>b</name><level>3</level><desc>y</desc></item>"
            "<item><id>3</id><tier>gold</tier><name>c</name><desc>z</desc><tag>new</tag><tag>rare</tag></item>"
            "</items>"))

        _, exported, destination, _ = _round_trip(tmp_path, source, "items", "utf-8")

        regenerated = etree.parse(str(destination)).getroot()
        assert exported.records_written == 3
        assert [child.tag for child in regenerated[1]] == ["id", "name", "level", "desc"]
        assert [child.tag for child in regenerated[2]] == ["id", "tier", "name", "desc", "tag", "tag"]
        assert canonical(regenerated) == canonical(etree.parse(str(source)).getroot())


class TestRepeatedRuns:

    def test_reimport_then_export_is_stable(self, tmp_path, quest_file):
        _, _, destination, db_path = _round_trip(tmp_path, quest_file, "quest", "utf-8")
        forest = TableForest.build(SchemaInferenceEngine().infer_files([quest_file], dataset="quest").tables)
        engine = sqlite_engine(db_path)

        XmlToDbImporter(engine, workers=1, enable_monitoring=False).import_file(quest_file, forest, "quest")
        second = tmp_path / "second.xml"
        DbToXmlExporter(engine, page_size=3, workers=1, enable_monitoring=False).export(forest, "quest", second)

        assert fetch_all(db_path, "SELECT COUNT(*) FROM `quest__tag`")[0][0] == 3
        assert canonical(etree.parse(str(second)).getroot()) == canonical(etree.parse(str(destination)).getroot())


def test_configured_relationship_analysis(tmp_path):
    corpus = tmp_path / "xml"
    monsters = "".join(f"<monster><name>monster_{i}</name></monster>" for i in range(20))
    write_xml(corpus / "monsters.xml", f"<monsters>{monsters}</monsters>")
    drops = "".join(f"<drop><monster_name>monster_{i}</monster_name></drop>" for i in range(8))
    write_xml(corpus / "drops.xml", f"<drops>{drops}</drops>")
    with open(tmp_path / "application.yml", 'w', encoding='utf-8') as file:
        yaml.safe_dump({'xmlPath': {'xmldb': str(corpus)}}, file)

    report = RelationshipAnalyzer().analyze_configured(ConfigManager(tmp_path))

    persisted = tmp_path / "conf" / "analysis" / "relationship-analysis.json"
    payload = json.loads(persisted.read_text(encoding="utf-8"))
    assert payload["relationship_count"] == len(report.relationships) == 1
    relationship = payload["relationships"][0]
    assert relationship["source_path"] == "drops/drop/monster_name"
    assert relationship["target_file"] == "monsters.xml"
