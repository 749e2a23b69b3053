"""
Command line smoke tests. Database access is redirected to SQLite.
"""

import json
from unittest.mock import patch

import pytest
from lxml import etree

from xmldb_tool import __version__
from xmldb_tool.cli import build_parser, main

from helpers import write_xml


@pytest.fixture
def workspace(tmp_path, quest_file):
    return tmp_path


def _run(workspace, *args):
    return main(["--config-dir", str(workspace), *args])


class TestParser:

    def test_import_options(self):
        options = build_parser().parse_args(["import", "quest", "a.xml", "b.xml", "--batch-size", "50",
                                             "--no-reload", "--rewrite-field", "name"])
        assert options.files == ["a.xml", "b.xml"]
        assert options.batch_size == 50
        assert options.no_reload
        assert options.rewrite_field == ["name"]
        assert options.model == "qwen"

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main(["--version"])
        assert excinfo.value.code == 0
        assert __version__ in capsys.readouterr().out


class TestCommands:

    def test_infer_writes_conf_and_ddl(self, workspace, quest_file):
        assert _run(workspace, "infer", "quest", str(quest_file)) == 0

        conf = json.loads((workspace / "conf" / "quest.json").read_text(encoding="utf-8"))
        assert conf
        assert "CREATE TABLE `quest`" in (workspace / "conf" / "quest.sql").read_text(encoding="utf-8")

    def test_infer_without_ddl(self, workspace, quest_file):
        assert _run(workspace, "infer", "quest", str(quest_file), "--no-ddl") == 0
        assert not (workspace / "conf" / "quest.sql").exists()

    def test_ddl_prints_script(self, workspace, quest_file, capsys):
        _run(workspace, "infer", "quest", str(quest_file), "--no-ddl")
        capsys.readouterr()

        assert _run(workspace, "ddl", "quest") == 0
        out = capsys.readouterr().out
        assert "DROP TABLE IF EXISTS `quest__tag`;" in out
        assert "CREATE TABLE `quest__fighter_selectable_reward__data`" in out

    def test_unknown_dataset_fails(self, workspace):
        assert _run(workspace, "export", "npc") == 1
        assert _run(workspace, "ddl", "npc") == 1

    def test_import_then_export(self, workspace, quest_file, quest_engine):
        _run(workspace, "infer", "quest", str(quest_file), "--no-ddl")

        with patch("xmldb_tool.cli._engine", return_value=quest_engine):
            assert _run(workspace, "import", "quest", str(quest_file), "--workers", "2") == 0
            assert _run(workspace, "export", "quest", "--page-size", "2") == 0

        root = etree.parse(str(workspace / "export" / "quest.xml")).getroot()
        assert [quest.findtext("id") for quest in root] == ["1", "2", "3", "4", "5"]

    def test_import_of_unparseable_file_reports_failure(self, workspace, quest_file, quest_engine):
        _run(workspace, "infer", "quest", str(quest_file), "--no-ddl")
        broken = write_xml(workspace / "broken.xml", "<quests><quest>")

        with patch("xmldb_tool.cli._engine", return_value=quest_engine):
            assert _run(workspace, "import", "quest", str(broken)) == 1

    def test_analyze_directories(self, workspace, tmp_path):
        corpus = tmp_path / "corpus"
        items = "".join(f"<item><name>item_{i}</name></item>" for i in range(10))
        write_xml(corpus / "items.xml", f"<items>{items}</items>")
        drops = "".join(f"<drop><item_name>item_{i}</item_name></drop>" for i in range(4))
        write_xml(corpus / "drops.xml", f"<drops>{drops}</drops>")
        output = tmp_path / "report.json"

        assert _run(workspace, "analyze", str(corpus), "--output", str(output)) == 0

        report = json.loads(output.read_text(encoding="utf-8"))
        assert report["relationship_count"] == 1
        assert report["relationships"][0]["target_path"] == "items/item/name"
