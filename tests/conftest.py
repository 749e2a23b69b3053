"""Shared pytest fixtures."""
import os

import pytest

from xmldb_tool.config.config_manager import reset_config_manager
from xmldb_tool.schema import SchemaInferenceEngine, TableForest

from helpers import QUEST_XML, create_sqlite_tables, sqlite_engine, write_xml


@pytest.fixture(autouse=True)
def isolated_configuration(monkeypatch):
    """Every test starts without XMLDB_* overrides and without a cached ConfigManager."""
    for name in list(os.environ):
        if name.startswith("XMLDB_"):
            monkeypatch.delenv(name, raising=False)
    reset_config_manager()
    yield
    reset_config_manager()


@pytest.fixture
def quest_file(tmp_path):
    return write_xml(tmp_path / "xml" / "quest.xml", QUEST_XML)


@pytest.fixture
def quest_tables(quest_file):
    return SchemaInferenceEngine().infer_files([quest_file], dataset="quest", encoding="utf-8").tables


@pytest.fixture
def quest_forest(quest_tables):
    return TableForest.build(quest_tables)


@pytest.fixture
def quest_db(tmp_path, quest_tables):
    """SQLite file holding empty quest tables."""
    db_path = tmp_path / "xmldb.sqlite"
    create_sqlite_tables(db_path, quest_tables)
    return db_path


@pytest.fixture
def quest_engine(quest_db):
    return sqlite_engine(quest_db)
