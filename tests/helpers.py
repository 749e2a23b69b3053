"""Test helpers: XML fixture builders and an SQLite stand-in for the MySQL database.

SQLite accepts backtick quoted identifiers, qmark parameters and LIMIT/OFFSET, so
MigrationEngine runs against it unchanged. The generated MySQL DDL is not valid
SQLite, hence create_sqlite_tables builds equivalent tables from the TableConfs.
"""
import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Iterable, List

from lxml import etree

from xmldb_tool.database.migration_engine import MigrationEngine
from xmldb_tool.models import ColumnKind, TableConf
from xmldb_tool.utils import NameUtils


QUEST_XML = """<?xml version="1.0" encoding="UTF-8"?>
<quests version="3">
  <quest type="main">
    <id>1</id>
    <name lang="en">First Steps</name>
    <fighter_selectable_reward>
      <data>
        <item>sword</item>
        <count>1</count>
        <reqs>
          <req>level 5</req>
          <req>class fighter</req>
        </reqs>
      </data>
      <data>
        <item>shield</item>
        <count>1</count>
      </data>
      <data>
        <item>potion</item>
        <count>5</count>
        <reqs>
          <req>level 1</req>
        </reqs>
      </data>
    </fighter_selectable_reward>
    <tag>intro</tag>
    <tag>tutorial</tag>
  </quest>
  <quest type="side">
    <id>2</id>
    <name lang="en">Wolf Hunt</name>
  </quest>
  <quest type="side">
    <id>3</id>
    <name lang="en">Lost Ring</name>
    <tag>village</tag>
  </quest>
  <quest type="daily">
    <id>4</id>
    <name lang="en">Daily Bread</name>
  </quest>
  <quest type="main">
    <id>5</id>
    <name lang="en">Into the Dark</name>
  </quest>
</quests>
"""

QUEST_TABLES = [
    "quest",
    "quest__fighter_selectable_reward__data",
    "quest__fighter_selectable_reward__data__reqs__req",
    "quest__tag",
]

WORLD_XML = """<?xml version="1.0" encoding="UTF-16"?>
<world build="42">
  <id>w1</id>
  <name>Aurora</name>
  <zones>
    <zone>
      <zone_name>Plains</zone_name>
      <level>1</level>
    </zone>
    <zone>
      <zone_name>Caves</zone_name>
      <level>10</level>
    </zone>
  </zones>
</world>
"""


def write_xml(path: Path, content: str, encoding: str = "utf-8") -> Path:
    """Write ``content`` with ``encoding`` (UTF-16 output carries a byte-order mark)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content.encode(encoding))
    return path


def simple_records_xml(count: int, root_tag: str = "items", item_tag: str = "item") -> str:
    """Flat document with ``count`` records of id and name."""
    records = "\n".join(
        f"  <{item_tag}><id>{i}</id><name>name {i}</name></{item_tag}>" for i in range(1, count + 1))
    return f'<?xml version="1.0" encoding="UTF-8"?>\n<{root_tag}>\n{records}\n</{root_tag}>\n'


def sqlite_engine(db_path: Path, **kwargs) -> MigrationEngine:
    """MigrationEngine over an SQLite file; every unit of work opens its own connection."""
    return MigrationEngine(
        connection_factory=lambda: sqlite3.connect(str(db_path), timeout=30),
        database_errors=(sqlite3.Error,),
        **kwargs
    )


def create_sqlite_tables(db_path: Path, tables: Iterable[TableConf]) -> None:
    with closing(sqlite3.connect(str(db_path))) as connection:
        for conf in tables:
            definitions = []
            for column in conf.db_columns:
                if column.kind == ColumnKind.ORDER:
                    sql_type = "INTEGER NOT NULL"
                elif column.kind == ColumnKind.KEY:
                    sql_type = "TEXT PRIMARY KEY"
                else:
                    sql_type = "TEXT"
                definitions.append(f"{NameUtils.quote_identifier(column.name)} {sql_type}")
            connection.execute(f"CREATE TABLE {NameUtils.quote_identifier(conf.table_name)} "
                               f"({', '.join(definitions)})")
        connection.commit()


def fetch_all(db_path: Path, sql: str, params=()) -> List[tuple]:
    with closing(sqlite3.connect(str(db_path))) as connection:
        return connection.execute(sql, params).fetchall()


def canonical(element):
    """Comparable form of an element tree: tag, attributes, stripped text and children."""
    text = (element.text or '').strip()
    return (
        etree.QName(element).localname,
        tuple(sorted(element.attrib.items())),
        text,
        tuple(canonical(child) for child in element if isinstance(child.tag, str)),
    )
