"""
Persistence of table configurations.

Each dataset is stored as one UTF-8 JSON file, ``<conf_dir>/<dataset>.json``,
holding the flat list of its TableConfs. The persisted file is the source of truth
for import and export once DDL has been generated from it.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..models import TableConf
from ..exceptions import ConfigurationError


class TableConfStore:
    """Reads and writes dataset table configurations under a directory."""

    FORMAT_VERSION = 1

    def __init__(self, conf_dir: Union[str, Path]):
        self.logger = logging.getLogger(__name__)
        self.conf_dir = Path(conf_dir)

    def path_for(self, dataset: str) -> Path:
        return self.conf_dir / f"{dataset}.json"

    def load(self, dataset: str) -> Optional[List[TableConf]]:
        """
        Load a dataset's tables.

        Returns:
            Tables in stored order, or None when the dataset was never saved

        Raises:
            ConfigurationError: If the stored file is unreadable
        """
        path = self.path_for(dataset)
        if not path.exists():
            return None

        try:
            with open(path, 'r', encoding='utf-8') as file:
                data = json.load(file)
            tables = [TableConf.from_dict(entry) for entry in data.get("tables", [])]
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Failed to parse table configuration {path}: {e}", source=str(path))

        self.logger.debug(f"Loaded {len(tables)} tables for dataset {dataset} from {path}")
        return tables

    def save(self, dataset: str, tables: List[TableConf]) -> Path:
        """Write a dataset's tables, replacing any previous file."""
        self.conf_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(dataset)
        payload = {
            "format_version": self.FORMAT_VERSION,
            "dataset": dataset,
            "saved_at": datetime.now().isoformat(timespec="seconds"),
            "tables": [table.to_dict() for table in tables],
        }
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, 'w', encoding='utf-8') as file:
            json.dump(payload, file, ensure_ascii=False, indent=2)
        tmp_path.replace(path)
        self.logger.info(f"Saved {len(tables)} table configurations for {dataset} to {path}")
        return path

    def list_datasets(self) -> List[str]:
        if not self.conf_dir.exists():
            return []
        return sorted(p.stem for p in self.conf_dir.glob("*.json"))

    def load_all(self) -> Dict[str, List[TableConf]]:
        return {dataset: self.load(dataset) for dataset in self.list_datasets()}
