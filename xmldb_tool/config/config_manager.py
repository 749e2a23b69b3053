"""
Centralized configuration management for the XML/relational data bridge.

This module provides the ConfigManager class that serves as the single source of truth
for configuration: database connection, processing parameters, file locations and the
flat dotted-key settings file (application.yml) shared with the data tooling.
"""

import os
import logging
import re
from pathlib import Path
from typing import Dict, List, Any, Optional, Union
from dataclasses import dataclass, field

from ..interfaces import ConfigurationManagerInterface
from ..exceptions import ConfigurationError


@dataclass
class DatabaseConfig:
    """Database configuration with environment variable support."""
    connection_string: str
    driver: str = "MySQL ODBC 8.0 Unicode Driver"
    server: str = "localhost"
    port: int = 3306
    database: str = "xmldb"
    username: str = "root"
    password: str = ""
    connection_timeout: int = 30
    charset: str = "utf8mb4"
    schema_name: str = ""  # Optional schema prefix for generated DDL and queries

    @classmethod
    def from_environment(cls) -> 'DatabaseConfig':
        """Create database configuration from environment variables."""
        schema_name = os.environ.get('XMLDB_DB_SCHEMA', cls.schema_name)
        connection_string = os.environ.get('XMLDB_CONNECTION_STRING')

        if connection_string:
            return cls(connection_string=connection_string, schema_name=schema_name)

        driver = os.environ.get('XMLDB_DB_DRIVER', cls.driver)
        server = os.environ.get('XMLDB_DB_SERVER', cls.server)
        port = int(os.environ.get('XMLDB_DB_PORT', cls.port))
        database = os.environ.get('XMLDB_DB_DATABASE', cls.database)
        username = os.environ.get('XMLDB_DB_USERNAME', cls.username)
        password = os.environ.get('XMLDB_DB_PASSWORD', cls.password)
        connection_timeout = int(os.environ.get('XMLDB_DB_CONNECTION_TIMEOUT', cls.connection_timeout))
        charset = os.environ.get('XMLDB_DB_CHARSET', cls.charset)

        connection_string = (
            f"DRIVER={{{driver}}};"
            f"SERVER={server};"
            f"PORT={port};"
            f"DATABASE={database};"
            f"UID={username};"
            f"PWD={password};"
            f"CHARSET={charset};"
        )

        return cls(
            connection_string=connection_string,
            driver=driver,
            server=server,
            port=port,
            database=database,
            username=username,
            password=password,
            connection_timeout=connection_timeout,
            charset=charset,
            schema_name=schema_name
        )


@dataclass
class ProcessingParameters:
    """Processing parameters with environment variable support."""
    batch_size: int = 1000
    workers: int = 10
    page_size: int = 1000
    max_retry_attempts: int = 3
    retry_delay_seconds: float = 1.0
    varchar_threshold: int = 255
    max_table_name_length: int = 60

    @classmethod
    def from_environment(cls) -> 'ProcessingParameters':
        """Create processing parameters from environment variables."""
        return cls(
            batch_size=int(os.environ.get('XMLDB_BATCH_SIZE', cls.batch_size)),
            workers=int(os.environ.get('XMLDB_WORKERS', cls.workers)),
            page_size=int(os.environ.get('XMLDB_PAGE_SIZE', cls.page_size)),
            max_retry_attempts=int(os.environ.get('XMLDB_MAX_RETRY_ATTEMPTS', cls.max_retry_attempts)),
            retry_delay_seconds=float(os.environ.get('XMLDB_RETRY_DELAY_SECONDS', cls.retry_delay_seconds)),
            varchar_threshold=int(os.environ.get('XMLDB_VARCHAR_THRESHOLD', cls.varchar_threshold)),
            max_table_name_length=int(os.environ.get('XMLDB_MAX_TABLE_NAME_LENGTH', cls.max_table_name_length))
        )


@dataclass
class ConfigPaths:
    """Configuration file paths with environment variable support."""
    base_config_path: Path = field(default_factory=lambda: Path.cwd())
    settings_file: str = "application.yml"
    conf_dir: str = "conf"
    export_dir: str = "export"

    @classmethod
    def from_environment(cls, base_path: Optional[Union[str, Path]] = None) -> 'ConfigPaths':
        """Create configuration paths from environment variables."""
        if base_path:
            base_config_path = Path(base_path)
        else:
            base_config_path = Path(os.environ.get('XMLDB_CONFIG_PATH', Path.cwd()))

        return cls(
            base_config_path=base_config_path,
            settings_file=os.environ.get('XMLDB_SETTINGS_FILE', cls.settings_file),
            conf_dir=os.environ.get('XMLDB_CONF_DIR', cls.conf_dir),
            export_dir=os.environ.get('XMLDB_EXPORT_DIR', cls.export_dir)
        )

    def resolve(self, relative: str) -> Path:
        path = Path(relative)
        return path if path.is_absolute() else self.base_config_path / path


class ConfigManager(ConfigurationManagerInterface):
    """
    Centralized configuration manager serving as single source of truth.

    This class consolidates all configuration management including:
    - Database connection configuration
    - Processing parameters (batch size, workers, retries)
    - Table configuration and export locations
    - Flat dotted-key settings (xmlPath.<db>, encoding.<dataset>, ai.<model>.apikey)
    """

    ENV_PROPERTY_PREFIX = "XMLDB_PROP_"
    DEFAULT_UTF16_DATASETS = ["world"]

    def __init__(self, base_config_path: Optional[Union[str, Path]] = None):
        """
        Initialize the centralized configuration manager.

        Args:
            base_config_path: Base path for configuration files. If None, uses current directory.
        """
        self.logger = logging.getLogger(__name__)

        self.paths = ConfigPaths.from_environment(base_config_path)
        self.database_config = DatabaseConfig.from_environment()
        self.processing_params = ProcessingParameters.from_environment()

        self._settings: Optional[Dict[str, Any]] = None

        self.logger.info(f"ConfigManager initialized with base path: {self.paths.base_config_path}")
        self.logger.info(f"Database server: {self.database_config.server}")
        self.logger.info(f"Processing batch size: {self.processing_params.batch_size}")

    def get_database_connection_string(self) -> str:
        """Get database connection string configured from environment variables."""
        return self.database_config.connection_string

    @property
    def conf_dir(self) -> Path:
        return self.paths.resolve(self.paths.conf_dir)

    @property
    def export_dir(self) -> Path:
        return self.paths.resolve(self.paths.export_dir)

    def load_settings(self) -> Dict[str, Any]:
        """
        Load the settings file as a flat dotted-key dictionary.

        Nested YAML mappings are flattened (``ai: {qwen: {apikey: x}}`` becomes
        ``ai.qwen.apikey``). A missing settings file yields an empty dictionary.

        Raises:
            ConfigurationError: If the file exists but cannot be parsed
        """
        if self._settings is not None:
            return self._settings

        settings_path = self.paths.resolve(self.paths.settings_file)
        if not settings_path.exists():
            self.logger.debug(f"Settings file not found, using environment only: {settings_path}")
            self._settings = {}
            return self._settings

        try:
            with open(settings_path, 'r', encoding='utf-8') as file:
                import yaml
                raw = yaml.safe_load(file) or {}
        except Exception as e:
            raise ConfigurationError(f"Failed to read settings file {settings_path}: {e}")

        if not isinstance(raw, dict):
            raise ConfigurationError(f"Settings file {settings_path} must contain a mapping")

        self._settings = self._flatten(raw)
        self.logger.info(f"Loaded {len(self._settings)} settings from {settings_path}")
        return self._settings

    def _flatten(self, data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
        flat = {}
        for key, value in data.items():
            full_key = f"{prefix}.{key}" if prefix else str(key)
            if isinstance(value, dict):
                flat.update(self._flatten(value, full_key))
            else:
                flat[full_key] = value
        return flat

    def _env_name(self, key: str) -> str:
        return self.ENV_PROPERTY_PREFIX + re.sub(r'[^A-Za-z0-9]', '_', key).upper()

    def get_property(self, key: str, default: Any = None) -> Any:
        """
        Look up a dotted settings key.

        Environment variables (``XMLDB_PROP_`` + key upper-cased with separators
        replaced by underscores) take precedence over the settings file.
        """
        env_value = os.environ.get(self._env_name(key))
        if env_value is not None:
            return env_value
        value = self.load_settings().get(key)
        return default if value is None else value

    def require_property(self, key: str) -> Any:
        """Look up a settings key that must be present."""
        value = self.get_property(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ConfigurationError(f"Missing required configuration: {key}")
        return value

    def get_list(self, key: str, default: Optional[List[str]] = None) -> List[str]:
        """Look up a comma separated (or YAML list) settings value."""
        value = self.get_property(key)
        if value is None:
            return list(default or [])
        if isinstance(value, (list, tuple)):
            return [str(v).strip() for v in value if str(v).strip()]
        return [part.strip() for part in str(value).split(',') if part.strip()]

    def get_dataset_encoding(self, dataset: str) -> str:
        """
        Declared file encoding for a dataset.

        ``encoding.<dataset>`` wins; otherwise datasets listed under
        ``world.encodingDatasets`` (default: world) use UTF-16 and everything else UTF-8.
        """
        explicit = self.get_property(f"encoding.{dataset}")
        if explicit:
            return str(explicit).lower()
        if dataset in self.get_list("world.encodingDatasets", self.DEFAULT_UTF16_DATASETS):
            return "utf-16"
        return "utf-8"

    def get_single_record_datasets(self) -> List[str]:
        """Datasets whose document root is itself the single record."""
        return self.get_list("world.singleRecordDatasets", self.DEFAULT_UTF16_DATASETS)

    def get_configuration_summary(self) -> Dict[str, Any]:
        """Summarize the active configuration for logging."""
        return {
            'database': {
                'server': self.database_config.server,
                'database': self.database_config.database,
                'schema_name': self.database_config.schema_name,
            },
            'processing': {
                'batch_size': self.processing_params.batch_size,
                'workers': self.processing_params.workers,
                'page_size': self.processing_params.page_size,
                'max_retry_attempts': self.processing_params.max_retry_attempts,
            },
            'paths': {
                'base_config_path': str(self.paths.base_config_path),
                'conf_dir': str(self.conf_dir),
                'export_dir': str(self.export_dir),
            },
        }


# Global configuration manager instance
_global_config_manager: Optional[ConfigManager] = None


def get_config_manager(base_config_path: Optional[Union[str, Path]] = None) -> ConfigManager:
    """
    Get the global configuration manager instance.

    Args:
        base_config_path: Base path for configuration files. Only used on first call.

    Returns:
        Global ConfigManager instance
    """
    global _global_config_manager

    if _global_config_manager is None:
        _global_config_manager = ConfigManager(base_config_path)

    return _global_config_manager


def reset_config_manager() -> None:
    """Reset the global configuration manager instance."""
    global _global_config_manager
    _global_config_manager = None
