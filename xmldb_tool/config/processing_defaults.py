"""
Centralized configuration defaults for import, export and analysis operations.

These are processing infrastructure settings shared across all datasets. CLI
arguments and XMLDB_* environment variables can override them at runtime.
"""


class ProcessingDefaults:
    """
    Centralized operational configuration.

    All values are defaults that can be overridden via CLI arguments:
    - xmldb_tool import quest.xml --batch-size 500 --workers 4
    - xmldb_tool export quest --page-size 2000
    """

    # Batch processing
    BATCH_SIZE = 1000  # Rows per import transaction
    PAGE_SIZE = 1000  # Root rows per export page

    # Parallelization
    WORKERS = 10  # Worker threads for import batches and export pages

    # Retry policy for failed batches (linear backoff)
    MAX_RETRY_ATTEMPTS = 3
    RETRY_DELAY_SECONDS = 1.0

    # Schema inference
    VARCHAR_THRESHOLD = 255  # Longer values become TEXT
    VARCHAR_ROUNDING = 16  # VARCHAR lengths are rounded up to this multiple
    DEFAULT_VARCHAR_LENGTH = 64  # Columns that never held a value
    KEY_VARCHAR_LENGTH = 255
    WIDE_TABLE_COLUMNS = 50  # Beyond this, data columns become TEXT
    MAX_TABLE_NAME_LENGTH = 60

    # Export
    SHARD_PREFIX = "part_"
    IN_CLAUSE_LIMIT = 500  # Parent ids per child query

    # Logging
    LOG_LEVEL = "INFO"

    @classmethod
    def to_dict(cls) -> dict:
        """
        Export all defaults as a dictionary.

        Returns:
            Dictionary of all ProcessingDefaults class attributes.
        """
        return {
            key: getattr(cls, key)
            for key in dir(cls)
            if not key.startswith('_') and key.isupper()
        }

    @classmethod
    def log_summary(cls, logger=None):
        """
        Log a summary of all operational defaults.

        Args:
            logger: Optional logger instance. If None, prints to stdout.
        """
        config_dict = cls.to_dict()
        summary = "\n".join([f"  {key}: {value}" for key, value in sorted(config_dict.items())])
        message = f"Processing Configuration Defaults:\n{summary}"

        if logger:
            logger.info(message)
        else:
            print(message)
