"""Database access components."""

from .migration_engine import MigrationEngine
from .bulk_insert_strategy import BulkInsertStrategy

__all__ = ['MigrationEngine', 'BulkInsertStrategy']
