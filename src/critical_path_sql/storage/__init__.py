"""
Storage Module
==============

Execution backends for generated SQL.
"""

from critical_path_sql.storage.base import QueryExecutor, QueryResult
from critical_path_sql.storage.clickhouse import ClickHouseExecutor
from critical_path_sql.storage.errors import (
    QueryExecutionError,
    StorageConnectionError,
    StorageError,
)

__all__ = [
    "QueryExecutor",
    "QueryResult",
    "ClickHouseExecutor",
    "StorageError",
    "QueryExecutionError",
    "StorageConnectionError",
]
