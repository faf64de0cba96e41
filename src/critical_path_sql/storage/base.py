"""
Query Executor Interface
========================

Abstract execution backend used by the evaluator-optimizer.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from critical_path_sql.models import ResultColumn


@dataclass
class QueryResult:
    """Rows and column metadata returned by an execution."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    columns: list[ResultColumn] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


class QueryExecutor(ABC):
    """Executes read-only SQL against an analytics engine."""

    @abstractmethod
    async def execute_query(
        self,
        sql: str,
        settings: Optional[Mapping[str, str]] = None,
    ) -> QueryResult:
        """
        Execute a statement.

        Args:
            sql: Statement to run
            settings: Engine settings applied to this statement only

        Returns:
            QueryResult

        Raises:
            QueryExecutionError: The engine rejected or aborted the statement
            StorageConnectionError: The engine could not be reached
        """
        pass
