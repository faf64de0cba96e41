"""
Storage Errors
==============

Failures raised by execution backends.
"""

from typing import Optional, Union


class StorageError(Exception):
    """Base class for execution backend failures."""


class QueryExecutionError(StorageError):
    """The engine rejected or aborted a statement."""

    def __init__(
        self,
        message: str,
        code: Optional[Union[int, str]] = None,
        execution_time_ms: float = 0.0,
    ) -> None:
        self.message = message
        self.code = code
        self.execution_time_ms = execution_time_ms
        super().__init__(message)


class StorageConnectionError(StorageError):
    """The backend could not be reached at all."""
