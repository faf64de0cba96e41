"""
ClickHouse Executor
===================

Runs statements through the ClickHouse HTTP interface. Per-query settings are
sent as URL parameters so memory, time and row ceilings apply to each
statement independently.
"""

import re
import time
from typing import Any, Mapping, Optional

import httpx

from critical_path_sql.config import GeneratorConfig
from critical_path_sql.models import ResultColumn
from critical_path_sql.storage.base import QueryExecutor, QueryResult
from critical_path_sql.storage.errors import QueryExecutionError, StorageConnectionError
from observability.logging_config import get_logger

logger = get_logger(__name__)

_CODE_RE = re.compile(r"Code:\s*(\d+)")


def _error_code(response: httpx.Response) -> Optional[int]:
    header = response.headers.get("X-ClickHouse-Exception-Code")
    if header and header.isdigit():
        return int(header)
    match = _CODE_RE.search(response.text)
    return int(match.group(1)) if match else None


class ClickHouseExecutor(QueryExecutor):
    """Executor backed by ClickHouse over HTTP."""

    def __init__(
        self,
        url: str = "http://localhost:8123",
        database: str = "otel",
        user: str = "default",
        password: str = "",
        timeout_seconds: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.database = database
        self.auth = (user, password)
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout_seconds)

    @classmethod
    def from_config(cls, config: GeneratorConfig, **kwargs) -> "ClickHouseExecutor":
        # Client-side timeout stays above the engine's own max_execution_time.
        timeout = float(config.limits.max_execution_time) + 10.0
        return cls(
            url=config.clickhouse_url,
            database=config.clickhouse_database,
            user=config.clickhouse_user,
            password=config.clickhouse_password,
            timeout_seconds=timeout,
            **kwargs,
        )

    async def __aenter__(self) -> "ClickHouseExecutor":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def execute_query(
        self,
        sql: str,
        settings: Optional[Mapping[str, str]] = None,
    ) -> QueryResult:
        # wait_end_of_query buffers the result so late failures still get an error status.
        params: dict[str, Any] = {
            "database": self.database,
            "default_format": "JSON",
            "wait_end_of_query": "1",
        }
        params.update(settings or {})

        started = time.perf_counter()
        try:
            response = await self.client.post(
                self.url,
                params=params,
                content=sql.encode("utf-8"),
                auth=self.auth,
            )
        except httpx.TimeoutException as e:
            elapsed_ms = (time.perf_counter() - started) * 1000
            raise QueryExecutionError(
                f"Query timed out after {elapsed_ms:.0f}ms (client-side)",
                code="TIMEOUT",
                execution_time_ms=elapsed_ms,
            ) from e
        except httpx.HTTPError as e:
            raise StorageConnectionError(f"Cannot reach ClickHouse at {self.url}: {e}") from e
        elapsed_ms = (time.perf_counter() - started) * 1000

        if response.status_code != 200:
            code = _error_code(response)
            logger.debug("clickhouse_error", status=response.status_code, code=code)
            raise QueryExecutionError(
                response.text.strip(),
                code=code,
                execution_time_ms=elapsed_ms,
            )

        if not response.content.strip():
            return QueryResult()
        try:
            payload = response.json()
        except ValueError as e:
            # Exception text appended to a body that already started streaming.
            code = _error_code(response)
            logger.debug("clickhouse_malformed_body", code=code)
            raise QueryExecutionError(
                response.text.strip(),
                code=code,
                execution_time_ms=elapsed_ms,
            ) from e
        return QueryResult(
            rows=list(payload.get("data", [])),
            columns=[
                ResultColumn(name=column["name"], type=column["type"])
                for column in payload.get("meta", [])
            ],
        )
