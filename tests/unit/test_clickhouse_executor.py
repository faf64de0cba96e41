"""
Unit Tests for the ClickHouse Executor
======================================

Requests are served by ``httpx.MockTransport``.
"""

import httpx
import pytest

from critical_path_sql.config import ExecutionLimits, GeneratorConfig
from critical_path_sql.evaluator import EvaluatorOptimizer
from critical_path_sql.llm.mock import MockGateway
from critical_path_sql.models import ExecutionErrorCode, ResultColumn
from critical_path_sql.storage.clickhouse import ClickHouseExecutor
from critical_path_sql.storage.errors import QueryExecutionError, StorageConnectionError

URL = "http://clickhouse.test:8123"

MID_STREAM_FAILURE = (
    '{"meta": [{"name": "a", "type": "String"}], "data": [\n'
    "Code: 241. DB::Exception: Memory limit (for query) exceeded: would use 9.31 GiB. (MEMORY_LIMIT_EXCEEDED)"
)


def executor_for(handler) -> ClickHouseExecutor:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ClickHouseExecutor(URL, database="otel", user="reader", password="pw", client=client)


class TestClickHouseExecutor:
    @pytest.mark.asyncio
    async def test_rows_and_columns(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            seen["body"] = request.content.decode()
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(
                200,
                json={
                    "meta": [{"name": "service_name", "type": "String"}, {"name": "n", "type": "UInt64"}],
                    "data": [{"service_name": "cart", "n": "4"}],
                    "rows": 1,
                },
            )

        settings = ExecutionLimits(max_result_rows=10).as_settings()
        result = await executor_for(handler).execute_query("SELECT service_name, count() AS n FROM traces", settings)

        assert seen["body"] == "SELECT service_name, count() AS n FROM traces"
        assert seen["params"]["database"] == "otel"
        assert seen["params"]["default_format"] == "JSON"
        assert seen["params"]["max_result_rows"] == "10"
        assert seen["params"]["readonly"] == "1"
        assert seen["params"]["result_overflow_mode"] == "break"
        assert seen["params"]["wait_end_of_query"] == "1"
        assert seen["auth"].startswith("Basic ")
        assert result.rows == [{"service_name": "cart", "n": "4"}]
        assert result.row_count == 1
        assert result.columns == [ResultColumn("service_name", "String"), ResultColumn("n", "UInt64")]

    @pytest.mark.asyncio
    async def test_engine_error_code_from_body(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, text="Code: 62. DB::Exception: Syntax error: failed at position 10")

        with pytest.raises(QueryExecutionError) as exc_info:
            await executor_for(handler).execute_query("SELEC 1")
        assert exc_info.value.code == 62
        assert "Syntax error" in exc_info.value.message
        assert exc_info.value.execution_time_ms >= 0

    @pytest.mark.asyncio
    async def test_engine_error_code_from_header(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                500,
                text="DB::Exception: Memory limit (for query) exceeded",
                headers={"X-ClickHouse-Exception-Code": "241"},
            )

        with pytest.raises(QueryExecutionError) as exc_info:
            await executor_for(handler).execute_query("SELECT 1")
        assert exc_info.value.code == 241

    @pytest.mark.asyncio
    async def test_error_after_success_status(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=MID_STREAM_FAILURE)

        with pytest.raises(QueryExecutionError) as exc_info:
            await executor_for(handler).execute_query("SELECT a FROM traces")
        assert exc_info.value.code == 241
        assert "Memory limit" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_error_after_success_status_is_recorded_as_attempt(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=MID_STREAM_FAILURE)

        evaluator = EvaluatorOptimizer(MockGateway(default=""), executor_for(handler))
        result = await evaluator.optimize("SELECT a FROM traces", max_attempts=1)

        assert len(result.attempts) == 1
        assert not result.attempts[0].is_valid
        assert result.attempts[0].error.code is ExecutionErrorCode.MEMORY_LIMIT_EXCEEDED
        assert not result.succeeded

    @pytest.mark.asyncio
    async def test_client_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(QueryExecutionError) as exc_info:
            await executor_for(handler).execute_query("SELECT 1")
        assert exc_info.value.code == "TIMEOUT"

    @pytest.mark.asyncio
    async def test_unreachable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(StorageConnectionError):
            await executor_for(handler).execute_query("SELECT 1")

    @pytest.mark.asyncio
    async def test_empty_body(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"")

        result = await executor_for(handler).execute_query("SELECT 1")
        assert result.rows == []

    @pytest.mark.asyncio
    async def test_from_config(self) -> None:
        config = GeneratorConfig(clickhouse_url="http://ch:8123/", clickhouse_database="traces_db")
        async with ClickHouseExecutor.from_config(config) as executor:
            assert executor.url == "http://ch:8123"
            assert executor.database == "traces_db"
            assert executor.client.timeout.read == 40.0
