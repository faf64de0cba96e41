"""
Response Normalizer
===================

Turns raw model output into a ``ParsedQueryResponse``. Models answer in many
shapes (raw SQL, JSON, JSON inside markdown, JSON with unescaped SQL, JSON
wrapped in a ``body`` envelope), so parsing is an ordered chain of
strategies. Each strategy returns a result or ``None``; the first result with
non-empty SQL wins.
"""

import json
import re
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from critical_path_sql.capabilities import ModelCapabilityClass
from critical_path_sql.errors import ResponseParseError
from critical_path_sql.models import ExpectedColumn, Optimization, ParsedQueryResponse

Strategy = Callable[[str], Optional[ParsedQueryResponse]]

RAW_SQL_DESCRIPTION = "Direct SQL generation"
RAW_SQL_REASONING = "Raw SQL response from SQL-specialized model"
DEFAULT_DESCRIPTION = "Generated ClickHouse query"

_THINKING_RE = re.compile(r"<(think|thinking)>.*?</\1>", re.IGNORECASE | re.DOTALL)
_FENCE_RE = re.compile(r"```(?:(?:sql|json|clickhouse)\b)?[ \t]*\n?(.*?)```", re.IGNORECASE | re.DOTALL)
_QUOTED_SQL_RE = re.compile(r'"sql"\s*:\s*"((?:[^"\\]|\\.)*)"', re.DOTALL)
_UNQUOTED_SQL_RE = re.compile(
    r'"sql"\s*:\s*((?:SELECT|WITH)\b.*?)(?=,\s*"[^"]+"\s*:|\s*}\s*$)',
    re.IGNORECASE | re.DOTALL,
)
_RAW_SQL_START_RE = re.compile(r"^(WITH|SELECT)\b", re.IGNORECASE)
_PREAMBLE_PATTERNS = [
    re.compile(r"^Here'?s?\s+(?:is\s+)?(?:the\s+)?(?:corrected\s+)?(?:SQL\s+)?(?:query|solution):?\s*\n", re.IGNORECASE),
    re.compile(r"^The\s+(?:corrected\s+)?(?:SQL\s+)?(?:query|solution)\s+is:?\s*\n", re.IGNORECASE),
    re.compile(r"^Query:?\s*\n", re.IGNORECASE),
]


class ExpectedColumnPayload(BaseModel):
    name: str
    type: str = ""
    description: str = ""


class QueryResponsePayload(BaseModel):
    """Structured-output contract for general-purpose models."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sql: Optional[str] = None
    description: Optional[str] = None
    expected_columns: list[ExpectedColumnPayload] = Field(default_factory=list, alias="expectedColumns")
    reasoning: Optional[str] = None

    @field_validator("expected_columns", mode="before")
    @classmethod
    def _columns_from_mapping(cls, value: Any) -> Any:
        # Some models answer {"column": "Type"} instead of a list.
        if isinstance(value, dict):
            return [{"name": name, "type": str(type_)} for name, type_ in value.items()]
        if value is None:
            return []
        return value


def remove_thinking_tags(content: str) -> str:
    return _THINKING_RE.sub("", content).strip()


def strip_markdown_fences(content: str) -> str:
    """Return the body of the first fenced block, or the content unchanged."""
    match = _FENCE_RE.search(content)
    if match:
        return match.group(1).strip()
    return content.strip()


def _strip_leading_noise(text: str) -> str:
    for pattern in _PREAMBLE_PATTERNS:
        text = pattern.sub("", text)
    lines = text.split("\n")
    while lines and (not lines[0].strip() or lines[0].strip().startswith("--")):
        lines.pop(0)
    return "\n".join(lines).strip()


def _clean_sql(sql: Any) -> Optional[str]:
    """Post-process an extracted SQL field; ``None`` when nothing usable remains."""
    if not isinstance(sql, str):
        return None
    cleaned = sql.strip()
    lines = cleaned.split("\n")
    if lines and lines[0].strip().lower() == "sql":
        cleaned = "\n".join(lines[1:]).strip()
    if cleaned.startswith("{"):
        try:
            nested = json.loads(cleaned)
        except json.JSONDecodeError:
            nested = None
        if isinstance(nested, dict) and isinstance(nested.get("sql"), str):
            cleaned = nested["sql"].strip()
            lines = cleaned.split("\n")
            if lines and lines[0].strip().lower() == "sql":
                cleaned = "\n".join(lines[1:]).strip()
    return cleaned or None


def _from_payload(data: Any) -> Optional[ParsedQueryResponse]:
    if not isinstance(data, dict):
        return None
    body = data.get("body")
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except json.JSONDecodeError:
            body = None
    if isinstance(body, dict) and "sql" not in data:
        data = body
    try:
        payload = QueryResponsePayload.model_validate(data)
    except ValidationError:
        return None
    sql = _clean_sql(payload.sql)
    if sql is None:
        return None
    return ParsedQueryResponse(
        sql=sql,
        description=payload.description if payload.description is not None else DEFAULT_DESCRIPTION,
        expected_columns=tuple(
            ExpectedColumn(name=col.name, type=col.type, description=col.description)
            for col in payload.expected_columns
        ),
        reasoning=payload.reasoning or "",
    )


def _unescape_json_string(value: str) -> str:
    try:
        return json.loads(f'"{value}"', strict=False)
    except json.JSONDecodeError:
        return value.replace('\\"', '"').replace("\\n", "\n")


def _extract_string_field(text: str, name: str) -> str:
    match = re.search(rf'"{name}"\s*:\s*"((?:[^"\\]|\\.)*)"', text, re.DOTALL)
    return _unescape_json_string(match.group(1)) if match else ""


def parse_raw_sql(text: str) -> Optional[ParsedQueryResponse]:
    """Treat the text as a bare SQL answer."""
    if text.lstrip().startswith("{"):
        return None
    sql = _clean_sql(_strip_leading_noise(text))
    if sql is None:
        return None
    return ParsedQueryResponse(sql=sql, description=RAW_SQL_DESCRIPTION, reasoning=RAW_SQL_REASONING)


def parse_strict_json(text: str) -> Optional[ParsedQueryResponse]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    return _from_payload(data)


def parse_quoted_sql_field(text: str) -> Optional[ParsedQueryResponse]:
    """Pull ``"sql": "..."`` out of otherwise malformed JSON."""
    match = _QUOTED_SQL_RE.search(text)
    if not match:
        return None
    sql = _clean_sql(_unescape_json_string(match.group(1)))
    if sql is None:
        return None
    return ParsedQueryResponse(
        sql=sql,
        description=_extract_string_field(text, "description") or DEFAULT_DESCRIPTION,
        reasoning=_extract_string_field(text, "reasoning"),
    )


def parse_unquoted_sql_field(text: str) -> Optional[ParsedQueryResponse]:
    """Handle ``"sql": SELECT ...`` where the model forgot the quotes."""
    match = _UNQUOTED_SQL_RE.search(text)
    if not match:
        return None
    sql = _clean_sql(match.group(1))
    if sql is None:
        return None
    return ParsedQueryResponse(
        sql=sql,
        description=_extract_string_field(text, "description") or DEFAULT_DESCRIPTION,
        reasoning=_extract_string_field(text, "reasoning"),
    )


def detect_raw_sql(text: str) -> Optional[ParsedQueryResponse]:
    """Last resort for general models that answered with plain SQL."""
    candidate = _strip_leading_noise(text)
    if not _RAW_SQL_START_RE.match(candidate):
        return None
    sql = _clean_sql(candidate)
    if sql is None:
        return None
    return ParsedQueryResponse(sql=sql, description=RAW_SQL_DESCRIPTION, reasoning="Raw SQL response")


GENERAL_STRATEGIES: list[Strategy] = [
    parse_strict_json,
    parse_quoted_sql_field,
    parse_unquoted_sql_field,
    detect_raw_sql,
]

SQL_MODEL_STRATEGIES: list[Strategy] = [parse_raw_sql] + GENERAL_STRATEGIES


def _first_success(text: str, strategies: list[Strategy]) -> Optional[ParsedQueryResponse]:
    for strategy in strategies:
        result = strategy(text)
        if result is not None and result.sql:
            return result
    return None


def normalize(raw_text: Optional[str], capability: ModelCapabilityClass) -> ParsedQueryResponse:
    """
    Normalize raw model output.

    Args:
        raw_text: Model output as returned by the gateway
        capability: Capability class of the model that produced it

    Returns:
        ParsedQueryResponse with non-empty SQL

    Raises:
        ResponseParseError: No strategy produced SQL
    """
    if not raw_text or not raw_text.strip():
        raise ResponseParseError("Model returned an empty response", raw_content=raw_text or "")

    text = strip_markdown_fences(remove_thinking_tags(raw_text))
    strategies = (
        SQL_MODEL_STRATEGIES
        if capability is ModelCapabilityClass.SQL_SPECIALIZED
        else GENERAL_STRATEGIES
    )
    result = _first_success(text, strategies)
    if result is None:
        raise ResponseParseError(
            f"Could not extract SQL from model response: {text[:200]}",
            raw_content=raw_text,
        )
    return result


def serialize(parsed: ParsedQueryResponse) -> str:
    """Render a parsed response in the structured-output contract."""
    return json.dumps(
        {
            "sql": parsed.sql,
            "description": parsed.description,
            "expectedColumns": [
                {"name": col.name, "type": col.type, "description": col.description}
                for col in parsed.expected_columns
            ],
            "reasoning": parsed.reasoning,
        },
        indent=2,
    )


def parse_optimization_response(content: Optional[str]) -> Optional[Optimization]:
    """
    Parse a repair reply.

    Accepts ``{optimizedSql, explanation, changes}`` JSON, then falls back to
    the general normalization chain. Returns ``None`` when no SQL is found.
    """
    if not content or not content.strip():
        return None
    text = strip_markdown_fences(remove_thinking_tags(content))

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = None
    if isinstance(data, dict):
        sql = _clean_sql(data.get("optimizedSql") or data.get("sql"))
        if sql:
            changes = data.get("changes") or []
            if isinstance(changes, str):
                changes = [changes]
            return Optimization(
                optimized_sql=sql,
                explanation=data.get("explanation") or data.get("reason") or "Query optimized for ClickHouse",
                changes=tuple(str(change) for change in changes),
            )

    quoted = re.search(r'"optimizedSql"\s*:\s*"((?:[^"\\]|\\.)*)"', text, re.DOTALL)
    if quoted:
        sql = _clean_sql(_unescape_json_string(quoted.group(1)))
        if sql:
            return Optimization(
                optimized_sql=sql,
                explanation=_extract_string_field(text, "explanation") or "Query extracted from response",
            )

    parsed = _first_success(text, GENERAL_STRATEGIES)
    if parsed is None:
        return None
    return Optimization(
        optimized_sql=parsed.sql,
        explanation="Direct SQL response from LLM",
        changes=("Query returned without JSON wrapper",),
    )
