"""
Provenance Comments
===================

Renders the ``--`` comment blocks prefixed to generated SQL. Nothing is
truncated; multi-line values continue on further comment lines.
"""

from typing import Iterable, Sequence

from critical_path_sql.models import GenerationAttempt, Optimization, TokenUsage

RULE = "-- " + "=" * 41
OPTIMIZATIONS_RULE = "-- " + "=" * 45
VALID_MARK = "✅"
INVALID_MARK = "❌"


def _comment(prefix: str, text: str, indent: str = "") -> list[str]:
    lines = str(text).splitlines() or [""]
    rendered = [f"{prefix}{lines[0]}".rstrip()]
    rendered.extend(f"-- {indent}{line}".rstrip() for line in lines[1:])
    return rendered


def render_header(
    model: str,
    generated_at: str,
    analysis_goal: str,
    services: Iterable[str],
    usage: TokenUsage,
    generation_time_ms: float,
    reasoning: str = "",
) -> list[str]:
    lines = [
        f"-- Model: {model}",
        f"-- Generated: {generated_at}",
        *_comment("-- Analysis Goal: ", analysis_goal),
        f"-- Services: {', '.join(services)}",
        (
            f"-- Tokens: {usage.total_tokens} "
            f"(prompt: {usage.prompt_tokens}, completion: {usage.completion_tokens})"
        ),
        f"-- Generation Time: {round(generation_time_ms)}ms",
    ]
    if reasoning:
        lines.extend(_comment("-- Reasoning: ", reasoning))
    lines.append(RULE)
    return lines


def render_validation_block(attempts: Sequence[GenerationAttempt]) -> list[str]:
    """Per-attempt status, error code, full message and timing."""
    if not attempts:
        return []
    lines = [
        "-- ========== VALIDATION ATTEMPTS ==========",
        f"-- Total Attempts: {len(attempts)}",
    ]
    for attempt in attempts:
        if attempt.is_valid:
            lines.append(f"-- Attempt {attempt.number}: {VALID_MARK} VALID")
        else:
            lines.append(f"-- Attempt {attempt.number}: {INVALID_MARK} INVALID")
            if attempt.error is not None:
                lines.append(f"--   Error Code: {attempt.error.code.value}")
                lines.extend(_comment("--   Error: ", attempt.error.message, indent="  "))
        lines.append(f"--   Execution Time: {round(attempt.execution_time_ms)}ms")

    if attempts[-1].is_valid:
        lines.append(f"-- Final Status: {VALID_MARK} Query validated successfully")
    else:
        lines.append(
            f"-- Final Status: {INVALID_MARK} Query may have issues - "
            f"validation failed after {len(attempts)} attempts"
        )
    lines.append(RULE)
    return lines


def render_optimizations_block(optimizations: Sequence[Optimization]) -> list[str]:
    if not optimizations:
        return []
    lines = ["-- ========== OPTIMIZATIONS APPLIED =========="]
    for index, optimization in enumerate(optimizations, start=1):
        lines.append(f"-- Optimization {index}:")
        lines.extend(_comment("--   ", optimization.explanation, indent="  "))
        for change in optimization.changes:
            lines.extend(_comment("--   - ", change, indent="    "))
    lines.append(OPTIMIZATIONS_RULE)
    return lines


def with_provenance(sql: str, *blocks: list[str]) -> str:
    """Prefix ``sql`` with the given comment blocks."""
    header = [line for block in blocks for line in block]
    if not header:
        return sql
    return "\n".join(header) + "\n" + sql

