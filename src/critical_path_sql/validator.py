"""
SQL Validator
=============

Cheap safety gate run on every generated or repaired statement. It is not a
correctness check; execution is.
"""

from dataclasses import dataclass, field
from typing import Optional

from critical_path_sql.errors import SQLValidationError
from critical_path_sql.models import VerificationResult, VerificationStatus
from critical_path_sql.verifiers.base import VerificationChain


@dataclass
class ValidationReport:
    valid: bool
    reasons: list[str]
    results: list[VerificationResult] = field(default_factory=list)


def strip_leading_comments(sql: str) -> str:
    """Drop the leading block of full-line ``--`` comments and blank lines."""
    lines = sql.split("\n")
    index = 0
    while index < len(lines) and (not lines[index].strip() or lines[index].lstrip().startswith("--")):
        index += 1
    return "\n".join(lines[index:]).strip()


_DEFAULT_CHAIN = VerificationChain()


def check_sql(sql: Optional[str], chain: Optional[VerificationChain] = None) -> ValidationReport:
    """
    Validate SQL and collect every failure reason.

    Args:
        sql: Candidate statement, optionally prefixed by provenance comments
        chain: Verification chain (defaults to structure + safety)

    Returns:
        ValidationReport
    """
    if sql is None or not sql.strip():
        return ValidationReport(valid=False, reasons=["Query is empty"])

    body = strip_leading_comments(sql)
    passed, results = (chain or _DEFAULT_CHAIN).run(body)
    reasons: list[str] = []
    for result in results:
        if result.status == VerificationStatus.FAILED:
            reasons.extend(
                result.details.get("errors")
                or result.details.get("violations")
                or [result.message]
            )
    return ValidationReport(valid=passed, reasons=reasons, results=results)


def validate_sql(sql: Optional[str]) -> bool:
    """Return True when the statement passes the structural and safety checks."""
    return check_sql(sql).valid


def ensure_valid_sql(sql: Optional[str]) -> str:
    """Return ``sql`` unchanged or raise ``SQLValidationError``."""
    report = check_sql(sql)
    if not report.valid:
        raise SQLValidationError(sql or "", report.reasons)
    return sql
