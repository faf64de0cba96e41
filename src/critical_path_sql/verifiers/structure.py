"""
Structure Verifier
==================

Minimal structural shape: non-empty, has SELECT and FROM.
"""

import re

from critical_path_sql.models import VerificationResult
from critical_path_sql.verifiers.base import Verifier

_SELECT_RE = re.compile(r"\bSELECT\b", re.IGNORECASE)
_FROM_RE = re.compile(r"\bFROM\b", re.IGNORECASE)


class StructureVerifier(Verifier):
    """Rejects empty statements and statements without SELECT ... FROM."""

    @property
    def name(self) -> str:
        return "StructureVerifier"

    def verify(self, sql: str, context: dict) -> VerificationResult:
        if sql is None or not sql.strip():
            return self._failed("Query is empty", errors=["Query is empty"])

        errors = []
        if not _SELECT_RE.search(sql):
            errors.append("Query must contain SELECT statement")
        if not _FROM_RE.search(sql):
            errors.append("Query must specify FROM table")

        if errors:
            return self._failed(
                f"Structure check failed: {'; '.join(errors)}",
                errors=errors,
            )
        return self._passed("Query has SELECT ... FROM shape")
