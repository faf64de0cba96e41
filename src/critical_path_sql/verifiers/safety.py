"""
Safety Verifier
===============

Ensures no mutating or destructive statement verbs are present.
"""

import re

from critical_path_sql.models import VerificationResult
from critical_path_sql.verifiers.base import Verifier

DENYLIST = ("DROP", "DELETE", "TRUNCATE", "ALTER", "CREATE", "INSERT", "UPDATE")

_DENYLIST_RE = re.compile(r"\b(" + "|".join(DENYLIST) + r")\b", re.IGNORECASE)


class SafetyVerifier(Verifier):
    """Rejects any denylisted verb appearing as a whole token."""

    @property
    def name(self) -> str:
        return "SafetyVerifier"

    def verify(self, sql: str, context: dict) -> VerificationResult:
        """
        Verify SQL does not contain denylisted operations.

        Args:
            sql: SQL query to validate
            context: Additional context (unused for this verifier)

        Returns:
            VerificationResult with PASSED or FAILED status
        """
        found = []
        for match in _DENYLIST_RE.finditer(sql or ""):
            verb = match.group(1).upper()
            if verb not in found:
                found.append(verb)

        if found:
            violations = [f"Forbidden operation: {verb}" for verb in found]
            return self._failed(
                f"Safety check failed: {'; '.join(violations)}",
                violations=violations,
                operations=found,
            )

        return self._passed("No forbidden operations detected")
