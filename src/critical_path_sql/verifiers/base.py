"""
Base Verifier Classes
=====================

Abstract base class and verification chain implementation.
"""

from abc import ABC, abstractmethod
from typing import Optional

from critical_path_sql.models import VerificationResult, VerificationStatus


class Verifier(ABC):
    """Base class for all verifiers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique name for this verifier."""
        pass

    @abstractmethod
    def verify(self, sql: str, context: dict) -> VerificationResult:
        """
        Verify the SQL against this verifier's rules.

        Args:
            sql: The SQL query to verify
            context: Additional context for the verifier

        Returns:
            VerificationResult indicating pass/fail with details
        """
        pass

    def _passed(self, message: str) -> VerificationResult:
        return VerificationResult(
            verifier_name=self.name,
            status=VerificationStatus.PASSED,
            message=message,
        )

    def _failed(self, message: str, **details) -> VerificationResult:
        return VerificationResult(
            verifier_name=self.name,
            status=VerificationStatus.FAILED,
            message=message,
            details=details,
        )


class VerificationChain:
    """Runs verifiers in sequence, collecting results."""

    def __init__(
        self,
        verifiers: Optional[list[Verifier]] = None,
        fail_fast: bool = False,
    ) -> None:
        """
        Initialize the verification chain.

        Args:
            verifiers: List of verifiers to run. Defaults to structure + safety.
            fail_fast: Stop at the first failure instead of collecting every reason
        """
        if verifiers is not None:
            self.verifiers = verifiers
        else:
            # Lazy import to avoid circular imports
            from critical_path_sql.verifiers.safety import SafetyVerifier
            from critical_path_sql.verifiers.structure import StructureVerifier

            self.verifiers = [StructureVerifier(), SafetyVerifier()]
        self.fail_fast = fail_fast

    def run(self, sql: str, context: Optional[dict] = None) -> tuple[bool, list[VerificationResult]]:
        """
        Run the verifiers. Returns (all_passed, results).

        Args:
            sql: The SQL query to verify
            context: Additional context for verification

        Returns:
            Tuple of (success, list of verification results)
        """
        context = context or {}
        results = []
        passed = True

        for verifier in self.verifiers:
            result = verifier.verify(sql, context)
            results.append(result)

            if result.status == VerificationStatus.FAILED:
                passed = False
                if self.fail_fast:
                    break

        return passed, results
