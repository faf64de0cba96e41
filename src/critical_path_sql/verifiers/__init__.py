"""
Verifiers Module
================

Structural and safety checks for generated SQL.
"""

from critical_path_sql.verifiers.base import Verifier, VerificationChain
from critical_path_sql.verifiers.safety import DENYLIST, SafetyVerifier
from critical_path_sql.verifiers.structure import StructureVerifier

__all__ = [
    "Verifier",
    "VerificationChain",
    "DENYLIST",
    "SafetyVerifier",
    "StructureVerifier",
]
