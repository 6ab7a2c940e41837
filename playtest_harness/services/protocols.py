"""
Service protocol definitions (interfaces).

Defines formal interfaces for pluggable collaborators using typing.Protocol.
"""

from typing import Protocol

from playtest_harness.services.quality_gate import QualityVerdict


class IQualityGate(Protocol):
    """
    Protocol for narrator content-quality gates.

    check() reports; enforce() raises GarbageOutputDetected on failure.
    """

    def check(self, text: str) -> QualityVerdict:
        """
        Validate narrator text.

        Returns:
            QualityVerdict with passed flag and optional reason tag
        """
        ...

    def enforce(self, text: str) -> str:
        """Return text unchanged or raise GarbageOutputDetected."""
        ...
