"""
Content-quality gate for narrator output.

Pattern-based check that catches degenerate generations before they
enter the transcript: empty text, release-note boilerplate, code, and
runaway repetition.
"""

import re
from collections import Counter
from dataclasses import dataclass
from typing import Optional

from playtest_harness.core.exceptions import GarbageOutputDetected

CHANGELOG_PATTERNS = (
    re.compile(r"fixed a bug", re.IGNORECASE),
    re.compile(r"^#+\s*\d+\.\d+", re.MULTILINE),
    re.compile(r"\bchangelog\b", re.IGNORECASE),
    re.compile(r"release notes", re.IGNORECASE),
)
CODE_PATTERN = re.compile(r"`")

MIN_REPEATED_LINE_LENGTH = 20
MAX_LINE_REPEATS = 3


@dataclass(frozen=True)
class QualityVerdict:
    passed: bool
    reason: Optional[str] = None


PASS = QualityVerdict(passed=True)


class PatternQualityGate:
    """Narrator output validator.

    Reason tags: "empty", "changelog", "code", "repetition".
    """

    def check(self, text: str) -> QualityVerdict:
        if not text or not text.strip():
            return QualityVerdict(False, "empty")
        if any(p.search(text) for p in CHANGELOG_PATTERNS):
            return QualityVerdict(False, "changelog")
        if CODE_PATTERN.search(text):
            return QualityVerdict(False, "code")
        if self._has_repeated_lines(text):
            return QualityVerdict(False, "repetition")
        return PASS

    def enforce(self, text: str) -> str:
        """Return text unchanged or raise GarbageOutputDetected."""
        verdict = self.check(text)
        if not verdict.passed:
            raise GarbageOutputDetected(verdict.reason or "unknown", text)
        return text

    @staticmethod
    def _has_repeated_lines(text: str) -> bool:
        lines = [
            line.strip()
            for line in text.splitlines()
            if len(line.strip()) > MIN_REPEATED_LINE_LENGTH
        ]
        return any(count > MAX_LINE_REPEATS for count in Counter(lines).values())
