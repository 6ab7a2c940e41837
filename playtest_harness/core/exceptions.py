"""
Custom exception hierarchy for the playtest harness.

All harness exceptions inherit from HarnessError.
"""

from typing import List, Optional


class HarnessError(Exception):
    """Base exception for all harness errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(HarnessError):
    """Invalid or missing configuration."""

    pass


# =============================================================================
# LLM Errors
# =============================================================================


class LLMError(HarnessError):
    """Base for LLM-related errors."""

    pass


class TransientProviderError(LLMError):
    """Retryable provider failure (timeout, rate limit, 5xx)."""

    pass


class SchemaViolationError(LLMError):
    """Structured output did not validate against the requested schema."""

    pass


class ModelsExhaustedError(LLMError):
    """Every candidate model failed its full retry budget."""

    def __init__(
        self,
        label: str,
        tried_models: List[str],
        last_error: Optional[BaseException] = None,
    ):
        self.label = label
        self.tried_models = list(tried_models)
        self.last_error = last_error
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(
            f"All models failed for {label} "
            f"(tried {', '.join(self.tried_models)}){detail}"
        )


# =============================================================================
# Turn Errors (recovered inside the turn)
# =============================================================================


class ClassificationDegraded(HarnessError):
    """Classifier fell back to the permissive default."""

    pass


class GarbageOutputDetected(HarnessError):
    """Narrator output failed the content-quality gate."""

    def __init__(self, reason: str, text: str = ""):
        self.reason = reason
        self.text = text
        super().__init__(f"Narrator output rejected: {reason}")


class WorldStateExtractionFailure(HarnessError):
    """World-state extraction could not produce an update."""

    pass


# =============================================================================
# Checkpoint Errors
# =============================================================================


class CheckpointError(HarnessError):
    """Base for checkpoint storage errors."""

    pass


class CheckpointWriteError(CheckpointError):
    """Checkpoint could not be persisted."""

    pass


class CheckpointReadError(CheckpointError):
    """Checkpoint storage could not be read (corrupt or unreadable backend)."""

    pass


class CheckpointNotFoundError(CheckpointError):
    """No checkpoint exists for the requested session/turn."""

    pass


class InvalidCheckpointFormatError(CheckpointError):
    """Checkpoint payload is structurally invalid or of an unknown version."""

    pass


# =============================================================================
# Session Errors
# =============================================================================


class SessionError(HarnessError):
    """Session-level error (invalid group, bad resume request)."""

    pass
