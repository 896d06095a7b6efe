"""Error taxonomy shared by every pipeline stage.

Each error carries the HTTP-style status class it is reported with, and
optionally the raw model text that failed validation.
"""

from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base class for failures surfaced to callers of a stage."""

    status_code = 500

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.raw = raw

    def to_response(self, include_raw: bool = True) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if include_raw and self.raw is not None:
            body["raw"] = self.raw
        return body


class ConfigurationError(PipelineError):
    """A required credential or service setting is missing."""


class InputError(PipelineError):
    """A caller-supplied or dataset-derived precondition is unmet."""

    status_code = 400


class ExtractionError(PipelineError):
    """The model's issue extraction could not be parsed."""


class GenerationError(PipelineError):
    """The model's prompt variants could not be parsed."""


class JudgeParseError(PipelineError):
    """The judge's scores could not be parsed for a single candidate."""


class UnexpectedError(PipelineError):
    """Wraps any other exception at the HTTP and CLI edges."""
