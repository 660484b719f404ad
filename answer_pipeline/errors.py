"""
Run-level and image errors raised by the answer pipeline.

Rate limit and malformed-response errors belong to the API client and live in
utils (RateLimitExceeded, MalformedResponse).
"""

from typing import Optional


class AnswerPipelineError(Exception):
    """Base class for pipeline errors."""


class ExtractionError(AnswerPipelineError):
    """The question bank produced no usable questions."""


class DocumentParseError(AnswerPipelineError):
    """An input file could not be normalized."""

    def __init__(self, filename: str, cause: Optional[BaseException] = None):
        self.filename = filename
        self.cause = cause
        message = f"Failed to process {filename}. It may be corrupted or unsupported."
        if cause is not None:
            message += f" ({cause})"
        super().__init__(message)


class ImageResolutionError(AnswerPipelineError):
    """An image directive could not be turned into an image."""
