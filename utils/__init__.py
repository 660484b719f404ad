"""
Utility modules for the notes-to-answers pipeline.
"""

from .retry import RateLimitExceeded, call_with_retry, is_rate_limit_error
from .gemini_client import (
    GeminiClient,
    GroundedTextResponse,
    ImageResponse,
    MalformedResponse,
    PlainTextResponse,
    WebSource,
    create_client,
)

__all__ = [
    "RateLimitExceeded",
    "call_with_retry",
    "is_rate_limit_error",
    "GeminiClient",
    "GroundedTextResponse",
    "ImageResponse",
    "MalformedResponse",
    "PlainTextResponse",
    "WebSource",
    "create_client",
]
