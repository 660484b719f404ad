"""
Gemini API client for answer generation.

Wraps the google-genai SDK behind three call kinds (plain text, grounded text
with optional Google Search, image generation). Every request goes through
call_with_retry so rate limit errors back off and retry.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from google import genai
from google.genai import types

from config import (
    ANSWER_MODEL,
    GEMINI_API_KEY_ENV,
    GENERATED_IMAGE_MIME,
    IMAGE_MODEL,
    INITIAL_RETRY_DELAY,
    LITE_MODEL,
    MAX_RETRIES,
    RETRY_JITTER,
)
from utils.image_utils import decode_base64
from utils.retry import call_with_retry


class MalformedResponse(Exception):
    """The API returned a response missing a required field."""


@dataclass
class WebSource:
    """One web citation from grounding metadata."""
    uri: str
    title: str = ""


@dataclass
class PlainTextResponse:
    """Text-only response."""
    text: str


@dataclass
class GroundedTextResponse:
    """Text response with web citations (empty when search was off)."""
    text: str
    sources: List[WebSource] = field(default_factory=list)


@dataclass
class ImageResponse:
    """Raw bytes of one generated image."""
    image_bytes: bytes
    mime_type: str = GENERATED_IMAGE_MIME


def extract_sources(response: Any) -> List[WebSource]:
    """
    Map grounding chunks of the first candidate to WebSource entries.

    Chunks without a web URI are dropped.
    """
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []

    metadata = getattr(candidates[0], "grounding_metadata", None)
    chunks = getattr(metadata, "grounding_chunks", None) or []

    sources = []
    for chunk in chunks:
        web = getattr(chunk, "web", None)
        uri = getattr(web, "uri", None) or ""
        if not uri:
            continue
        sources.append(WebSource(uri=uri, title=getattr(web, "title", None) or ""))
    return sources


def _require_text(response: Any) -> str:
    text = getattr(response, "text", None)
    if text is None:
        raise MalformedResponse("Gemini response contained no text")
    return text


class GeminiClient:
    """Retry-wrapped client for Gemini text and Imagen image calls."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        lite_model: str = LITE_MODEL,
        answer_model: str = ANSWER_MODEL,
        image_model: str = IMAGE_MODEL,
        max_retries: int = MAX_RETRIES,
        initial_delay: float = INITIAL_RETRY_DELAY,
        jitter: float = RETRY_JITTER,
        client: Optional[Any] = None,
        verbose: bool = True,
    ):
        """
        Initialize Gemini client.

        Args:
            api_key: Gemini API key. If not provided, reads from GEMINI_API_KEY env var.
            lite_model: Cheap model used for yes/no classification
            answer_model: Model used for answers and question extraction
            image_model: Image generation model
            max_retries: Rate limit retries per call
            initial_delay: Base backoff delay in seconds
            jitter: Max random seconds added to each backoff
            client: Pre-built genai.Client (tests pass a fake here)
            verbose: Print retry notices
        """
        if client is None:
            api_key = api_key or os.environ.get(GEMINI_API_KEY_ENV)
            if not api_key:
                raise ValueError(
                    f"Gemini API key required. Set {GEMINI_API_KEY_ENV} environment variable "
                    "or pass api_key parameter. Get a key at: "
                    "https://aistudio.google.com/app/apikey"
                )
            client = genai.Client(api_key=api_key)

        self.client = client
        self.lite_model = lite_model
        self.answer_model = answer_model
        self.image_model = image_model
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.jitter = jitter
        self.verbose = verbose

    def _call(self, api_call):
        return call_with_retry(
            api_call,
            max_retries=self.max_retries,
            initial_delay=self.initial_delay,
            jitter=self.jitter,
            verbose=self.verbose,
        )

    def generate_text(
        self,
        contents: Any,
        model: Optional[str] = None,
        system_instruction: Optional[str] = None,
        response_schema: Optional[Dict[str, Any]] = None,
    ) -> PlainTextResponse:
        """
        Plain generation call.

        Passing response_schema switches the response to JSON mode.
        """
        config = None
        if system_instruction or response_schema:
            config = types.GenerateContentConfig(
                system_instruction=system_instruction,
                response_mime_type="application/json" if response_schema else None,
                response_schema=response_schema,
            )

        response = self._call(
            lambda: self.client.models.generate_content(
                model=model or self.lite_model,
                contents=contents,
                config=config,
            )
        )
        return PlainTextResponse(text=_require_text(response))

    def generate_grounded(
        self,
        prompt: str,
        images: Sequence[Any] = (),
        web_search: bool = False,
        model: Optional[str] = None,
    ) -> GroundedTextResponse:
        """
        Multimodal generation, optionally with the Google Search tool.

        Args:
            prompt: Text prompt
            images: Objects with base64 `data` and `mime_type` attributes,
                sent as inline parts after the prompt
            web_search: Enable the Google Search tool
            model: Override the answer model
        """
        parts = [types.Part.from_text(text=prompt)]
        for image in images:
            parts.append(
                types.Part.from_bytes(
                    data=decode_base64(image.data), mime_type=image.mime_type
                )
            )
        contents = [types.Content(role="user", parts=parts)]

        tools = [types.Tool(google_search=types.GoogleSearch())] if web_search else None
        config = types.GenerateContentConfig(tools=tools)

        response = self._call(
            lambda: self.client.models.generate_content(
                model=model or self.answer_model,
                contents=contents,
                config=config,
            )
        )
        return GroundedTextResponse(
            text=_require_text(response),
            sources=extract_sources(response),
        )

    def generate_image(self, prompt: str, model: Optional[str] = None) -> ImageResponse:
        """Generate one image and return its raw bytes."""
        config = types.GenerateImagesConfig(
            number_of_images=1,
            output_mime_type=GENERATED_IMAGE_MIME,
        )
        response = self._call(
            lambda: self.client.models.generate_images(
                model=model or self.image_model,
                prompt=prompt,
                config=config,
            )
        )

        generated = getattr(response, "generated_images", None) or []
        if not generated:
            raise MalformedResponse("Image model returned no images")

        image = getattr(generated[0], "image", None)
        image_bytes = getattr(image, "image_bytes", None)
        if not image_bytes:
            raise MalformedResponse("Generated image has no bytes")

        return ImageResponse(image_bytes=image_bytes)


def create_client(api_key: Optional[str] = None, **kwargs) -> GeminiClient:
    """Factory function to create a GeminiClient."""
    return GeminiClient(api_key=api_key, **kwargs)

