"""
Shared fixtures and fakes for the test suite.

Nothing here talks to the network: FakeLLMClient stands in for GeminiClient
and fixtures build PDF / Word / PNG inputs in memory.
"""

import io
import json
import threading
import time
from typing import Callable, List, Optional

import fitz  # PyMuPDF
import pytest
from docx import Document
from PIL import Image

from answer_pipeline.models import ImagePart, NormalizedDocument, Question
from utils.gemini_client import (
    GroundedTextResponse,
    ImageResponse,
    PlainTextResponse,
    WebSource,
)
from utils.image_utils import encode_base64

LONG_TEXT = (
    "Photosynthesis converts light energy into chemical energy. Chlorophyll in the "
    "chloroplasts absorbs mostly red and blue light, and the light reactions split "
    "water to release oxygen while producing ATP and NADPH for the Calvin cycle."
)


class FakeLLMClient:
    """
    Thread-safe stand-in for GeminiClient.

    answer_fn(prompt, web_search) returns the synthesis text or raises.
    """

    lite_model = "fake-lite"
    answer_model = "fake-pro"

    def __init__(
        self,
        probe_reply: str = "YES",
        answer_fn: Optional[Callable[[str, bool], str]] = None,
        sources: Optional[List[WebSource]] = None,
        image_bytes: bytes = b"\xff\xd8fake-jpeg",
        image_error: Optional[Exception] = None,
        extraction_json: str = '{"questions": []}',
        delay: float = 0.0,
    ):
        self.probe_reply = probe_reply
        self.answer_fn = answer_fn or (lambda prompt, web_search: "An answer.")
        self.sources = sources or []
        self.image_bytes = image_bytes
        self.image_error = image_error
        self.extraction_json = extraction_json
        self.delay = delay

        self.lock = threading.Lock()
        self.probe_prompts: List[str] = []
        self.grounded_calls: List[dict] = []
        self.image_prompts: List[str] = []
        self.extraction_calls: List[dict] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def _enter(self):
        with self.lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)

    def _exit(self):
        with self.lock:
            self.in_flight -= 1

    def generate_text(self, contents, model=None, system_instruction=None, response_schema=None):
        if response_schema is not None:
            with self.lock:
                self.extraction_calls.append(
                    {"contents": contents, "model": model, "system_instruction": system_instruction}
                )
            return PlainTextResponse(text=self.extraction_json)

        self._enter()
        try:
            with self.lock:
                self.probe_prompts.append(contents)
            time.sleep(self.delay)
            return PlainTextResponse(text=self.probe_reply)
        finally:
            self._exit()

    def generate_grounded(self, prompt, images=(), web_search=False, model=None):
        self._enter()
        try:
            with self.lock:
                self.grounded_calls.append(
                    {"prompt": prompt, "images": list(images), "web_search": web_search}
                )
            time.sleep(self.delay)
            text = self.answer_fn(prompt, web_search)
            sources = list(self.sources) if web_search else []
            return GroundedTextResponse(text=text, sources=sources)
        finally:
            self._exit()

    def generate_image(self, prompt, model=None):
        self._enter()
        try:
            with self.lock:
                self.image_prompts.append(prompt)
            if self.image_error is not None:
                raise self.image_error
            return ImageResponse(image_bytes=self.image_bytes)
        finally:
            self._exit()


def make_png(color=(200, 30, 30), size=(40, 30)) -> bytes:
    """Small solid-color PNG."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_pdf(pages) -> bytes:
    """
    Build a PDF. Each page is a dict with optional "text" and
    "image" (PNG bytes) keys.
    """
    doc = fitz.open()
    for content in pages:
        page = doc.new_page()
        if content.get("text"):
            page.insert_textbox(fitz.Rect(50, 50, 550, 400), content["text"], fontsize=11)
        if content.get("image"):
            page.insert_image(fitz.Rect(100, 450, 300, 600), stream=content["image"])
    data = doc.tobytes()
    doc.close()
    return data


def make_docx(paragraphs, image: Optional[bytes] = None, table=None) -> bytes:
    document = Document()
    for text in paragraphs:
        document.add_paragraph(text)
    if image is not None:
        document.add_picture(io.BytesIO(image))
    if table:
        grid = document.add_table(rows=len(table), cols=len(table[0]))
        for r, row in enumerate(table):
            for c, value in enumerate(row):
                grid.cell(r, c).text = value
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def questions_json(questions) -> str:
    return json.dumps(
        {"questions": [{"questionText": text, "marks": marks} for text, marks in questions]}
    )


@pytest.fixture
def notes():
    images = [
        ImagePart(data=encode_base64(make_png((255, 0, 0))), mime_type="image/png"),
        ImagePart(data=encode_base64(make_png((0, 255, 0))), mime_type="image/png"),
        ImagePart(data=encode_base64(b"\xff\xd8jpeg-bytes"), mime_type="image/jpeg"),
    ]
    return NormalizedDocument(text=LONG_TEXT, images=images)


@pytest.fixture
def questions():
    return [
        Question(text=f"Explain topic-{i}.", marks=f"{i} marks" if i % 2 else None)
        for i in range(1, 8)
    ]
