"""
Notes-to-answers pipeline.

Modules:
- document_loader: text/markdown/PDF/Word -> text + images
- question_extractor: question bank text -> questions (Gemini JSON mode)
- answer_generator: per-question probe/answer/image stages, worker pool
- exporter: Markdown, text and Word output
- run: full pipeline and CLI
"""

from .models import ImagePart, InputFile, NormalizedDocument, Question, Result, Source
from .errors import (
    AnswerPipelineError,
    DocumentParseError,
    ExtractionError,
    ImageResolutionError,
)
from .document_loader import DocumentLoader
from .question_extractor import QuestionExtractor
from .answer_generator import AnswerGenerator

__all__ = [
    "ImagePart",
    "InputFile",
    "NormalizedDocument",
    "Question",
    "Result",
    "Source",
    "AnswerPipelineError",
    "DocumentParseError",
    "ExtractionError",
    "ImageResolutionError",
    "DocumentLoader",
    "QuestionExtractor",
    "AnswerGenerator",
]
