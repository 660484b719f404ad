"""
Question extraction from question-bank text using Gemini structured output.
"""

import json
from typing import Any, List, Optional

from answer_pipeline.errors import ExtractionError
from answer_pipeline.models import Question

EXTRACTION_SYSTEM_INSTRUCTION = """You are a highly accurate text processing tool. Your only job is to extract questions and their marks from the user-provided text.
Never invent, infer, merge or paraphrase questions. Copy each question exactly as written.
Extract ALL questions present and return them in the requested JSON format."""

EXTRACTION_PROMPT = """Analyze the following text and extract every question it contains, together with any mark allocation attached to it (e.g. "5 marks", "10m", "[4]").

If a question has no mark allocation, set marks to null.

---

{text}"""

QUESTIONS_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "questions": {
            "type": "ARRAY",
            "description": "Every question in the text, in order of appearance.",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "questionText": {
                        "type": "STRING",
                        "description": "A single question exactly as it appears in the source text.",
                    },
                    "marks": {
                        "type": "STRING",
                        "description": "Marks for the question (e.g. '5 marks', '10m'), or null.",
                        "nullable": True,
                    },
                },
                "required": ["questionText", "marks"],
            },
        }
    },
    "required": ["questions"],
}


def _clean_marks(value: Any) -> Optional[str]:
    if value is None:
        return None
    marks = str(value).strip()
    if not marks or marks.lower() in ("null", "none", "n/a"):
        return None
    return marks


def parse_questions_response(response_text: str) -> List[Question]:
    """
    Parse the JSON returned by the extraction call.

    Raises:
        ExtractionError: on invalid JSON, an unexpected shape, or zero questions
    """
    if not response_text or not response_text.strip():
        raise ExtractionError("Question extraction returned an empty response")

    try:
        parsed = json.loads(response_text.strip())
    except json.JSONDecodeError as e:
        raise ExtractionError(f"Question extraction returned invalid JSON: {e}") from e

    items = parsed.get("questions") if isinstance(parsed, dict) else None
    if not isinstance(items, list):
        raise ExtractionError("Parsed JSON does not match the expected schema")

    questions = []
    for item in items:
        if not isinstance(item, dict):
            raise ExtractionError(f"Unexpected question entry: {item!r}")
        text = item.get("questionText")
        if not isinstance(text, str) or not text.strip():
            continue
        questions.append(Question(text=text.strip(), marks=_clean_marks(item.get("marks"))))

    if not questions:
        raise ExtractionError("No questions were found in the question bank file")

    return questions


class QuestionExtractor:
    """Splits question-bank text into Question records."""

    def __init__(self, client, model: Optional[str] = None, verbose: bool = True):
        """
        Args:
            client: GeminiClient (or anything with a compatible generate_text)
            model: Override model, defaults to the client's answer model
            verbose: Print progress messages
        """
        self.client = client
        self.model = model
        self.verbose = verbose

    def _log(self, message: str):
        """Print message if verbose mode."""
        if self.verbose:
            print(message)

    def extract(self, text: str) -> List[Question]:
        """
        Extract questions from question-bank text.

        Raises:
            ExtractionError: if the text is empty or nothing usable comes back
        """
        if not text or not text.strip():
            raise ExtractionError("Question bank file contains no text")

        try:
            response = self.client.generate_text(
                EXTRACTION_PROMPT.format(text=text),
                model=self.model or self.client.answer_model,
                system_instruction=EXTRACTION_SYSTEM_INSTRUCTION,
                response_schema=QUESTIONS_SCHEMA,
            )
        except Exception as e:
            raise ExtractionError(f"AI failed to extract questions. Original error: {e}") from e

        questions = parse_questions_response(response.text)
        self._log(f"[INFO] Extracted {len(questions)} questions")
        return questions
