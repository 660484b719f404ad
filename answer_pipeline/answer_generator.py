"""
Answer generation for extracted questions.

Each question goes through three sequential stages:
1. Relevance probe: can the notes alone answer it? (cheap model, YES/NO)
2. Answer synthesis: notes + images (+ Google Search when the probe says NO)
3. Image resolution: reuse a notes image or generate a new one

A small pool of worker threads pulls questions from a shared queue. Failures
are contained per question: the question gets a fallback answer and the
other workers carry on.
"""

import re
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from queue import Empty, Queue
from typing import Callable, List, Optional, Sequence, Tuple

from config import (
    CONCURRENCY_LIMIT,
    GENERATE_IMAGE_PREFIX,
    GENERIC_FALLBACK_ANSWER,
    RATE_LIMIT_FALLBACK_ANSWER,
    RELEVANCE_PROBE_CHARS,
    USE_IMAGE_PREFIX,
)
from answer_pipeline.errors import ImageResolutionError
from answer_pipeline.models import ImagePart, NormalizedDocument, Question, Result, Source
from utils.image_utils import encode_base64, to_data_uri
from utils.retry import is_rate_limit_error

ProgressCallback = Callable[[int, int], None]

IMAGE_REFERENCE_PATTERN = re.compile(r"\[\s*Image\s+(\d+)\s*\]", re.IGNORECASE)

MARKDOWN_WRAPPERS = "`*_> \t"
NO_ANSWER_PATTERN = re.compile(r"\bNO\b", re.IGNORECASE)

RELEVANCE_PROMPT = """Based ONLY on the provided notes, can the following question be answered comprehensively and factually? Your answer must be a single word: YES or NO.

---NOTES---
{notes}
---END NOTES---

---QUESTION---
{question}"""

ANSWER_PROMPT = """**Your Task:**
You are an expert tutor. Write a high-quality, easy-to-understand answer to the question below, following every rule.

**Question to Answer:**
{question}

**Source Material:**
---
**Notes Text:**
{notes}
---
**Available Images from Notes:**
{image_list}
---

**RULES:**

1. **Style & Formatting:**
   - Explain clearly, using simple language and analogies where they help.
   - Structure the answer with headings, paragraphs and lists where appropriate.
   - Output only the answer itself followed by the image decision. No introductions like "Here is the answer:".

2. **Depth & Length:**
   {depth_rule}

3. **Sources:**
   {source_rule}

4. **User Instructions:**
   {custom_rule}

**FINAL STEP - Image Decision (MANDATORY):**
After the answer, on a new separate line, make an image decision:
- If one of the Available Images is a good visual aid for the answer, output: `{use_prefix} [Image X]` where X is the image number.
- Only if none is suitable, output a one-sentence description of a new illustrative image starting with "{generate_prefix}". Example: "{generate_prefix} A flowchart of the steps of binary search."

**BEGIN YOUR RESPONSE NOW:**
"""

DEPTH_RULE_WITH_MARKS = (
    "**The question is worth {marks}.** The length and depth of the answer MUST match "
    "this allocation: more marks require proportionally longer, more detailed answers."
)
DEPTH_RULE_DEFAULT = "The answer should be concise yet comprehensive."
SOURCE_RULE_WEB = (
    "Use web search to expand and fact-check the answer. Combine what you find on the "
    "web with the provided notes into a single comprehensive answer."
)
SOURCE_RULE_NOTES = (
    "Answer using ONLY the provided notes and images. Do not use outside knowledge or web search."
)
CUSTOM_RULE = "Also strictly follow these instructions from the user: **{instructions}**"
CUSTOM_RULE_NONE = "No custom instructions provided."


@dataclass(frozen=True)
class ImageDirective:
    """Image decision from the end of a synthesized answer."""
    kind: str  # "use" or "generate"
    image_number: Optional[int] = None  # 1-based, for "use"
    prompt: Optional[str] = None  # for "generate"


def _directive_text(line: str) -> str:
    """Line with surrounding Markdown (code ticks, bold, quote marks) removed."""
    return line.strip().strip(MARKDOWN_WRAPPERS)


def _is_directive(line: str) -> bool:
    stripped = _directive_text(line)
    return stripped.startswith(USE_IMAGE_PREFIX) or stripped.startswith(GENERATE_IMAGE_PREFIX)


def parse_directive_line(line: str) -> Optional[ImageDirective]:
    """Parse a single directive line, None if it is not one."""
    stripped = _directive_text(line)
    if stripped.startswith(USE_IMAGE_PREFIX):
        match = IMAGE_REFERENCE_PATTERN.search(stripped[len(USE_IMAGE_PREFIX):])
        number = int(match.group(1)) if match else None
        return ImageDirective(kind="use", image_number=number)
    if stripped.startswith(GENERATE_IMAGE_PREFIX):
        prompt = stripped[len(GENERATE_IMAGE_PREFIX):].strip(MARKDOWN_WRAPPERS)
        return ImageDirective(kind="generate", prompt=prompt or None)
    return None


def split_answer(text: str) -> Tuple[str, Optional[ImageDirective]]:
    """
    Separate the answer body from the image directive.

    The directive may sit on any line; the first one wins and every
    directive line is removed from the body.
    """
    lines = text.split("\n")
    directive = None
    body = []
    for line in lines:
        if _is_directive(line):
            if directive is None:
                directive = parse_directive_line(line)
            continue
        body.append(line)
    return "\n".join(body).strip(), directive


def needs_web_search(probe_reply: str) -> bool:
    """A probe reply containing the word NO means the notes are not enough."""
    return NO_ANSWER_PATTERN.search(probe_reply) is not None


def fallback_result(question: Question, error: BaseException) -> Result:
    """Degraded result for a question whose processing failed."""
    answer = RATE_LIMIT_FALLBACK_ANSWER if is_rate_limit_error(error) else GENERIC_FALLBACK_ANSWER
    return Result(
        question=question.text,
        marks=question.marks,
        answer=answer,
        image_url=None,
        sources=[],
    )


class AnswerGenerator:
    """Generates answers for questions with a bounded pool of workers."""

    def __init__(
        self,
        client,
        concurrency: int = CONCURRENCY_LIMIT,
        probe_chars: int = RELEVANCE_PROBE_CHARS,
        verbose: bool = True,
    ):
        """
        Args:
            client: GeminiClient (or a fake exposing generate_text,
                generate_grounded and generate_image)
            concurrency: Number of worker threads
            probe_chars: Notes prefix length sent to the relevance probe
            verbose: Print progress messages
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self.client = client
        self.concurrency = concurrency
        self.probe_chars = probe_chars
        self.verbose = verbose

    def _log(self, message: str):
        """Print message if verbose mode."""
        if self.verbose:
            print(message)

    # ------------------------------------------------------------------
    # Per-question stages
    # ------------------------------------------------------------------

    def check_needs_web_search(self, notes: NormalizedDocument, question: Question) -> bool:
        """Stage 1: ask the lite model whether the notes suffice."""
        prompt = RELEVANCE_PROMPT.format(
            notes=notes.text[: self.probe_chars],
            question=question.text,
        )
        response = self.client.generate_text(prompt, model=self.client.lite_model)
        return needs_web_search(response.text)

    def build_answer_prompt(
        self,
        notes: NormalizedDocument,
        question: Question,
        web_search: bool,
        custom_instructions: str = "",
    ) -> str:
        if notes.images:
            image_list = " ".join(f"[Image {i}]" for i in range(1, len(notes.images) + 1))
        else:
            image_list = "None"

        if question.marks:
            depth_rule = DEPTH_RULE_WITH_MARKS.format(marks=question.marks)
        else:
            depth_rule = DEPTH_RULE_DEFAULT

        instructions = (custom_instructions or "").strip()

        return ANSWER_PROMPT.format(
            question=question.text,
            notes=notes.text,
            image_list=image_list,
            depth_rule=depth_rule,
            source_rule=SOURCE_RULE_WEB if web_search else SOURCE_RULE_NOTES,
            custom_rule=CUSTOM_RULE.format(instructions=instructions) if instructions else CUSTOM_RULE_NONE,
            use_prefix=USE_IMAGE_PREFIX,
            generate_prefix=GENERATE_IMAGE_PREFIX,
        )

    def resolve_image(
        self, directive: Optional[ImageDirective], images: Sequence[ImagePart]
    ) -> Optional[str]:
        """
        Stage 3: turn an image directive into a data URI.

        Reusing a notes image needs no API call. Generation failures are
        logged and give no image.
        """
        if directive is None:
            return None

        if directive.kind == "use":
            number = directive.image_number
            if number is None or not 1 <= number <= len(images):
                return None
            return images[number - 1].to_data_uri()

        if not directive.prompt:
            return None

        try:
            return self._generate_image(directive.prompt)
        except ImageResolutionError as e:
            self._log(f"  [WARN] Image generation failed for prompt '{directive.prompt}': {e}")
            return None

    def _generate_image(self, prompt: str) -> str:
        try:
            response = self.client.generate_image(prompt)
        except Exception as e:
            raise ImageResolutionError(f"Image generation failed: {e}") from e
        return to_data_uri(response.mime_type, encode_base64(response.image_bytes))

    def answer_question(
        self,
        notes: NormalizedDocument,
        question: Question,
        custom_instructions: str = "",
    ) -> Result:
        """Run all three stages for one question. Errors propagate."""
        web_search = self.check_needs_web_search(notes, question)

        prompt = self.build_answer_prompt(notes, question, web_search, custom_instructions)
        response = self.client.generate_grounded(
            prompt,
            images=notes.images,
            web_search=web_search,
        )

        answer, directive = split_answer(response.text)
        sources = [Source(uri=s.uri, title=s.title or "") for s in response.sources if s.uri]

        image_url = self.resolve_image(directive, notes.images)

        return Result(
            question=question.text,
            marks=question.marks,
            answer=answer,
            image_url=image_url,
            sources=sources,
        )

    def process_question(
        self,
        notes: NormalizedDocument,
        question: Question,
        custom_instructions: str = "",
    ) -> Result:
        """answer_question, with any failure turned into a fallback Result."""
        try:
            return self.answer_question(notes, question, custom_instructions)
        except Exception as e:
            self._log(f"[ERROR] Failed to process question \"{question.text[:60]}\": {e}")
            return fallback_result(question, e)

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------

    def generate_answers(
        self,
        notes: NormalizedDocument,
        questions: Sequence[Question],
        custom_instructions: str = "",
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[Result]:
        """
        Answer every question, returning results in input order.

        on_progress(completed, total) is called once per finished question,
        under a lock, so completed counts 1..total exactly once each.
        """
        total = len(questions)
        if total == 0:
            return []

        pending: "Queue[Tuple[int, Question]]" = Queue()
        for index, question in enumerate(questions):
            pending.put((index, question))

        results: List[Optional[Result]] = [None] * total
        progress_lock = threading.Lock()
        completed = 0

        def worker():
            nonlocal completed
            while True:
                try:
                    index, question = pending.get_nowait()
                except Empty:
                    return

                results[index] = self.process_question(notes, question, custom_instructions)

                with progress_lock:
                    completed += 1
                    if on_progress is not None:
                        on_progress(completed, total)

        workers = min(self.concurrency, total)
        self._log(f"[INFO] Answering {total} questions with {workers} workers")

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="answer-worker") as executor:
            futures = [executor.submit(worker) for _ in range(workers)]
            for future in futures:
                future.result()

        return results
