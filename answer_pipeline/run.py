"""
Main pipeline runner: notes + question bank -> answered document.
"""

import argparse
import sys
import time
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from dotenv import load_dotenv
from tqdm import tqdm

from config import (
    CONCURRENCY_LIMIT,
    DEFAULT_OUTPUT_NAME,
    EXPORT_FORMATS,
    GENERIC_FALLBACK_ANSWER,
    OUTPUT_DIR,
    RATE_LIMIT_FALLBACK_ANSWER,
)
from answer_pipeline.answer_generator import AnswerGenerator
from answer_pipeline.document_loader import DocumentLoader
from answer_pipeline.errors import AnswerPipelineError
from answer_pipeline.exporter import export_results
from answer_pipeline.models import InputFile, Result
from answer_pipeline.question_extractor import QuestionExtractor
from utils.gemini_client import GeminiClient, create_client
from utils.retry import RateLimitExceeded


class Pipeline:
    """Full run: normalize notes, extract questions, generate answers."""

    def __init__(
        self,
        client: GeminiClient,
        concurrency: int = CONCURRENCY_LIMIT,
        verbose: bool = True,
    ):
        self.verbose = verbose
        self.client = client
        self.loader = DocumentLoader(verbose=verbose)
        self.extractor = QuestionExtractor(client, verbose=verbose)
        self.generator = AnswerGenerator(client, concurrency=concurrency, verbose=verbose)

    def _log(self, message: str):
        """Print message if verbose mode."""
        if self.verbose:
            print(message)

    def run(
        self,
        notes_files: Sequence[InputFile],
        questions_file: InputFile,
        custom_instructions: str = "",
    ) -> List[Result]:
        """
        Run every stage. Document and extraction errors abort the run
        before any answer is generated.
        """
        self._log(f"\n{'='*60}")
        self._log(f"Notes: {', '.join(f.name for f in notes_files)}")
        self._log(f"Questions: {questions_file.name}")
        self._log(f"{'='*60}")

        self._log("\nStage 1: Loading documents")
        notes = self.loader.load_many(notes_files)
        bank_text = self.loader.extract_text(questions_file)

        self._log("\nStage 2: Extracting questions")
        questions = self.extractor.extract(bank_text)

        self._log("\nStage 3: Generating answers")
        with tqdm(total=len(questions), desc="Answering", disable=not self.verbose) as bar:
            def on_progress(completed: int, total: int):
                bar.n = completed
                bar.refresh()

            return self.generator.generate_answers(
                notes, questions, custom_instructions, on_progress=on_progress
            )


def count_fallbacks(results: Sequence[Result]) -> int:
    fallbacks = (RATE_LIMIT_FALLBACK_ANSWER, GENERIC_FALLBACK_ANSWER)
    return sum(1 for r in results if r.answer in fallbacks)


def resolve_output(output: Optional[str], fmt: Optional[str]) -> Tuple[Path, str]:
    """Pick output path and format from whichever of the two was given."""
    if output:
        path = Path(output)
        if fmt is None:
            suffix = path.suffix.lower().lstrip(".")
            fmt = suffix if suffix in EXPORT_FORMATS else "md"
        return path, fmt

    fmt = fmt or "md"
    return OUTPUT_DIR / f"{DEFAULT_OUTPUT_NAME}.{fmt}", fmt


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Answer a question bank from your study notes with Gemini"
    )
    parser.add_argument(
        "--notes",
        nargs="+",
        required=True,
        help="Notes files (.txt, .md, .pdf, .docx)",
    )
    parser.add_argument(
        "--questions",
        required=True,
        help="Question bank file (.txt, .md, .pdf, .docx)",
    )
    parser.add_argument(
        "--instructions",
        default="",
        help="Custom instructions applied to every answer",
    )
    parser.add_argument(
        "--output",
        help="Output file (default: output/answers.<format>)",
    )
    parser.add_argument(
        "--format",
        choices=EXPORT_FORMATS,
        help="Output format (default: from --output extension, else md)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=CONCURRENCY_LIMIT,
        help=f"Questions answered in parallel (default: {CONCURRENCY_LIMIT})",
    )
    parser.add_argument(
        "--api-key",
        help="Gemini API key (default: GEMINI_API_KEY env var)",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress verbose output",
    )

    args = parser.parse_args(argv)
    verbose = not args.quiet

    # Load .env file if present
    load_dotenv()

    paths = [Path(p) for p in args.notes] + [Path(args.questions)]
    missing = [p for p in paths if not p.exists()]
    if missing:
        print(f"[ERROR] File not found: {', '.join(str(p) for p in missing)}")
        return 1

    output_path, fmt = resolve_output(args.output, args.format)

    start = time.time()
    try:
        client = create_client(api_key=args.api_key, verbose=verbose)
        pipeline = Pipeline(client, concurrency=args.concurrency, verbose=verbose)
        results = pipeline.run(
            [InputFile.from_path(p) for p in args.notes],
            InputFile.from_path(Path(args.questions)),
            custom_instructions=args.instructions,
        )
    except (AnswerPipelineError, RateLimitExceeded, ValueError) as e:
        print(f"[ERROR] {e}")
        return 1

    export_results(results, output_path, fmt)

    failed = count_fallbacks(results)
    print("\n" + "=" * 60)
    print("SUMMARY")
    print("=" * 60)
    print(f"Questions answered: {len(results) - failed}/{len(results)}")
    if failed:
        print(f"Fallback answers: {failed}")
    print(f"Saved: {output_path}")
    print(f"Time: {time.time() - start:.1f}s")

    return 0


if __name__ == "__main__":
    sys.exit(main())
