"""
Write generated answers to Markdown, plain text or Word files.
"""

import io
import re
from pathlib import Path
from typing import List, Sequence

from docx import Document
from docx.image.exceptions import UnrecognizedImageError
from docx.shared import Inches

from config import EXPORT_FORMATS, EXPORT_IMAGE_WIDTH_INCHES, EXPORT_TITLE
from answer_pipeline.models import Result
from utils.image_utils import decode_base64, parse_data_uri


def strip_markdown(md: str) -> str:
    """Rough Markdown to plain text conversion for TXT export."""
    md = re.sub(r"```[\s\S]*?```", "", md)
    md = re.sub(r"^#{1,6}\s+(.*)", r"\1", md, flags=re.MULTILINE)
    md = re.sub(r"(\*\*|__)(.*?)\1", r"\2", md)
    md = re.sub(r"(\*|_)(.*?)\1", r"\2", md)
    md = re.sub(r"!\[(.*?)\]\(.*?\)", "", md)
    md = re.sub(r"\[(.*?)\]\(.*?\)", r"\1", md)
    md = re.sub(r"^-{3,}\s*$", "", md, flags=re.MULTILINE)
    md = re.sub(r"^>\s?", "", md, flags=re.MULTILINE)
    md = re.sub(r"^\s*[-*+]\s+", "- ", md, flags=re.MULTILINE)
    md = re.sub(r"`([^`]+)`", r"\1", md)
    return md.strip()


def _heading(index: int, result: Result) -> str:
    return f"Q{index}: {result.question}"


def to_markdown(results: Sequence[Result]) -> str:
    blocks = [f"# {EXPORT_TITLE}\n"]
    for i, result in enumerate(results, start=1):
        lines = [f"## {_heading(i, result)}" + (f" *({result.marks})*" if result.marks else ""), ""]
        lines.append(result.answer)
        if result.image_url:
            lines += ["", f"![Illustration for Q{i}]({result.image_url})"]
        if result.sources:
            lines += ["", "**Sources:**"]
            lines += [f"* [{s.title or s.uri}]({s.uri})" for s in result.sources]
        lines += ["", "---", ""]
        blocks.append("\n".join(lines))
    return "\n".join(blocks)


def to_text(results: Sequence[Result]) -> str:
    blocks = []
    for i, result in enumerate(results, start=1):
        lines = [_heading(i, result) + (f" ({result.marks})" if result.marks else ""), ""]
        lines += ["Answer:", strip_markdown(result.answer)]
        if result.sources:
            lines += ["", "Sources:"]
            lines += [f"- {s.title}: {s.uri}" if s.title else f"- {s.uri}" for s in result.sources]
        lines += ["", "---", ""]
        blocks.append("\n".join(lines))
    return "\n".join(blocks)


def _add_markdown_paragraphs(document, markdown: str):
    """Map headings and bullets to Word styles; everything else is a paragraph."""
    for line in markdown.split("\n"):
        stripped = line.strip()
        if not stripped:
            continue
        heading = re.match(r"^(#{1,6})\s+(.*)", stripped)
        if heading:
            level = min(len(heading.group(1)) + 1, 9)
            document.add_heading(strip_markdown(heading.group(2)), level=level)
        elif re.match(r"^[-*+]\s+", stripped):
            document.add_paragraph(strip_markdown(stripped[2:]), style="List Bullet")
        elif re.match(r"^\d+\.\s+", stripped):
            document.add_paragraph(strip_markdown(re.sub(r"^\d+\.\s+", "", stripped)), style="List Number")
        else:
            document.add_paragraph(strip_markdown(stripped))


def to_docx(results: Sequence[Result]) -> bytes:
    document = Document()
    document.add_heading(EXPORT_TITLE, level=0)

    for i, result in enumerate(results, start=1):
        document.add_heading(_heading(i, result), level=1)
        if result.marks:
            document.add_paragraph().add_run(f"({result.marks})").italic = True

        _add_markdown_paragraphs(document, result.answer)

        if result.image_url:
            parsed = parse_data_uri(result.image_url)
            if parsed:
                mime_type, payload = parsed
                try:
                    document.add_picture(
                        io.BytesIO(decode_base64(payload)),
                        width=Inches(EXPORT_IMAGE_WIDTH_INCHES),
                    )
                except UnrecognizedImageError:
                    document.add_paragraph(f"[Image not embedded: {mime_type}]")

        if result.sources:
            document.add_heading("Sources", level=3)
            for source in result.sources:
                document.add_paragraph(
                    f"{source.title}: {source.uri}" if source.title else source.uri,
                    style="List Bullet",
                )

    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def export_results(results: List[Result], output_path: Path, fmt: str) -> Path:
    """
    Write results to output_path in the given format.

    Raises:
        ValueError: for an unknown format
    """
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unknown export format '{fmt}'. Choose from: {', '.join(EXPORT_FORMATS)}")

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if fmt == "md":
        output_path.write_text(to_markdown(results), encoding="utf-8")
    elif fmt == "txt":
        output_path.write_text(to_text(results), encoding="utf-8")
    else:
        output_path.write_bytes(to_docx(results))

    return output_path
