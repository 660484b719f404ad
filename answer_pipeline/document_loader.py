"""
Normalize notes and question-bank files into text plus images.

PDF pages are read with PyMuPDF: text layer, embedded rasters, and a full
page render when the page has (almost) no text, which catches scanned pages.
Word files are read with python-docx. Anything else is decoded as text.
"""

import io
from typing import Iterable, List, Optional

import fitz  # PyMuPDF
import pdfplumber
from docx import Document
from docx.oxml.ns import qn
from docx.table import Table
from docx.text.paragraph import Paragraph
from PIL import Image

from config import (
    DOCX_EXTENSIONS,
    DOCX_MIME,
    IMAGE_DEDUP_PREFIX_CHARS,
    NATIVE_IMAGE_MIME_TYPES,
    NOTES_SEPARATOR,
    PAGE_RENDER_SCALE,
    PDF_EXTENSIONS,
    PDF_MIME,
    SCAN_TEXT_THRESHOLD,
    TEXT_EXTENSIONS,
)
from answer_pipeline.errors import DocumentParseError
from answer_pipeline.models import ImagePart, InputFile, NormalizedDocument
from utils.image_utils import (
    encode_base64,
    mime_for_extension,
    pil_to_bytes,
    pixmap_to_pil,
    render_page,
)

KIND_PDF = "pdf"
KIND_DOCX = "docx"
KIND_TEXT = "text"


def detect_kind(file: InputFile) -> str:
    """Classify a file as pdf, docx or text from its MIME type / extension."""
    if file.mime_type == PDF_MIME or file.extension in PDF_EXTENSIONS:
        return KIND_PDF
    if file.mime_type == DOCX_MIME or file.extension in DOCX_EXTENSIONS:
        return KIND_DOCX
    return KIND_TEXT


def dedupe_images(
    images: Iterable[ImagePart], prefix_chars: int = IMAGE_DEDUP_PREFIX_CHARS
) -> List[ImagePart]:
    """
    Drop images whose base64 payload starts with an already seen prefix.

    The first occurrence wins and keeps its position.
    """
    seen = set()
    unique = []
    for image in images:
        key = image.data[:prefix_chars]
        if key in seen:
            continue
        seen.add(key)
        unique.append(image)
    return unique


def decode_text(data: bytes) -> str:
    """Decode text file bytes (UTF-8, BOM tolerated)."""
    return data.decode("utf-8-sig")


class DocumentLoader:
    """Converts input files into NormalizedDocument records."""

    def __init__(
        self,
        scan_threshold: int = SCAN_TEXT_THRESHOLD,
        render_scale: float = PAGE_RENDER_SCALE,
        dedup_prefix_chars: int = IMAGE_DEDUP_PREFIX_CHARS,
        verbose: bool = True,
    ):
        self.scan_threshold = scan_threshold
        self.render_scale = render_scale
        self.dedup_prefix_chars = dedup_prefix_chars
        self.verbose = verbose

    def _log(self, message: str):
        """Print message if verbose mode."""
        if self.verbose:
            print(message)

    # ------------------------------------------------------------------
    # Notes (text + images)
    # ------------------------------------------------------------------

    def load(self, file: InputFile) -> NormalizedDocument:
        """
        Normalize a single file.

        Raises:
            DocumentParseError: if the file cannot be parsed
        """
        kind = detect_kind(file)
        try:
            if kind == KIND_PDF:
                document = self.parse_pdf(file.data)
            elif kind == KIND_DOCX:
                document = self.parse_docx(file.data)
            else:
                if file.extension not in TEXT_EXTENSIONS:
                    self._log(f"[WARN] Unknown file type for {file.name}, reading as text")
                document = NormalizedDocument(text=decode_text(file.data), images=[])
        except DocumentParseError:
            raise
        except Exception as e:
            raise DocumentParseError(file.name, e) from e

        self._log(
            f"[INFO] Loaded {file.name}: {len(document.text)} chars, "
            f"{len(document.images)} images"
        )
        return document

    def load_many(self, files: Iterable[InputFile]) -> NormalizedDocument:
        """
        Normalize a batch of files into one document.

        Text of each file is joined with NOTES_SEPARATOR, images are
        concatenated in file order. Any failing file fails the whole batch.
        """
        texts = []
        images: List[ImagePart] = []
        for file in files:
            document = self.load(file)
            texts.append(document.text)
            images.extend(document.images)

        return NormalizedDocument(text=NOTES_SEPARATOR.join(texts), images=images)

    def parse_docx(self, data: bytes) -> NormalizedDocument:
        """Text of paragraphs and tables plus every embedded picture, in body order."""
        document = Document(io.BytesIO(data))
        text = self._docx_text(document)

        images = []
        for blip in document.element.body.iter(qn("a:blip")):
            rel_id = blip.get(qn("r:embed"))
            if not rel_id:
                continue  # linked, not embedded
            part = document.part.related_parts.get(rel_id)
            if part is None:
                continue
            image = self._image_from_blob(part.blob, part.content_type)
            if image is not None:
                images.append(image)

        return NormalizedDocument(text=text, images=images)

    def parse_pdf(self, data: bytes) -> NormalizedDocument:
        """
        Text layer of every page plus embedded images and scan renders.

        A page whose text is shorter than scan_threshold is rendered at
        render_scale and the render is added as an extra image.
        """
        doc = fitz.open(stream=data, filetype="pdf")
        try:
            if doc.needs_pass:
                raise ValueError("PDF is password protected")
            if doc.page_count == 0:
                raise ValueError("PDF has no pages")

            page_texts = []
            images: List[ImagePart] = []
            for page in doc:
                page_text = page.get_text()
                page_texts.append(page_text)

                images.extend(self._embedded_images(doc, page))

                if len(page_text.strip()) < self.scan_threshold:
                    rendered = self._render_scanned_page(page)
                    if rendered is not None:
                        images.append(rendered)
        finally:
            doc.close()

        return NormalizedDocument(
            text="\n".join(page_texts),
            images=dedupe_images(images, self.dedup_prefix_chars),
        )

    def _embedded_images(self, doc: fitz.Document, page: fitz.Page) -> List[ImagePart]:
        images = []
        for info in page.get_images(full=True):
            xref = info[0]
            try:
                extracted = doc.extract_image(xref)
                mime_type = mime_for_extension(extracted.get("ext", "")) if extracted else None
                if mime_type:
                    payload = extracted["image"]
                else:
                    # JPX, JBIG2, CMYK etc: let MuPDF decode, store as PNG
                    payload = pil_to_bytes(pixmap_to_pil(fitz.Pixmap(doc, xref)), "PNG")
                    mime_type = "image/png"
                images.append(ImagePart(data=encode_base64(payload), mime_type=mime_type))
            except Exception as e:
                self._log(f"  [WARN] Skipping image {xref} on page {page.number + 1}: {e}")
        return images

    def _render_scanned_page(self, page: fitz.Page) -> Optional[ImagePart]:
        try:
            image = render_page(page, self.render_scale)
            return ImagePart(data=encode_base64(pil_to_bytes(image, "PNG")), mime_type="image/png")
        except Exception as e:
            self._log(f"  [WARN] Could not render page {page.number + 1}: {e}")
            return None

    def _image_from_blob(self, blob: bytes, mime_type: str) -> Optional[ImagePart]:
        if mime_type in NATIVE_IMAGE_MIME_TYPES:
            return ImagePart(data=encode_base64(blob), mime_type=mime_type)
        try:
            with Image.open(io.BytesIO(blob)) as image:
                image.load()
                payload = pil_to_bytes(image.convert("RGB"), "PNG")
            return ImagePart(data=encode_base64(payload), mime_type="image/png")
        except Exception as e:
            self._log(f"  [WARN] Skipping unsupported image ({mime_type}): {e}")
            return None

    @staticmethod
    def _docx_text(document) -> str:
        lines = []
        DocumentLoader._collect_docx_lines(document.element.body, document, lines)
        return "\n".join(lines)

    @staticmethod
    def _collect_docx_lines(container, document, lines: List[str]):
        for block in container.iterchildren():
            if block.tag == qn("w:p"):
                lines.append(Paragraph(block, document).text)
            elif block.tag == qn("w:tbl"):
                for row in Table(block, document).rows:
                    lines.append("\t".join(cell.text for cell in row.cells))
            elif block.tag == qn("w:sdt"):
                # Content controls (TOCs, form fields) wrap their blocks in sdtContent
                for content in block.iterchildren(qn("w:sdtContent")):
                    DocumentLoader._collect_docx_lines(content, document, lines)

    # ------------------------------------------------------------------
    # Question bank (text only)
    # ------------------------------------------------------------------

    def extract_text(self, file: InputFile) -> str:
        """
        Plain text of a file, ignoring images.

        Raises:
            DocumentParseError: if the file cannot be parsed
        """
        kind = detect_kind(file)
        try:
            if kind == KIND_PDF:
                with pdfplumber.open(io.BytesIO(file.data)) as pdf:
                    text = "\n".join(page.extract_text() or "" for page in pdf.pages)
            elif kind == KIND_DOCX:
                text = self._docx_text(Document(io.BytesIO(file.data)))
            else:
                text = decode_text(file.data)
        except Exception as e:
            raise DocumentParseError(file.name, e) from e

        self._log(f"[INFO] Read {file.name}: {len(text)} chars")
        return text
