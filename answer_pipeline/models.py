"""
Records passed between the pipeline stages.
"""

import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from utils.image_utils import to_data_uri


@dataclass(frozen=True)
class Question:
    """One question from the question bank."""
    text: str
    marks: Optional[str] = None


@dataclass(frozen=True)
class ImagePart:
    """An image from the notes, base64 encoded."""
    data: str
    mime_type: str

    def to_data_uri(self) -> str:
        return to_data_uri(self.mime_type, self.data)


@dataclass(frozen=True)
class NormalizedDocument:
    """Plain text plus embedded/rendered images of one or more files."""
    text: str
    images: List[ImagePart] = field(default_factory=list)


@dataclass(frozen=True)
class Source:
    """Web citation attached to an answer."""
    uri: str
    title: str = ""


@dataclass(frozen=True)
class Result:
    """Generated answer for one question."""
    question: str
    marks: Optional[str]
    answer: str
    image_url: Optional[str] = None
    sources: List[Source] = field(default_factory=list)


@dataclass
class InputFile:
    """Raw bytes of an uploaded file plus its declared type."""
    name: str
    data: bytes
    mime_type: Optional[str] = None

    @classmethod
    def from_path(cls, path: Path) -> "InputFile":
        path = Path(path)
        mime_type, _ = mimetypes.guess_type(path.name)
        return cls(name=path.name, data=path.read_bytes(), mime_type=mime_type)

    @property
    def extension(self) -> str:
        return Path(self.name).suffix.lower()
