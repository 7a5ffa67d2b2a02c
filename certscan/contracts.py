from dataclasses import dataclass, field, asdict, replace
from enum import Enum
from typing import Literal, Dict, Tuple, Any, Optional

ErrorCode = Literal[
    "ENGINE_INIT_FAILED",
    "DECODE_FAILED",
    "RECOGNITION_FAILED",
    "UNSUPPORTED_MEDIA",
]

def error(code: ErrorCode, message: str = "") -> Dict[str, str]:
    out = {"error": code}
    if message:
        out["message"] = message
    return out


class ExtractionError(Exception):
    code: ErrorCode = "RECOGNITION_FAILED"

    def to_dict(self) -> Dict[str, str]:
        return error(self.code, str(self))


class EngineInitError(ExtractionError):
    """Language model or engine binary could not be loaded."""
    code: ErrorCode = "ENGINE_INIT_FAILED"


class DecodeError(ExtractionError):
    """An image or a document page could not be decoded/rasterized."""
    code: ErrorCode = "DECODE_FAILED"


class RecognitionError(ExtractionError):
    code: ErrorCode = "RECOGNITION_FAILED"


class UnsupportedMediaError(ExtractionError):
    code: ErrorCode = "UNSUPPORTED_MEDIA"

    def __init__(self, media_type: str):
        super().__init__(f"Unsupported file type: {media_type or '<empty>'}")
        self.media_type = media_type


class MediaCategory(str, Enum):
    IMAGE = "image"
    PDF = "pdf"
    UNSUPPORTED = "unsupported"


PDF_MIME = "application/pdf"


def classify(mime: str) -> MediaCategory:
    m = (mime or "").strip().lower()
    if m.startswith("image/"):
        return MediaCategory.IMAGE
    if m == PDF_MIME:
        return MediaCategory.PDF
    return MediaCategory.UNSUPPORTED


@dataclass(frozen=True)
class Document:
    content: bytes
    mime: str
    name: str = ""

    @property
    def category(self) -> MediaCategory:
        return classify(self.mime)


@dataclass(frozen=True)
class BBox:
    """Pixel coordinates; (x0, y0) top-left, (x1, y1) bottom-right."""
    x0: int
    y0: int
    x1: int
    y1: int

    def union(self, other: "BBox") -> "BBox":
        return BBox(
            min(self.x0, other.x0), min(self.y0, other.y0),
            max(self.x1, other.x1), max(self.y1, other.y1),
        )


@dataclass(frozen=True)
class TextSpan:
    """A recognized word or line. `page` is set only for paginated input."""
    text: str
    confidence: float
    bbox: BBox
    page: Optional[int] = None

    def on_page(self, page: int) -> "TextSpan":
        return replace(self, page=page)


@dataclass(frozen=True)
class RecognitionResult:
    text: str
    confidence: float
    words: Tuple[TextSpan, ...] = ()
    lines: Tuple[TextSpan, ...] = ()
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PageImage:
    content: bytes  # PNG tuned for OCR
    index: int  # 1-based page number
    width: int
    height: int
    mime: str = "image/png"


@dataclass(frozen=True)
class CertificateInfo:
    names: Tuple[str, ...] = ()
    institutions: Tuple[str, ...] = ()
    dates: Tuple[str, ...] = ()
    degrees: Tuple[str, ...] = ()
    certificates: Tuple[str, ...] = ()
    emails: Tuple[str, ...] = ()
    ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ExtractionResult:
    text: str
    confidence: float
    words: Tuple[TextSpan, ...]
    lines: Tuple[TextSpan, ...]
    certificate_info: CertificateInfo
    source_media_type: str
    source_name: str
    page_count: Optional[int] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready view for report export; `page_count` only for paginated input."""
        out = asdict(self)
        out["words"] = [_span_dict(w) for w in self.words]
        out["lines"] = [_span_dict(ln) for ln in self.lines]
        out["certificate_info"] = {k: list(v) for k, v in out["certificate_info"].items()}
        if self.page_count is None:
            out.pop("page_count")
        return out


def _span_dict(span: TextSpan) -> Dict[str, Any]:
    d = asdict(span)
    if span.page is None:
        d.pop("page")
    return d
