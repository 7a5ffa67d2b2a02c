import logging
from io import BytesIO
from typing import Iterator, Optional

from pdf2image import convert_from_bytes, pdfinfo_from_bytes
from pdf2image.exceptions import (
    PDFInfoNotInstalledError,
    PDFPageCountError,
    PDFPopplerTimeoutError,
    PDFSyntaxError,
)

from .contracts import DecodeError, PageImage

logger = logging.getLogger(__name__)

# PDF user space is 72 units per inch; scale 2.0 renders at 144 dpi.
PDF_POINTS_PER_INCH = 72.0
DEFAULT_SCALE = 2.0

_PDF_ERRORS = (PDFInfoNotInstalledError, PDFPageCountError, PDFPopplerTimeoutError, PDFSyntaxError)


def count_pages(b: bytes) -> int:
    try:
        info = pdfinfo_from_bytes(b)
        pages = int(info["Pages"])
    except _PDF_ERRORS as exc:
        raise DecodeError(f"Unreadable PDF page table: {exc}") from exc
    except (KeyError, TypeError, ValueError) as exc:
        raise DecodeError("PDF page table has no page count") from exc
    if pages < 1:
        raise DecodeError("PDF has no pages")
    return pages


def render_page(b: bytes, page_num: int, scale: float = DEFAULT_SCALE) -> PageImage:
    dpi = int(round(PDF_POINTS_PER_INCH * scale))
    try:
        imgs = convert_from_bytes(b, dpi=dpi, first_page=page_num, last_page=page_num, fmt="png")
    except _PDF_ERRORS as exc:
        raise DecodeError(f"Failed to render page {page_num}: {exc}") from exc
    if not imgs:
        raise DecodeError(f"Failed to render page {page_num}: renderer returned no image")
    im = imgs[0]
    buf = BytesIO()
    im.save(buf, format="PNG")
    return PageImage(content=buf.getvalue(), index=page_num, width=im.width, height=im.height)


class PageSequence:
    """Lazy, single-pass sequence of rendered PDF pages.

    `len()` reads the page table (once); iterating renders page `i` only
    when the consumer asks for it. A DecodeError ends the sequence.
    """

    def __init__(self, b: bytes, scale: float = DEFAULT_SCALE):
        self._content = b
        self.scale = scale
        self._total: Optional[int] = None
        self._started = False

    @property
    def total(self) -> int:
        if self._total is None:
            self._total = count_pages(self._content)
        return self._total

    def __len__(self) -> int:
        return self.total

    def __iter__(self) -> Iterator[PageImage]:
        if self._started:
            raise RuntimeError("page sequence already consumed; rasterize the document again")
        self._started = True
        return self._pages()

    def _pages(self) -> Iterator[PageImage]:
        total = self.total
        logger.debug("Rasterizing %d page(s) at scale %.2f", total, self.scale)
        for page_num in range(1, total + 1):
            yield render_page(self._content, page_num, self.scale)


def rasterize(b: bytes, scale: float = DEFAULT_SCALE) -> PageSequence:
    """Pages of a PDF in order (1-based), rendered at `scale` x 72 dpi."""
    if scale <= 0:
        raise ValueError(f"scale must be positive, got {scale}")
    return PageSequence(b, scale)
