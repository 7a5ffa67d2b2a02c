"""
Document extraction orchestrator.

Public entry: DocumentExtractor.extract_text(document, on_progress=None) -> ExtractionResult

Images go to the recognition engine whole, with the engine's own progress
forwarded. PDFs are rasterized lazily and recognized page by page; only
page-boundary progress is reported for them. Any stage error aborts the
request; there is no partial result.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sized

from . import fields, io_pages, text_clean
from .config import ExtractorConfig
from .contracts import (
    DecodeError,
    Document,
    ExtractionError,
    ExtractionResult,
    MediaCategory,
    PageImage,
    RecognitionResult,
    TextSpan,
    UnsupportedMediaError,
)
from .observability import summarize_page_meta, summarize_run
from .ocr import ProgressCallback, RecognitionEngine

logger = logging.getLogger(__name__)

Rasterizer = Callable[[bytes, float], Iterable[PageImage]]


class DocumentExtractor:
    def __init__(
        self,
        engine: Optional[RecognitionEngine] = None,
        config: Optional[ExtractorConfig] = None,
        rasterizer: Rasterizer = io_pages.rasterize,
    ):
        self.engine = engine if engine is not None else RecognitionEngine()
        self.config = config or ExtractorConfig()
        if self.config.render_scale <= 0:
            raise ValueError(f"render_scale must be positive, got {self.config.render_scale}")
        self._rasterizer = rasterizer
        # One request at a time; later callers queue here.
        self._lock = threading.Lock()

    def __enter__(self) -> "DocumentExtractor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self.engine.terminate()

    def extract_text(self, document: Document, on_progress: Optional[ProgressCallback] = None) -> ExtractionResult:
        category = document.category
        if category is MediaCategory.UNSUPPORTED:
            raise UnsupportedMediaError(document.mime)

        with self._lock:
            t0 = time.time()
            logger.info("Extracting %s (%s, %d bytes)", document.name or "<unnamed>", document.mime, len(document.content))
            if category is MediaCategory.PDF:
                raw_text, confidence, words, lines, raw_metas, page_count = self._extract_pages(document, on_progress)
            else:
                result = self.engine.recognize(document.content, on_progress)
                raw_text, confidence = result.text, _pct(result.confidence)
                words, lines = list(result.words), list(result.lines)
                raw_metas, page_count = [result.meta], None

            text = text_clean.clean(raw_text, self.config.clean)
            info = fields.mine(text)
            run = summarize_run(raw_metas)
            paginated = page_count is not None
            page_metas = [summarize_page_meta(m, page=n if paginated else None) for n, m in enumerate(raw_metas, 1)]
            meta: Dict[str, Any] = {
                "t_ms": int((time.time() - t0) * 1000),
                "pages": page_metas,
                "run": run,
            }
            logger.info(
                "Extracted %s: %d chars, confidence %.1f, %s page(s), %s ms OCR",
                document.name or "<unnamed>", len(text), confidence, run["pages"], run["t_ocr_ms_total"],
            )
            return ExtractionResult(
                text=text,
                confidence=confidence,
                words=tuple(words),
                lines=tuple(lines),
                certificate_info=info,
                source_media_type=document.mime,
                source_name=document.name,
                page_count=page_count,
                meta=meta,
            )

    def _extract_pages(self, document: Document, on_progress: Optional[ProgressCallback]):
        pages = _rasterizer_call(self._rasterizer, document.content, self.config.render_scale)
        if not isinstance(pages, Sized):
            pages = _rasterizer_call(list, pages)
        total = _rasterizer_call(len, pages)
        it = _rasterizer_call(iter, pages)

        chunks: List[str] = []
        confs: List[float] = []
        words: List[TextSpan] = []
        lines: List[TextSpan] = []
        metas: List[Dict[str, Any]] = []
        i = 0
        while True:
            if on_progress is not None and i < total:
                on_progress((i * 100) // total)
            page = _rasterizer_call(next, it, None)
            if page is None:
                break
            i += 1
            result: RecognitionResult = self.engine.recognize(page.content)
            logger.debug("Page %d/%d recognized (confidence %.1f)", i, total, result.confidence)
            chunks.append(self.config.page_marker.format(page=i))
            chunks.append(text_clean.clean(result.text, self.config.clean))
            confs.append(_pct(result.confidence))
            words.extend(w.on_page(i) for w in result.words)
            lines.extend(ln.on_page(i) for ln in result.lines)
            metas.append(result.meta)

        confidence = sum(confs) / len(confs) if confs else 0.0
        return "\n".join(chunks), confidence, words, lines, metas, i


def _pct(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def _rasterizer_call(fn, *args):
    """Run one rasterizer step; foreign exceptions become DecodeError."""
    try:
        return fn(*args)
    except ExtractionError:
        raise
    except Exception as exc:
        raise DecodeError(f"Failed to rasterize document: {exc}") from exc
