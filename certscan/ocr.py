import logging, queue, shlex, threading, time, warnings
from concurrent.futures import Future, ThreadPoolExecutor, wait
from enum import Enum
from io import BytesIO
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from PIL import Image
import pytesseract

from . import preproc
from .config import EngineConfig
from .contracts import (
    BBox,
    DecodeError,
    EngineInitError,
    RecognitionError,
    RecognitionResult,
    TextSpan,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

LANG_HINT_TO_TESS = {
    "en": "eng",
    "hi": "hin",
    "bn": "ben",
    "hr": "hrv",
    "und": "eng",
}
_WARNED_LANGS = set()


class EngineState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    TERMINATED = "terminated"


# ---------- helpers ----------
def resolve_tess_lang(lang_hint: str, available: Iterable[str]) -> str:
    """Map a language hint ('en', 'hi+en', 'eng') onto installed tessdata codes.

    Falls back to 'eng' with a warning when a hinted pack is missing; fails
    only when not even English is installed.
    """
    available = set(available)
    orig = (lang_hint or "und").strip().lower()
    segments = [seg.strip() for seg in orig.split("+") if seg.strip()]
    codes: List[str] = []
    for seg in segments or ["und"]:
        code = LANG_HINT_TO_TESS.get(seg, seg)
        if code not in codes:
            codes.append(code)
    missing = [c for c in codes if c not in available]
    if not missing:
        return "+".join(codes)
    if "eng" in available:
        if orig not in _WARNED_LANGS:
            warnings.warn(f"Missing tessdata for '{'+'.join(missing)}'. Falling back to 'eng'.", RuntimeWarning)
            _WARNED_LANGS.add(orig)
        return "eng"
    raise EngineInitError(f"Language model not installed: {', '.join(missing)}")


def _build_cfg(config: EngineConfig) -> str:
    parts = []
    if config.tessdata_dir:
        parts.append(f'--tessdata-dir "{config.tessdata_dir}"')
    parts.append(f"--oem {config.oem} --psm {config.psm}")
    if config.preserve_interword_spaces:
        parts.append("-c preserve_interword_spaces=1")
    if config.char_whitelist:
        # pytesseract shlex-splits the config; the whitelist contains spaces and quotes
        parts.append("-c " + shlex.quote(f"tessedit_char_whitelist={config.char_whitelist}"))
    return " ".join(parts)


def _pil_from_bytes(img_bytes: bytes) -> Image.Image:
    try:
        im = Image.open(BytesIO(img_bytes))
        im.load()
    except (OSError, ValueError) as exc:
        raise DecodeError(f"Unable to decode image bytes: {exc}") from exc
    if im.mode not in ("L", "RGB"):
        im = im.convert("RGB")
    return im


def _mean_conf(conf):
    return (sum(conf)/len(conf)) if conf else 0.0


def _pct(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def _as_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return -1.0


def _assemble(data: Dict[str, list]) -> Tuple[str, float, Tuple[TextSpan, ...], Tuple[TextSpan, ...]]:
    """Build words, lines and text from `image_to_data` DICT output.

    Rows are already in reading order. Only level-5 (word) rows carry text;
    a negative `conf` marks a row Tesseract could not score, which keeps its
    text but stays out of every confidence mean.
    """
    words: List[TextSpan] = []
    word_confs: List[float] = []
    grouped: Dict[Tuple[int, int, int, int], List[Tuple[TextSpan, float]]] = {}

    for i, raw_text in enumerate(data.get("text", [])):
        if int(data["level"][i]) != 5:
            continue
        text = str(raw_text or "").strip()
        if not text:
            continue
        left, top = int(data["left"][i]), int(data["top"][i])
        bbox = BBox(left, top, left + int(data["width"][i]), top + int(data["height"][i]))
        conf = _as_float(data["conf"][i])
        span = TextSpan(text=text, confidence=_pct(conf) if conf >= 0 else 0.0, bbox=bbox)
        words.append(span)
        if conf >= 0:
            word_confs.append(conf)
        key = (
            int(data["page_num"][i]),
            int(data["block_num"][i]),
            int(data["par_num"][i]),
            int(data["line_num"][i]),
        )
        grouped.setdefault(key, []).append((span, conf))

    lines: List[TextSpan] = []
    chunks: List[str] = []
    prev_block = None
    for key, members in grouped.items():
        bbox = members[0][0].bbox
        for span, _ in members[1:]:
            bbox = bbox.union(span.bbox)
        line_text = " ".join(span.text for span, _ in members)
        line_conf = _mean_conf([c for _, c in members if c >= 0])
        lines.append(TextSpan(text=line_text, confidence=_pct(line_conf), bbox=bbox))
        block = key[:2]
        if prev_block is not None and block != prev_block:
            chunks.append("")
        chunks.append(line_text)
        prev_block = block

    return "\n".join(chunks), _pct(_mean_conf(word_confs)), tuple(words), tuple(lines)


def _pump(future: Future, channel: "queue.Queue[int]", on_progress: ProgressCallback, poll_s: float = 0.05) -> None:
    """Deliver worker progress on the calling thread, clamped and monotonic."""
    last = -1
    while True:
        try:
            value = channel.get(timeout=poll_s)
        except queue.Empty:
            if future.done() and channel.empty():
                return
            continue
        value = int(_pct(value))
        if value > last:
            last = value
            on_progress(value)


# ---------- engine ----------
class RecognitionEngine:
    """A single Tesseract engine owned by whoever constructs it.

    Tesseract is driven from one dedicated worker thread, so at most one
    recognition runs at a time; concurrent callers queue on `_busy`.
    Progress produced on the worker is handed back through a queue and
    reported on the caller's own thread.

    Use as a context manager (or call `terminate()`) to release the worker.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.version: Optional[str] = None
        self._state = EngineState.UNINITIALIZED
        self._state_lock = threading.Lock()
        self._busy = threading.Lock()
        self._worker: Optional[ThreadPoolExecutor] = None
        self._lang_code: Optional[str] = None
        self._tess_cfg = ""

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def language_code(self) -> Optional[str]:
        return self._lang_code

    def __enter__(self) -> "RecognitionEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.terminate()

    def initialize(self) -> None:
        if self._state is EngineState.READY:
            return
        with self._state_lock:
            if self._state is EngineState.READY:
                return
            self._state = EngineState.INITIALIZING
            t0 = time.time()
            try:
                self._load()
            except Exception as exc:
                self._state = EngineState.UNINITIALIZED
                logger.error("Failed to initialize OCR engine: %s", exc)
                if isinstance(exc, EngineInitError):
                    raise
                raise EngineInitError(f"Failed to initialize OCR engine: {exc}") from exc
            self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="certscan-ocr")
            self._state = EngineState.READY
            logger.info(
                "OCR engine ready (tesseract %s, lang=%s, %d ms)",
                self.version, self._lang_code, int((time.time() - t0) * 1000),
            )

    def _load(self) -> None:
        if self.config.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.config.tesseract_cmd
        self.version = str(pytesseract.get_tesseract_version())
        lang_cfg = f'--tessdata-dir "{self.config.tessdata_dir}"' if self.config.tessdata_dir else ""
        available = pytesseract.get_languages(config=lang_cfg)
        self._lang_code = resolve_tess_lang(self.config.language, available)
        self._tess_cfg = _build_cfg(self.config)

    def recognize(self, image: bytes, on_progress: Optional[ProgressCallback] = None) -> RecognitionResult:
        with self._busy:
            self.initialize()
            channel: "queue.Queue[int]" = queue.Queue()
            future = self._worker.submit(self._run, image, channel.put)
            try:
                if on_progress is not None:
                    _pump(future, channel, on_progress)
            finally:
                wait([future])
            try:
                return future.result()
            except (DecodeError, RecognitionError):
                raise
            except Exception as exc:
                raise RecognitionError(f"Failed to extract text from image: {exc}") from exc

    def _run(self, image: bytes, report: ProgressCallback) -> RecognitionResult:
        # Runs on the worker thread.
        t0 = time.time()
        report(0)
        artifacts: Dict[str, float] = {}
        if self.config.preprocess:
            image, artifacts = preproc.enhance(image)
        im = _pil_from_bytes(image)
        report(10)
        try:
            data = pytesseract.image_to_data(
                im, lang=self._lang_code, config=self._tess_cfg, output_type=pytesseract.Output.DICT
            )
        except Exception as exc:
            raise RecognitionError(f"OCR engine failed: {exc}") from exc
        report(90)
        text, conf, words, lines = _assemble(data)
        meta = {
            "engine": "tesseract",
            "t_ms": int((time.time() - t0) * 1000),
            "params": {
                "oem": self.config.oem,
                "psm": self.config.psm,
                "lang": self._lang_code,
                "preprocess": self.config.preprocess,
            },
            "char_conf_mean": conf,
            "size": {"w": im.width, "h": im.height},
        }
        if artifacts:
            meta["preproc_artifacts"] = artifacts
        report(100)
        return RecognitionResult(text=text, confidence=conf, words=words, lines=lines, meta=meta)

    def terminate(self) -> None:
        with self._busy:
            with self._state_lock:
                if self._worker is None:
                    return
                self._worker.shutdown(wait=True)
                self._worker = None
                self._state = EngineState.TERMINATED
                logger.info("OCR engine terminated")
