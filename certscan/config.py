"""Runtime configuration for the extraction pipeline.

Every knob has a sane default and can be overridden from the environment so
the same code runs on a laptop (Homebrew Tesseract) and in a container.

    TESSERACT_CMD          path to the tesseract binary
    TESSDATA_PREFIX        directory holding *.traineddata
    CERTSCAN_LANG          language hint or tessdata code (default: eng)
    CERTSCAN_PSM           page segmentation mode (default: 11, sparse text)
    CERTSCAN_PREPROC       enable OpenCV enhancement before OCR (default: 0)
    CERTSCAN_RENDER_SCALE  PDF page upscaling factor (default: 2.0)
    CERTSCAN_LOG_LEVEL     log level for the `certscan` logger (default: WARNING)
"""
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Optional, Union

# Characters Tesseract may emit; everything else is treated as noise on certificates.
CHAR_WHITELIST = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
    " .,;:!?\"-()[]{}/"
)
PSM_SPARSE_TEXT = 11

_FALSY = {"0", "false", "no", "off"}


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in _FALSY


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


@dataclass
class EngineConfig:
    language: str = "eng"
    psm: int = PSM_SPARSE_TEXT
    oem: int = 3
    char_whitelist: Optional[str] = CHAR_WHITELIST
    preserve_interword_spaces: bool = True
    preprocess: bool = False
    tesseract_cmd: Optional[str] = None
    tessdata_dir: Optional[str] = None

    @classmethod
    def from_env(cls) -> "EngineConfig":
        return cls(
            language=os.getenv("CERTSCAN_LANG", "eng"),
            psm=_env_int("CERTSCAN_PSM", PSM_SPARSE_TEXT),
            preprocess=_env_flag("CERTSCAN_PREPROC", False),
            tesseract_cmd=os.getenv("TESSERACT_CMD") or None,
            tessdata_dir=os.getenv("TESSDATA_PREFIX") or None,
        )


@dataclass
class CleanOptions:
    """Toggles for the recognition-artifact heuristics in `text_clean.clean`.

    The substitutions are heuristics, not corrections: they trade a few false
    positives on genuine content for fewer common OCR confusions.
    """
    canonicalize: bool = True
    bars_to_i: bool = True
    zero_to_o: bool = True
    lone_i_to_one: bool = True


@dataclass
class ExtractorConfig:
    render_scale: float = 2.0
    page_marker: str = "--- Page {page} ---"
    clean: CleanOptions = field(default_factory=CleanOptions)

    @classmethod
    def from_env(cls) -> "ExtractorConfig":
        return cls(render_scale=_env_float("CERTSCAN_RENDER_SCALE", 2.0))


def configure_logging(level: Union[str, int, None] = None, name: str = "certscan") -> logging.Logger:
    """Attach a single stderr handler to the package logger."""
    if level is None:
        level = os.getenv("CERTSCAN_LOG_LEVEL", "WARNING")
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.WARNING)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.hasHandlers():
        logger.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
