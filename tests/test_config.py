import logging

import pytest

from certscan import preproc
from certscan.config import EngineConfig, ExtractorConfig, configure_logging
from certscan.contracts import DecodeError, Document, MediaCategory, UnsupportedMediaError, classify, error


def test_engine_config_from_env(monkeypatch):
    monkeypatch.setenv("CERTSCAN_LANG", "hi+en")
    monkeypatch.setenv("CERTSCAN_PSM", "6")
    monkeypatch.setenv("CERTSCAN_PREPROC", "1")
    monkeypatch.setenv("TESSERACT_CMD", "/opt/tess/bin/tesseract")
    monkeypatch.delenv("TESSDATA_PREFIX", raising=False)
    cfg = EngineConfig.from_env()
    assert cfg.language == "hi+en"
    assert cfg.psm == 6
    assert cfg.preprocess is True
    assert cfg.tesseract_cmd == "/opt/tess/bin/tesseract"
    assert cfg.tessdata_dir is None


def test_bad_env_values_fall_back(monkeypatch):
    monkeypatch.setenv("CERTSCAN_PSM", "sparse")
    monkeypatch.setenv("CERTSCAN_PREPROC", "off")
    monkeypatch.setenv("CERTSCAN_RENDER_SCALE", "big")
    assert EngineConfig.from_env().psm == 11
    assert EngineConfig.from_env().preprocess is False
    assert ExtractorConfig.from_env().render_scale == 2.0


def test_configure_logging_single_handler():
    logger = configure_logging("debug")
    configure_logging("info")
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    assert logger.propagate is False


@pytest.mark.parametrize("mime,expected", [
    ("image/png", MediaCategory.IMAGE),
    ("IMAGE/JPEG", MediaCategory.IMAGE),
    ("application/pdf", MediaCategory.PDF),
    ("text/plain", MediaCategory.UNSUPPORTED),
    ("", MediaCategory.UNSUPPORTED),
])
def test_classify(mime, expected):
    assert classify(mime) is expected
    assert Document(b"", mime).category is expected


def test_error_payloads():
    assert error("DECODE_FAILED") == {"error": "DECODE_FAILED"}
    exc = UnsupportedMediaError("text/plain")
    assert exc.to_dict() == {"error": "UNSUPPORTED_MEDIA", "message": "Unsupported file type: text/plain"}
    assert exc.media_type == "text/plain"


def test_enhance_rejects_garbage():
    with pytest.raises(DecodeError):
        preproc.enhance(b"not an image")


def test_enhance_upscales_small_captures(png_bytes):
    out, artifacts = preproc.enhance(png_bytes)
    assert out.startswith(b"\x89PNG")
    assert artifacts["upscale"] == 2.0
    assert (artifacts["w"], artifacts["h"]) == (240.0, 80.0)
    assert artifacts["skew_deg"] == 0.0
