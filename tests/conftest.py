import sys
from pathlib import Path

import pytest

# Ensure repository root is on sys.path so `import certscan` works when running pytest from anywhere
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from certscan import ocr  # noqa: E402


def tess_data(words):
    """Build a pytesseract `image_to_data` DICT from (text, conf, block, line, left) tuples."""
    keys = ("level", "page_num", "block_num", "par_num", "line_num", "word_num",
            "left", "top", "width", "height", "conf", "text")
    data = {k: [] for k in keys}
    for n, (text, conf, block, line, left) in enumerate(words, 1):
        row = (5, 1, block, 1, line, n, left, line * 20, 40, 12, conf, text)
        for k, v in zip(keys, row):
            data[k].append(v)
    return data


@pytest.fixture
def fake_tesseract(monkeypatch):
    """Stub the pytesseract calls the engine makes; no binary needed."""
    calls = {"version": 0, "data": 0, "config": None, "lang": None}
    state = {"languages": ["eng", "osd"], "data": tess_data([("Hello", 90, 1, 1, 0), ("World", 80, 1, 1, 50)])}

    def get_tesseract_version():
        calls["version"] += 1
        return "5.3.0"

    def get_languages(config=""):
        return list(state["languages"])

    def image_to_data(im, lang=None, config="", output_type=None):
        calls["data"] += 1
        calls["config"] = config
        calls["lang"] = lang
        return state["data"]

    monkeypatch.setattr(ocr.pytesseract, "get_tesseract_version", get_tesseract_version)
    monkeypatch.setattr(ocr.pytesseract, "get_languages", get_languages)
    monkeypatch.setattr(ocr.pytesseract, "image_to_data", image_to_data)
    monkeypatch.setattr(ocr, "_WARNED_LANGS", set())
    return calls, state


@pytest.fixture
def png_bytes():
    from io import BytesIO
    from PIL import Image

    buf = BytesIO()
    Image.new("L", (120, 40), color=255).save(buf, format="PNG")
    return buf.getvalue()
