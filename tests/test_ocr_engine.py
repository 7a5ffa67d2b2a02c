import threading
import time
import warnings

import pytest

from certscan import ocr
from certscan.config import EngineConfig
from certscan.contracts import BBox, DecodeError, EngineInitError, RecognitionError
from certscan.ocr import EngineState, RecognitionEngine, resolve_tess_lang

from conftest import tess_data


def test_resolve_lang_mapping(monkeypatch):
    monkeypatch.setattr(ocr, "_WARNED_LANGS", set())
    assert resolve_tess_lang("en", ["eng"]) == "eng"
    assert resolve_tess_lang("hi+en", ["hin", "eng"]) == "hin+eng"
    assert resolve_tess_lang("eng", ["eng", "osd"]) == "eng"


def test_resolve_lang_missing_warns(monkeypatch):
    monkeypatch.setattr(ocr, "_WARNED_LANGS", set())
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        code = resolve_tess_lang("hi", ["eng"])
    assert code == "eng"
    assert any("falling back" in str(w.message).lower() for w in caught)


def test_resolve_lang_without_english_fails(monkeypatch):
    monkeypatch.setattr(ocr, "_WARNED_LANGS", set())
    with pytest.raises(EngineInitError):
        resolve_tess_lang("hi", ["osd"])


def test_initialize_is_idempotent(fake_tesseract):
    calls, _ = fake_tesseract
    with RecognitionEngine() as engine:
        assert engine.state is EngineState.UNINITIALIZED
        engine.initialize()
        engine.initialize()
        assert engine.state is EngineState.READY
        assert engine.version == "5.3.0"
        assert engine.language_code == "eng"
        assert calls["version"] == 1
    assert engine.state is EngineState.TERMINATED


def test_init_failure_leaves_engine_retryable(fake_tesseract):
    calls, state = fake_tesseract
    state["languages"] = ["osd"]
    engine = RecognitionEngine()
    with pytest.raises(EngineInitError):
        engine.initialize()
    assert engine.state is EngineState.UNINITIALIZED

    state["languages"] = ["eng"]
    engine.initialize()
    assert engine.state is EngineState.READY
    engine.terminate()


def test_missing_binary_is_engine_init_error(fake_tesseract, monkeypatch):
    def boom():
        raise ocr.pytesseract.TesseractNotFoundError()

    monkeypatch.setattr(ocr.pytesseract, "get_tesseract_version", boom)
    engine = RecognitionEngine()
    with pytest.raises(EngineInitError) as ei:
        engine.initialize()
    assert ei.value.code == "ENGINE_INIT_FAILED"
    assert engine.state is EngineState.UNINITIALIZED


def test_concurrent_initialize_converges(fake_tesseract, monkeypatch):
    calls, _ = fake_tesseract

    def slow_version():
        calls["version"] += 1
        time.sleep(0.05)
        return "5.3.0"

    monkeypatch.setattr(ocr.pytesseract, "get_tesseract_version", slow_version)
    engine = RecognitionEngine()
    threads = [threading.Thread(target=engine.initialize) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert calls["version"] == 1
    assert engine.state is EngineState.READY
    engine.terminate()


def test_recognize_assembles_words_and_lines(fake_tesseract, png_bytes):
    calls, _ = fake_tesseract
    with RecognitionEngine() as engine:
        res = engine.recognize(png_bytes)
    assert res.text == "Hello World"
    assert res.confidence == pytest.approx(85.0)
    assert [w.text for w in res.words] == ["Hello", "World"]
    assert len(res.lines) == 1
    assert res.lines[0].bbox == BBox(0, 20, 90, 32)
    assert all(w.page is None for w in res.words)
    assert res.meta["engine"] == "tesseract"
    assert res.meta["params"]["psm"] == 11
    assert "--psm 11" in calls["config"]
    assert "preserve_interword_spaces=1" in calls["config"]
    assert "tessedit_char_whitelist=" in calls["config"]


def test_blocks_are_separated_and_unscored_words_kept(fake_tesseract, png_bytes):
    _, state = fake_tesseract
    state["data"] = tess_data([
        ("Hello", 90, 1, 1, 0),
        ("~", -1, 1, 1, 50),
        ("There", 70, 2, 1, 0),
    ])
    with RecognitionEngine() as engine:
        res = engine.recognize(png_bytes)
    assert res.text == "Hello ~\n\nThere"
    assert res.confidence == pytest.approx(80.0)
    assert res.lines[0].confidence == pytest.approx(90.0)


def test_empty_page_gives_zero_confidence(fake_tesseract, png_bytes):
    _, state = fake_tesseract
    state["data"] = tess_data([])
    with RecognitionEngine() as engine:
        res = engine.recognize(png_bytes)
    assert res.text == ""
    assert res.confidence == 0.0
    assert res.words == () and res.lines == ()


def test_progress_is_monotonic_and_on_caller_thread(fake_tesseract, png_bytes):
    seen = []
    caller = threading.get_ident()

    def on_progress(p):
        seen.append((p, threading.get_ident()))

    with RecognitionEngine() as engine:
        engine.recognize(png_bytes, on_progress)
    values = [p for p, _ in seen]
    assert values == sorted(values)
    assert values[0] == 0 and values[-1] == 100
    assert all(0 <= p <= 100 for p in values)
    assert all(tid == caller for _, tid in seen)


def test_undecodable_image_is_decode_error(fake_tesseract):
    with RecognitionEngine() as engine:
        with pytest.raises(DecodeError):
            engine.recognize(b"definitely not an image")


def test_engine_failure_is_recognition_error(fake_tesseract, png_bytes, monkeypatch):
    def broken(*a, **k):
        raise RuntimeError("tesseract crashed")

    monkeypatch.setattr(ocr.pytesseract, "image_to_data", broken)
    with RecognitionEngine() as engine:
        with pytest.raises(RecognitionError) as ei:
            engine.recognize(png_bytes)
    assert isinstance(ei.value.__cause__, RuntimeError)


def test_terminate_before_init_is_noop(fake_tesseract):
    engine = RecognitionEngine()
    engine.terminate()
    assert engine.state is EngineState.UNINITIALIZED


def test_terminate_then_recognize_reinitializes(fake_tesseract, png_bytes):
    calls, _ = fake_tesseract
    engine = RecognitionEngine()
    engine.recognize(png_bytes)
    engine.terminate()
    assert engine.state is EngineState.TERMINATED
    res = engine.recognize(png_bytes)
    assert res.text == "Hello World"
    assert engine.state is EngineState.READY
    assert calls["version"] == 2
    engine.terminate()


def test_recognitions_are_serialized(fake_tesseract, png_bytes, monkeypatch):
    active = {"now": 0, "max": 0}
    lock = threading.Lock()
    real = ocr.pytesseract.image_to_data

    def slow(*a, **k):
        with lock:
            active["now"] += 1
            active["max"] = max(active["max"], active["now"])
        time.sleep(0.03)
        with lock:
            active["now"] -= 1
        return real(*a, **k)

    monkeypatch.setattr(ocr.pytesseract, "image_to_data", slow)
    with RecognitionEngine() as engine:
        threads = [threading.Thread(target=engine.recognize, args=(png_bytes,)) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
    assert active["max"] == 1


def test_preprocess_adds_artifacts(fake_tesseract, png_bytes):
    with RecognitionEngine(EngineConfig(preprocess=True)) as engine:
        res = engine.recognize(png_bytes)
    assert res.meta["params"]["preprocess"] is True
    assert set(res.meta["preproc_artifacts"]) >= {"skew_deg", "upscale", "w", "h", "sharpness"}
