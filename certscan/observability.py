"""Per-page and per-run OCR rollups for logs and `ExtractionResult.meta`.

Inputs are the `meta` dicts produced by `RecognitionEngine.recognize`;
unknown or partial dicts are tolerated so fake engines can be summarized too.
"""
from typing import Any, Dict, List, Optional


def summarize_page_meta(meta: Dict[str, Any], page: Optional[int] = None) -> Dict[str, Any]:
    """Compact view of one recognition: engine, timing, psm/lang, image size."""
    if not isinstance(meta, dict):
        return {}
    params = meta.get("params") if isinstance(meta.get("params"), dict) else {}
    size = meta.get("size") if isinstance(meta.get("size"), dict) else {}
    out: Dict[str, Any] = {
        "engine": meta.get("engine"),
        "t_ocr_ms": meta.get("t_ms"),
        "psm": params.get("psm"),
        "lang": params.get("lang"),
        "char_conf_mean": meta.get("char_conf_mean"),
    }
    if size:
        out["px"] = f"{size.get('w')}x{size.get('h')}"
    skew = (meta.get("preproc_artifacts") or {}).get("skew_deg")
    if skew is not None:
        out["skew_deg"] = round(float(skew), 2)
    if page is not None:
        out["page"] = page
    return out


def summarize_run(metas: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Totals over a request: page count, engines used, OCR time and the slowest page."""
    engines: Dict[str, int] = {}
    timed: List[tuple] = []
    for n, m in enumerate(metas, 1):
        if not isinstance(m, dict):
            continue
        if m.get("engine"):
            engines[m["engine"]] = engines.get(m["engine"], 0) + 1
        if isinstance(m.get("t_ms"), (int, float)):
            timed.append((float(m["t_ms"]), n))

    run: Dict[str, Any] = {
        "pages": len(metas),
        "engines": engines,
        "t_ocr_ms_total": None,
        "slowest_page": None,
    }
    if timed:
        run["t_ocr_ms_total"] = sum(t for t, _ in timed)
        run["slowest_page"] = max(timed)[1]
    return run
