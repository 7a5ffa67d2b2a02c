from __future__ import annotations

import argparse
import json
import mimetypes
import sys
from dataclasses import replace
from pathlib import Path

from .config import EngineConfig, ExtractorConfig, configure_logging
from .contracts import Document, ExtractionError
from .extractor import DocumentExtractor
from .ocr import RecognitionEngine


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="certscan",
        description="Extract text and certificate fields from an image or PDF; print the result as JSON.",
    )
    p.add_argument("file", type=Path, help="Image or PDF to read.")
    p.add_argument(
        "--mime",
        default=None,
        help="Declared media type (default: guessed from the file name).",
    )
    p.add_argument(
        "--scale",
        type=float,
        default=None,
        help="PDF page upscaling factor (default: CERTSCAN_RENDER_SCALE or 2.0).",
    )
    p.add_argument(
        "--lang",
        default=None,
        help="Language hint or tessdata code, e.g. 'en' or 'eng+hin' (default: CERTSCAN_LANG or eng).",
    )
    p.add_argument(
        "--psm",
        type=int,
        default=None,
        help="Tesseract page segmentation mode (default: CERTSCAN_PSM or 11).",
    )
    p.add_argument(
        "--preprocess",
        action="store_true",
        help="Run OpenCV enhancement (background flattening, CLAHE, deskew, upscaling) before recognition.",
    )
    p.add_argument(
        "--no-progress",
        action="store_true",
        help="Do not print progress percentages to stderr.",
    )
    p.add_argument(
        "--log-level",
        default=None,
        help="Log level for the certscan logger (default: CERTSCAN_LOG_LEVEL or WARNING).",
    )
    return p


def _progress(value: int) -> None:
    print(f"progress: {value}%", file=sys.stderr, flush=True)


def main(argv: list[str] | None = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if not args.file.is_file():
        parser.error(f"no such file: {args.file}")
    mime = args.mime or mimetypes.guess_type(args.file.name)[0] or "application/octet-stream"
    document = Document(content=args.file.read_bytes(), mime=mime, name=args.file.name)

    engine_cfg = EngineConfig.from_env()
    if args.lang:
        engine_cfg = replace(engine_cfg, language=args.lang)
    if args.psm is not None:
        engine_cfg = replace(engine_cfg, psm=args.psm)
    if args.preprocess:
        engine_cfg = replace(engine_cfg, preprocess=True)
    extractor_cfg = ExtractorConfig.from_env()
    if args.scale is not None:
        if args.scale <= 0:
            parser.error("--scale must be positive")
        extractor_cfg = replace(extractor_cfg, render_scale=args.scale)

    with DocumentExtractor(engine=RecognitionEngine(engine_cfg), config=extractor_cfg) as extractor:
        try:
            result = extractor.extract_text(document, on_progress=None if args.no_progress else _progress)
        except ExtractionError as exc:
            print(json.dumps(exc.to_dict()), file=sys.stdout)
            return 2

    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
