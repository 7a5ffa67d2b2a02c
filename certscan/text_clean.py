import re
import unicodedata
from typing import Optional

from .config import CleanOptions

# Soft hyphen dropped; ligatures, curly quotes and dashes folded to ASCII
_CANON = str.maketrans({
    "\u00ad": None,
    "\ufb00": "ff",
    "\ufb01": "fi",
    "\ufb02": "fl",
    "\ufb03": "ffi",
    "\ufb04": "ffl",
    "\u2018": "'",
    "\u2019": "'",
    "\u201c": '"',
    "\u201d": '"',
    "\u2013": "-",
    "\u2014": "-",
})

_RE_WS = re.compile(r"[^\S\n]+")
_RE_ISOLATED_STROKE = re.compile(r"(?<!\S)[|\\/](?!\S)")
# A word made only of letters and zeros, with at least one letter: "C0LLEGE", "0xford".
_RE_ZERO_IN_WORD = re.compile(r"\b(?=[A-Za-z0]*[A-Za-z])[A-Za-z0]*0[A-Za-z0]*\b")
_RE_LONE_I = re.compile(r"(?<!\S)I(?!\S)")
_RE_BLANK_LINES = re.compile(r"\n{2,}")


def _canonicalize(s: str) -> str:
    s = s.replace("\r\n", "\n").replace("\r", "\n")
    return unicodedata.normalize("NFC", s.translate(_CANON))


def _zero_to_letter(m: re.Match) -> str:
    word = m.group(0)
    letters = [c for c in word if c != "0"]
    o = "o" if all(c.islower() for c in letters) else "O"
    return word.replace("0", o)


def clean(raw_text: Optional[str], options: Optional[CleanOptions] = None) -> str:
    """Remove common recognition artifacts from OCR text.

    Steps, in order:
    - (optional) NFC, soft hyphen removal, ligatures, curly quotes and dashes to ASCII
    - collapse runs of spaces/tabs to one space and strip every line; newlines
      are kept so page markers and paragraph breaks survive
    - whitespace-delimited `|`, `\\`, `/` become `I` (a misread vertical stroke)
    - `0` becomes `O` inside words that are otherwise purely alphabetic,
      so genuine numbers, dates and identifiers are untouched
    - a whitespace-delimited lone `I` becomes `1`
    - blank lines are dropped, the text is re-composed (NFC) and trimmed

    The three substitutions are heuristics and can be switched off through
    `CleanOptions`. Deterministic and idempotent; never raises.
    """
    if not raw_text:
        return ""
    opts = options or CleanOptions()
    s = _canonicalize(raw_text) if opts.canonicalize else raw_text
    s = "\n".join(_RE_WS.sub(" ", ln).strip() for ln in s.split("\n"))
    if opts.bars_to_i:
        s = _RE_ISOLATED_STROKE.sub("I", s)
    if opts.zero_to_o:
        s = _RE_ZERO_IN_WORD.sub(_zero_to_letter, s)
    if opts.lone_i_to_one:
        s = _RE_LONE_I.sub("1", s)
    s = _RE_BLANK_LINES.sub("\n", s)
    if opts.canonicalize:
        # substitutions can leave a letter next to a combining mark
        s = unicodedata.normalize("NFC", s)
    return s.strip()
