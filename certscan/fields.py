"""
Certificate field mining.

Rule-based extraction of names, institutions, dates, qualifications,
certificate titles, e-mails and identifiers from normalized OCR text.

Public entry: mine(text: str) -> CertificateInfo

Every category is a list of compiled rules; each rule captures one group,
the capture is tidied, length-filtered and de-duplicated (exact match,
first occurrence wins). Keywords are matched case-insensitively; where a
rule captures a proper noun the capture itself must be capitalised, which
keeps sentence fragments out of the results.
"""
from __future__ import annotations

import re
from typing import Dict, List, NamedTuple, Optional, Tuple

from .contracts import CertificateInfo

_KINDS = r"university|college|institute|school|academy"
_LEVELS = r"bachelor|master|doctor|phd|mba|bsc|msc|ba|ma|diploma|certificate"
_QUALIFICATIONS = r"degree|diploma|certificate|qualification"
_MONTHS = (
    r"january|february|march|april|may|june|july|august|september|october|november|december"
)

# Capitalised words on one line, allowing lower-case joiners: "Science and Technology"
_CAP = r"[A-Z][A-Za-z&.'-]*"
_JOIN = r"(?:(?:and|of|in|for|the|&)[ \t]+)?"
_CAP_RUN = _CAP + r"(?:[ \t]+" + _JOIN + _CAP + r")*"
# Same, but the first word may be lower case ("certificate of completion")
_FIELD = r"[A-Za-z][A-Za-z&.'-]*(?:[ \t]+" + _JOIN + _CAP + r")*"
# Up to four capitalised words leading into a keyword: "Postgraduate Diploma"
_LEAD = r"(?:" + _CAP + r"[ \t]+" + _JOIN + r"){1,4}"

# Skipped in front of a name: "Dr. Jane Doe", "Mrs Jane Doe"
_HONORIFIC = r"(?:(?i:mrs|mr|ms|dr|prof)\.?[ \t]+)?"

_DETERMINERS = {"a", "an", "the", "this", "that", "said", "such"}
_TRAILING = " \t.,;:-'"


class _Rule(NamedTuple):
    pattern: "re.Pattern[str]"
    min_len: int = 1
    min_words: int = 1
    drop_determiner: bool = False


_RULES: Dict[str, Tuple[_Rule, ...]] = {
    "names": (
        _Rule(
            re.compile(
                r"(?:this is to certify that|hereby certify that|certify that|awarded to|presented to|granted to)"
                r"\s+" + _HONORIFIC + r"((?-i:[A-Z])[a-zA-Z\s.'-]+?)"
                r"(?=\s+(?:has|is|was|for|on|in|who|with)\b|\s*[,;:()\n]|(?-i:(?<=[a-z]{2}))\.(?:\s|$)|\s*$)",
                re.IGNORECASE,
            ),
            min_len=3,
        ),
        _Rule(
            re.compile(r"\b(?i:name|student|recipient)\s*:[ \t]*" + _HONORIFIC + r"([A-Z][a-zA-Z.'-]*(?:[ \t]+[A-Z][a-zA-Z.'-]*)*)"),
            min_len=3,
        ),
    ),
    "institutions": (
        _Rule(re.compile(r"\b(?i:" + _KINDS + r")[ \t]+(?i:of)[ \t]+(" + _CAP_RUN + r")"), min_len=6),
        _Rule(
            re.compile(r"\b(" + _LEAD + r"(?i:" + _KINDS + r"))\b"),
            min_len=6, min_words=2, drop_determiner=True,
        ),
    ),
    "dates": (
        _Rule(re.compile(r"\b(\d{1,2}[/.\-]\d{1,2}[/.\-]\d{4})\b")),
        _Rule(re.compile(r"\b(\d{4}[/.\-]\d{1,2}[/.\-]\d{1,2})\b")),
        _Rule(re.compile(r"\b((?:" + _MONTHS + r")\s+\d{1,2}(?:st|nd|rd|th)?,?\s+\d{4})\b", re.IGNORECASE)),
        _Rule(re.compile(r"\b(\d{1,2}(?:st|nd|rd|th)?\s+(?:of\s+)?(?:" + _MONTHS + r"),?\s+\d{4})\b", re.IGNORECASE)),
    ),
    "degrees": (
        _Rule(
            re.compile(
                r"\b((?i:" + _LEVELS + r")(?:'?s)?"
                r"(?:[ \t]+(?i:of|in)[ \t]+" + _FIELD + r"|[ \t]+(?!(?i:no|number|id|of|in)\b)" + _CAP_RUN + r"))"
            ),
            min_len=4,
        ),
        _Rule(
            re.compile(r"\b(" + _LEAD + r"(?i:" + _QUALIFICATIONS + r"))\b"),
            min_len=4, min_words=2, drop_determiner=True,
        ),
    ),
    "certificates": (
        _Rule(re.compile(r"\b((?i:certificate|certification)[ \t]+(?i:of|in)[ \t]+" + _FIELD + r")"), min_len=4),
        _Rule(
            re.compile(r"\b(" + _LEAD + r"(?i:certificate|certification))\b"),
            min_len=4, min_words=2, drop_determiner=True,
        ),
    ),
    "emails": (
        _Rule(re.compile(r"\b([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})\b")),
    ),
    "ids": (
        _Rule(
            re.compile(
                r"\b(?:id|serial|number|ref|certificate\s+no\.?)\s*(?:no\.?\s*)?[:#]\s*([A-Z0-9][A-Z0-9-]*)",
                re.IGNORECASE,
            ),
            min_len=6,
        ),
        # Bare upper-case tokens need at least one digit; otherwise every
        # shouted heading ("CERTIFICATE") would count as an identifier.
        _Rule(re.compile(r"\b((?=[A-Z0-9]*\d)[A-Z0-9]{6,})\b"), min_len=6),
    ),
}


def _tidy(value: str, drop_determiner: bool) -> str:
    words = value.split()
    if drop_determiner:
        while words and words[0].lower() in _DETERMINERS:
            words = words[1:]
    return " ".join(words).strip(_TRAILING)


def _apply(rules: Tuple[_Rule, ...], text: str) -> Tuple[str, ...]:
    found: List[str] = []
    for rule in rules:
        for m in rule.pattern.finditer(text):
            value = _tidy(m.group(1) or "", rule.drop_determiner)
            if len(value) >= rule.min_len and len(value.split()) >= rule.min_words:
                found.append(value)
    return tuple(dict.fromkeys(found))


def mine(text: Optional[str]) -> CertificateInfo:
    if not text:
        return CertificateInfo()
    return CertificateInfo(**{category: _apply(rules, text) for category, rules in _RULES.items()})
