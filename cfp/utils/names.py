"""Business-name normalization helpers shared by the analyzer and the notability gate."""

from __future__ import annotations

import re
from typing import List

LEGAL_SUFFIXES = (
    "inc",
    "llc",
    "corp",
    "corporation",
    "company",
    "co",
    "ltd",
    "group",
    "services",
    "solutions",
)
LEADING_ARTICLES = ("the", "a", "an")

_SUFFIX_RE = re.compile(
    r"[\s,]+(?:" + "|".join(LEGAL_SUFFIXES) + r")\.?$",
    re.IGNORECASE,
)
_PREFIX_RE = re.compile(r"^(?:" + "|".join(LEADING_ARTICLES) + r")\s+", re.IGNORECASE)
_TRAILING_ID_RE = re.compile(r"\s+\d{6,}$")


def clean_business_name(name: str) -> str:
    """Trim whitespace and drop a trailing numeric id (``"Acme 1699999999"``)."""
    return _TRAILING_ID_RE.sub("", name.strip())


def strip_legal_suffix(name: str) -> str:
    """``"Acme Plumbing, LLC"`` -> ``"Acme Plumbing"``; repeats for stacked suffixes."""
    previous = None
    stripped = name.strip()
    while stripped != previous:
        previous = stripped
        stripped = _SUFFIX_RE.sub("", stripped).strip()
    return stripped or name.strip()


def acronym(name: str) -> str:
    words = [w for w in re.split(r"[\s&\-]+", name) if w and w.lower() not in LEADING_ARTICLES]
    return "".join(w[0] for w in words).upper() if len(words) >= 2 else ""


def name_variations(name: str) -> List[str]:
    """
    Alternative spellings of a business name, excluding the name itself.

    Covers legal-suffix removal, leading articles, ``&``/``and`` and
    ``centre``/``center`` swaps, and an acronym for multi-word names.
    """
    base = clean_business_name(name)
    candidates = []

    no_suffix = strip_legal_suffix(base)
    candidates.append(no_suffix)
    candidates.append(_PREFIX_RE.sub("", no_suffix))

    for variant in list(candidates) + [base]:
        if "&" in variant:
            candidates.append(re.sub(r"\s*&\s*", " and ", variant))
        if re.search(r"\band\b", variant, re.IGNORECASE):
            candidates.append(re.sub(r"\s+and\s+", " & ", variant, flags=re.IGNORECASE))
        if re.search(r"centre", variant, re.IGNORECASE):
            candidates.append(re.sub(r"centre", "center", variant, flags=re.IGNORECASE))
        elif re.search(r"center", variant, re.IGNORECASE):
            candidates.append(re.sub(r"center", "centre", variant, flags=re.IGNORECASE))

    short = acronym(no_suffix)
    if len(short) >= 3:
        candidates.append(short)

    seen = {base.lower()}
    variations = []
    for candidate in candidates:
        candidate = re.sub(r"\s+", " ", candidate).strip()
        if candidate and candidate.lower() not in seen:
            seen.add(candidate.lower())
            variations.append(candidate)
    return variations
