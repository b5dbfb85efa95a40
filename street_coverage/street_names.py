"""
Street name normalization.

OSM ways of one physical street often carry slightly different names:
"Elm Grove" and "Elm Grove (B2154)", "High St" and "High Street". The
normalized name is the grouping key for logical streets.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from street_coverage.models import SegmentCoverage, Way

_PARENTHESIZED = re.compile(r"\s*\([^)]*\)\s*")
_APOSTROPHES = re.compile(r"['‘’`\"]")
_PUNCTUATION = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")

ABBREVIATIONS = {
    "rd": "road",
    "ave": "avenue",
    "av": "avenue",
    "ln": "lane",
    "dr": "drive",
    "ct": "court",
    "blvd": "boulevard",
    "hwy": "highway",
    "pl": "place",
    "sq": "square",
    "cres": "crescent",
    "tce": "terrace",
    "pde": "parade",
    "cl": "close",
    "mt": "mount",
    "pk": "park",
}

DIRECTIONS = {
    "n": "north",
    "s": "south",
    "e": "east",
    "w": "west",
}

UNNAMED_VALUES = {"", "unnamed", "unnamed road"}


def normalize_street_name(name: str | None) -> str:
    """
    Case-folded grouping key for a street name.

    Removes parenthesized classifications, a leading "The" and
    punctuation, then expands common abbreviations. "St" means "saint" as
    the first word and "street" anywhere else.
    """
    if not name:
        return ""
    text = _PARENTHESIZED.sub(" ", name)
    text = _APOSTROPHES.sub("", text).casefold()
    text = _PUNCTUATION.sub(" ", text)
    tokens = _WHITESPACE.sub(" ", text).strip().split(" ")
    tokens = [t for t in tokens if t]

    if len(tokens) > 1 and tokens[0] == "the":
        tokens = tokens[1:]

    expanded: list[str] = []
    last = len(tokens) - 1
    for index, token in enumerate(tokens):
        if token == "st":
            expanded.append("saint" if index == 0 and last > 0 else "street")
        elif token in ABBREVIATIONS and index > 0:
            expanded.append(ABBREVIATIONS[token])
        elif token in DIRECTIONS and last > 0 and index in (0, last):
            expanded.append(DIRECTIONS[token])
        else:
            expanded.append(token)
    return " ".join(expanded)


def is_unnamed(name: str | None) -> bool:
    return normalize_street_name(name) in UNNAMED_VALUES


def street_key_for(way: Way | SegmentCoverage) -> str:
    """Logical street key; unnamed ways stand alone under their own id."""
    if is_unnamed(way.name):
        return way.osm_id
    return normalize_street_name(way.name)
