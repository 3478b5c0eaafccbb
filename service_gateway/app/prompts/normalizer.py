"""
Prompt normalization for prompts that embed rendered planetary positions.

Stray degree tokens ("at 23.45°", "(12.3°)") are tokenized poorly by the
completion models and correlate with cut-off answers, so they are stripped
before the prompt goes upstream. Sign names, retrograde flags and the section
layout of the prompt are kept.
"""

import re
from typing import Callable, List, Tuple

PLANETS = (
    "Sun", "Moon", "Mars", "Mercury", "Jupiter", "Venus", "Saturn",
    "Rahu", "Ketu", "Uranus", "Neptune", "Pluto", "Chiron",
    "Ascendant", "Lagna", "Midheaven", "North Node", "South Node",
)

SIGNS = (
    "Aries", "Taurus", "Gemini", "Cancer", "Leo", "Virgo",
    "Libra", "Scorpio", "Sagittarius", "Capricorn", "Aquarius", "Pisces",
)

_PLANET_ALT = "|".join(p.replace(" ", r"[ \t]+") for p in PLANETS)
_SIGN_ALT = "|".join(SIGNS)

PLANET_SIGN_PATTERN = re.compile(
    rf"\b(?:{_PLANET_ALT})\b[ \t]*(?:\((?:R|Rx|Retrograde)\)[ \t]*)?[:\-–][ \t]*(?:in[ \t]+)?(?:{_SIGN_ALT})\b"
    rf"|\b(?:{_PLANET_ALT})[ \t]+(?:is[ \t]+)?in[ \t]+(?:{_SIGN_ALT})\b",
    re.IGNORECASE,
)

PLANET_POSITIONS_BLOCK = re.compile(r"planet(?:ary)?[ \t]+positions?[ \t]*:", re.IGNORECASE)

_DEG_UNIT = r"(?:°|º|˚|[ \t]?deg(?:rees?)?\b)"
_ARC = r"(?:[ \t]*\d{1,2}['′](?:[ \t]*\d{1,2}(?:\.\d+)?[\"″])?)?"
DEGREE = rf"\d{{1,3}}(?:\.\d+)?{_DEG_UNIT}{_ARC}"
_NOT_CLOCK = r"(?![ \t]*(?:am|pm|a\.m\.|p\.m\.|hrs|hours|ist|utc|gmt)\b)(?![:.]\d)"
_AT_DEGREE = rf"\bat[ \t]+{DEGREE}"
_RETRO = r"(?:\bretrograde\b|\bretro\b|\brx\b|\(R\))"

_PARENTHETICAL_DEGREE = re.compile(
    rf"[ \t]*\((?P<body>[^()\n]*?(?:{DEGREE}|\d{{1,3}}\.\d+)[^()\n]*?)\)",
    re.IGNORECASE,
)
_RETRO_THEN_DEGREE = re.compile(
    rf"[ \t]*{_RETRO}[ \t]*,?[ \t]*(?:at[ \t]+)?{DEGREE}",
    re.IGNORECASE,
)
_DEGREE_THEN_RETRO = re.compile(
    rf"[ \t]*(?:at[ \t]+)?{DEGREE}[ \t]*,?[ \t]*{_RETRO}",
    re.IGNORECASE,
)
_AT_DEGREE_PATTERN = re.compile(rf"[ \t]*{_AT_DEGREE}", re.IGNORECASE)
# unitless "at 12.34" only counts as a degree right after a planet-sign pair
_SIGN_AT_DECIMAL = re.compile(
    rf"(?P<lead>{PLANET_SIGN_PATTERN.pattern})[ \t]+at[ \t]+\d{{1,3}}\.\d+\b{_NOT_CLOCK}",
    re.IGNORECASE,
)
_BARE_DEGREE = re.compile(rf"(?:,[ \t]*)?[ \t]*(?<![\w.]){DEGREE}", re.IGNORECASE)
_RETRO_TEST = re.compile(_RETRO, re.IGNORECASE)

_ESCAPES: List[Tuple[str, str]] = [
    ("\\r\\n", "\n"),
    ("\\n", "\n"),
    ("\\t", "\t"),
]


def unescape_newlines(text: str) -> str:
    """Turn literal ``\\n`` sequences into real line breaks."""
    for escaped, real in _ESCAPES:
        text = text.replace(escaped, real)
    return text


def contains_planet_positions(text: str) -> bool:
    """True when ``text`` carries rendered planet/sign positions."""
    if not text:
        return False
    candidate = unescape_newlines(text)
    return bool(PLANET_SIGN_PATTERN.search(candidate) or PLANET_POSITIONS_BLOCK.search(candidate))


def _parenthetical(match: "re.Match[str]") -> str:
    return " (Retrograde)" if _RETRO_TEST.search(match.group("body")) else ""


_STEPS: List[Tuple[re.Pattern, Callable]] = [
    (_PARENTHETICAL_DEGREE, _parenthetical),
    (_RETRO_THEN_DEGREE, lambda m: " (Retrograde)"),
    (_DEGREE_THEN_RETRO, lambda m: " (Retrograde)"),
    (_AT_DEGREE_PATTERN, lambda m: ""),
    (_SIGN_AT_DECIMAL, lambda m: m.group("lead")),
    (_BARE_DEGREE, lambda m: ""),
]


def _strip_once(text: str) -> str:
    for pattern, replacement in _STEPS:
        text = pattern.sub(replacement, text)
    return text


def strip_degrees(text: str) -> str:
    """Remove decimal-degree annotations, keeping retrograde as ``(Retrograde)``.

    Passes repeat until the text stops changing. Every step that matches
    removes digits, so the loop terminates.
    """
    while True:
        stripped = _strip_once(text)
        if stripped == text:
            return text
        text = stripped


class PromptNormalizer:
    """Cleans caller prompts that embed planetary-position text."""

    def normalize(self, raw_prompt: str) -> str:
        if not contains_planet_positions(raw_prompt):
            return raw_prompt
        return strip_degrees(unescape_newlines(raw_prompt))


def normalize(raw_prompt: str) -> str:
    return PromptNormalizer().normalize(raw_prompt)
