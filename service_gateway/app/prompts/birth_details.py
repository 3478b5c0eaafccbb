"""
Birth detail extraction from free-form reading prompts.

Strategies run in order and each may fill any subset of the fields; a field
keeps the first non-empty value found. Extraction never raises: unmatched
fields stay empty.
"""

import re
from dataclasses import dataclass, fields, replace
from typing import Callable, List, Optional, Tuple

from shared.logging import get_logger

logger = get_logger("gateway.prompts.birth_details")


@dataclass(frozen=True)
class BirthDetails:
    name: str = ""
    date: str = ""
    time: str = ""
    place: str = ""

    def is_empty(self) -> bool:
        return not any(getattr(self, f.name) for f in fields(self))

    def is_complete(self) -> bool:
        return all(getattr(self, f.name) for f in fields(self))

    def merge(self, other: "BirthDetails") -> "BirthDetails":
        """Fill empty fields from ``other``; populated fields are kept."""
        updates = {
            f.name: getattr(other, f.name)
            for f in fields(self)
            if not getattr(self, f.name) and getattr(other, f.name)
        }
        return replace(self, **updates) if updates else self


Strategy = Callable[[str], Optional[BirthDetails]]

_SECTION = re.compile(
    r"^[ \t]*#{1,6}[ \t]*Birth[ \t]+(?:Details|Data)[ \t]*$(?P<body>.*?)(?=^[ \t]*#{1,6}[ \t]|\Z)",
    re.IGNORECASE | re.MULTILINE | re.DOTALL,
)

_LABELS: List[Tuple[str, str]] = [
    ("name", r"(?:Full[ \t]+)?Name"),
    ("date", r"(?:Birth[ \t]+|Date[ \t]+of[ \t]+Birth|DOB)(?:[ \t]*Date)?|Date"),
    ("time", r"(?:Birth[ \t]+)?Time(?:[ \t]+of[ \t]+Birth)?|TOB"),
    ("place", r"(?:Birth[ \t]+)?(?:Place|Location|City)(?:[ \t]+of[ \t]+Birth)?|POB"),
]

_LABEL_LINES = [
    (field_name, re.compile(
        rf"^[ \t]*(?:[-*•][ \t]*)?(?:\*\*)?(?:{label})(?:\*\*)?[ \t]*:(?:\*\*)?[ \t]*(?P<value>[^\n]+?)[ \t]*$",
        re.IGNORECASE | re.MULTILINE,
    ))
    for field_name, label in _LABELS
]

_NARRATIVE = re.compile(
    r"\bfor[ \t]+(?P<name>[^.\n]+?)[ \t]+born[ \t]+on[ \t]+(?P<date>.+?)"
    r"(?:[ \t]+at[ \t]+(?P<time>.+?))?"
    r"[ \t]+in[ \t]+(?P<place>[^.\n]+?)[ \t]*(?:\.|\n|$)",
    re.IGNORECASE,
)

_ANONYMOUS = {"a person", "someone", "somebody", "an individual", "the person", "a native"}

_TIMEZONE_SUFFIX = re.compile(r"[ \t]*(?:Indian[ \t]+Standard[ \t]+Time[ \t]*)?\(?IST\)?$", re.IGNORECASE)


def _clean(value: Optional[str]) -> str:
    if not value:
        return ""
    value = value.strip().strip("*").strip()
    if value.startswith("[") and value.endswith("]"):
        return ""
    return value.rstrip(",;")


def from_structured_section(text: str) -> Optional[BirthDetails]:
    """Labeled lines inside a ``## Birth Details`` or ``## Birth Data`` section."""
    match = _SECTION.search(text)
    if not match:
        return None
    return from_labeled_lines(match.group("body"))


def from_labeled_lines(text: str) -> Optional[BirthDetails]:
    """``Name:``/``Date:``/``Time:``/``Place:`` lines anywhere in the text."""
    values = {}
    for field_name, pattern in _LABEL_LINES:
        for match in pattern.finditer(text):
            value = _clean(match.group("value"))
            if value:
                values[field_name] = value
                break
    if not values:
        return None
    return BirthDetails(**values)


def from_narrative(text: str) -> Optional[BirthDetails]:
    """"... for NAME born on DATE at TIME in PLACE." phrasing."""
    match = _NARRATIVE.search(text)
    if not match:
        return None
    name = _clean(match.group("name"))
    if name.lower() in _ANONYMOUS:
        name = ""
    time_value = _TIMEZONE_SUFFIX.sub("", _clean(match.group("time")))
    return BirthDetails(
        name=name,
        date=_clean(match.group("date")),
        time=time_value.strip(),
        place=_clean(match.group("place")),
    )


DEFAULT_STRATEGIES: List[Tuple[str, Strategy]] = [
    ("structured_section", from_structured_section),
    ("labeled_lines", from_labeled_lines),
    ("narrative", from_narrative),
]


class BirthDetailExtractor:
    """Runs the named strategies in order and merges what they find."""

    def __init__(self, strategies: Optional[List[Tuple[str, Strategy]]] = None):
        self.strategies = list(strategies or DEFAULT_STRATEGIES)

    def extract(self, text: str) -> BirthDetails:
        details = BirthDetails()
        if not text:
            return details

        for name, strategy in self.strategies:
            try:
                found = strategy(text)
            except (re.error, ValueError, TypeError) as exc:
                logger.warning("Birth detail strategy failed", strategy=name, error=str(exc))
                continue
            if found is None:
                continue
            details = details.merge(found)
            if details.is_complete():
                break

        logger.debug(
            "Birth details extracted",
            name_found=bool(details.name),
            date_found=bool(details.date),
            time_found=bool(details.time),
            place_found=bool(details.place),
        )
        return details
