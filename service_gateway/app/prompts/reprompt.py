"""
Request classification and the follow-up prompts used when a completion
comes back cut short.
"""

import re
from enum import Enum
from typing import Callable, Dict, List, Optional

from shared.logging import get_logger

from ..domain.models import ChatRequest, Message
from .birth_details import BirthDetailExtractor, BirthDetails
from .normalizer import PLANET_POSITIONS_BLOCK, contains_planet_positions

logger = get_logger("gateway.prompts.reprompt")


class RequestKind(str, Enum):
    GENERAL = "general"
    ASTROLOGY_READING = "astrology_reading"
    CAREER_READING = "career_reading"

    @property
    def expects_long_form(self) -> bool:
        return self is not RequestKind.GENERAL


READING_MARKERS = (
    "astrological reading",
    "birth chart",
    "vedic",
    "kundli",
    "horoscope reading",
)

CAREER_MARKERS = (
    "career reading",
    "career analysis",
    "career guidance",
    "career prediction",
    "career-focused",
    "career focused",
)

DEFAULT_READING_SECTIONS = [
    "Birth Data",
    "Defining Word",
    "Ascendant/Lagna",
    "Personality Overview",
    "Key Strengths",
    "Potential Challenges",
    "Significant Chart Features",
    "Career Insights",
    "Relationship Patterns",
]

DEFAULT_CAREER_SECTIONS = [
    "Career Overview",
    "Suitable Professions",
    "Professional Strengths",
    "Workplace Challenges",
    "Timing and Opportunities",
]

COMPLETENESS_INSTRUCTION = (
    "Include ALL sections of the requested format, each under its own '## ' heading, "
    "and write every section out in full. Do not truncate, summarize or stop early."
)

_SECTION_HEADING = re.compile(r"^[ \t]*##[ \t]+(?P<title>[^\n#]+?)[ \t]*#*[ \t]*$", re.MULTILINE)


def classify(request: ChatRequest) -> RequestKind:
    """Career readings first, then any astrology reading marker, else general."""
    text = request.user_text()
    lowered = text.lower()

    if any(marker in lowered for marker in CAREER_MARKERS):
        return RequestKind.CAREER_READING
    if any(marker in lowered for marker in READING_MARKERS):
        return RequestKind.ASTROLOGY_READING
    if PLANET_POSITIONS_BLOCK.search(text) or contains_planet_positions(text):
        return RequestKind.ASTROLOGY_READING
    return RequestKind.GENERAL


def requested_sections(text: str) -> List[str]:
    """``## Heading`` titles in the order the prompt asks for them."""
    seen = set()
    sections = []
    for match in _SECTION_HEADING.finditer(text or ""):
        title = match.group("title").strip()
        key = title.lower()
        if title and key not in seen:
            seen.add(key)
            sections.append(title)
    return sections


def _section_list(sections: List[str]) -> str:
    return "\n".join(f"## {title}" for title in sections)


def _subject(details: BirthDetails) -> str:
    subject = details.name or "a person"
    parts = [f"{subject} born on {details.date}"]
    if details.time:
        parts.append(f"at {details.time}")
    if details.place:
        parts.append(f"in {details.place}")
    return " ".join(parts)


def _with_instruction(request: ChatRequest, messages: List[Message]) -> ChatRequest:
    return ChatRequest(
        model=request.model,
        messages=[Message(role="system", content=COMPLETENESS_INSTRUCTION)] + messages,
        temperature=request.temperature,
        max_tokens=None,
    )


def general_reprompt(request: ChatRequest, details: BirthDetails, sections: List[str]) -> ChatRequest:
    return _with_instruction(request, list(request.messages))


def reading_reprompt(request: ChatRequest, details: BirthDetails, sections: List[str]) -> ChatRequest:
    if not details.date:
        return general_reprompt(request, details, sections)
    prompt = (
        f"Generate a complete Vedic astrological reading for {_subject(details)}.\n\n"
        "Respond using exactly these sections, in this order, each written out in full:\n\n"
        f"{_section_list(sections or DEFAULT_READING_SECTIONS)}"
    )
    return _with_instruction(request, [Message(role="user", content=prompt)])


def career_reprompt(request: ChatRequest, details: BirthDetails, sections: List[str]) -> ChatRequest:
    if not details.date:
        return general_reprompt(request, details, sections)
    prompt = (
        f"Generate a complete career-focused Vedic astrology analysis for {_subject(details)}.\n\n"
        "Respond using exactly these sections, in this order, each written out in full:\n\n"
        f"{_section_list(sections or DEFAULT_CAREER_SECTIONS)}"
    )
    return _with_instruction(request, [Message(role="user", content=prompt)])


RepromptStrategy = Callable[[ChatRequest, BirthDetails, List[str]], ChatRequest]

REPROMPT_STRATEGIES: Dict[RequestKind, RepromptStrategy] = {
    RequestKind.GENERAL: general_reprompt,
    RequestKind.ASTROLOGY_READING: reading_reprompt,
    RequestKind.CAREER_READING: career_reprompt,
}


class RepromptBuilder:
    """Builds the single follow-up request sent after a truncated completion."""

    def __init__(self,
                 extractor: Optional[BirthDetailExtractor] = None,
                 strategies: Optional[Dict[RequestKind, RepromptStrategy]] = None):
        self.extractor = extractor or BirthDetailExtractor()
        self.strategies = dict(REPROMPT_STRATEGIES)
        if strategies:
            self.strategies.update(strategies)

    def build(self, kind: RequestKind, request: ChatRequest) -> ChatRequest:
        text = request.user_text()
        details = self.extractor.extract(text) if kind.expects_long_form else BirthDetails()
        sections = requested_sections(text)
        strategy = self.strategies.get(kind, general_reprompt)
        logger.info(
            "Building reprompt",
            request_kind=kind.value,
            strategy=strategy.__name__,
            sections=len(sections),
            birth_details_found=not details.is_empty(),
        )
        return strategy(request, details, sections)
