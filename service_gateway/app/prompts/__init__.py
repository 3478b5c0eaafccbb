"""
Prompt handling for the completion gateway.

Normalization of planetary-position text, birth detail extraction, request
classification and reprompt construction.
"""

from .birth_details import BirthDetailExtractor, BirthDetails
from .normalizer import PromptNormalizer, contains_planet_positions
from .reprompt import RepromptBuilder, RequestKind, classify, requested_sections

__all__ = [
    "BirthDetailExtractor",
    "BirthDetails",
    "PromptNormalizer",
    "RepromptBuilder",
    "RequestKind",
    "classify",
    "contains_planet_positions",
    "requested_sections",
]
