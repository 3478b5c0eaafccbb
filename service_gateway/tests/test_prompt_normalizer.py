"""
Unit tests for prompt normalization.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_gateway.app.prompts.birth_details import BirthDetailExtractor
from service_gateway.app.prompts.normalizer import PromptNormalizer, contains_planet_positions


class TestPromptNormalizer:
    """Test cases for PromptNormalizer."""

    @pytest.fixture
    def normalizer(self):
        return PromptNormalizer()

    def test_strips_degrees_and_unescapes_newlines(self, normalizer):
        """Test the canonical planet-position prompt is cleaned."""
        raw = "Sun: Gemini at 12.34°\\nMoon: Cancer at 5.2°"

        assert normalizer.normalize(raw) == "Sun: Gemini\nMoon: Cancer"

    def test_normalize_is_idempotent(self, normalizer):
        """Test normalizing twice equals normalizing once."""
        raw = (
            "## Planet Positions\\n"
            "Sun: Gemini at 12.34°\\n"
            "Mars: Aries (Retrograde, 12.3°)\\n"
            "Venus: Taurus 8.75°\\n"
            "## Key Strengths"
        )
        once = normalizer.normalize(raw)

        assert normalizer.normalize(once) == once

    def test_parenthetical_degree_removed(self, normalizer):
        """Test a parenthetical holding only a degree disappears."""
        assert normalizer.normalize("Jupiter: Pisces (15.5°)") == "Jupiter: Pisces"

    def test_retrograde_kept_when_degree_removed(self, normalizer):
        """Test retrograde markers survive as a standalone (Retrograde)."""
        assert normalizer.normalize("Mars: Aries (Retrograde, 12.3°)") == "Mars: Aries (Retrograde)"
        assert normalizer.normalize("Saturn: Capricorn Retrograde 22.1°") == "Saturn: Capricorn (Retrograde)"
        assert normalizer.normalize("Mars: Leo at 10.5° Rx") == "Mars: Leo (Retrograde)"

    def test_bare_degree_removed_without_double_spaces(self, normalizer):
        """Test bare degree tokens are removed along with their leading space."""
        assert normalizer.normalize("Venus: Taurus 8.75°") == "Venus: Taurus"
        assert normalizer.normalize("Sun in Leo at 12.5°, strong") == "Sun in Leo, strong"

    def test_section_structure_and_signs_intact(self, normalizer):
        """Test headers and sign names are untouched."""
        raw = "## Planet Positions\\nSun: Leo at 12.5°\\n## Key Strengths\\nLeadership"

        assert normalizer.normalize(raw) == "## Planet Positions\nSun: Leo\n## Key Strengths\nLeadership"

    def test_clock_times_survive(self, normalizer):
        """Test birth times written with a dot are not mistaken for degrees."""
        raw = "Born at 10.30 am. Moon: Cancer at 5.2°"

        assert normalizer.normalize(raw) == "Born at 10.30 am. Moon: Cancer"

    def test_dotted_24_hour_birth_time_kept(self, normalizer):
        """Test "at 10.30" in the birth sentence is a time, not a degree."""
        raw = (
            "Reading for Priya born on 1990-05-15 at 10.30 in Mumbai.\\n"
            "Planet Positions:\\nSun: Taurus at 0.4°\\nMoon: Cancer at 5.2°"
        )

        normalized = normalizer.normalize(raw)

        assert normalized == (
            "Reading for Priya born on 1990-05-15 at 10.30 in Mumbai.\n"
            "Planet Positions:\nSun: Taurus\nMoon: Cancer"
        )
        assert BirthDetailExtractor().extract(normalized).time == "10.30"

    def test_dotted_time_before_comma_kept(self, normalizer):
        """Test a time followed by a comma survives."""
        assert normalizer.normalize("Born at 14.45, Sun: Leo at 12.5°") == "Born at 14.45, Sun: Leo"

    def test_unitless_decimal_after_sign_removed(self, normalizer):
        """Test "at 0.45" directly after a planet-sign pair is treated as a degree."""
        assert normalizer.normalize("Sun: Taurus at 0.45\\nMoon in Cancer at 5.25") == "Sun: Taurus\nMoon in Cancer"

    def test_plain_prompt_returned_unchanged(self, normalizer):
        """Test prompts without planet positions pass through, escapes and all."""
        raw = "Tell me about Aries\\nand its ruling planet at 12.5°"

        assert normalizer.normalize(raw) == raw

    def test_planet_positions_block_triggers_normalization(self, normalizer):
        """Test a Planet Positions block counts as planet-position text."""
        raw = "Planet Positions:\\nSun 12.5° Leo"

        assert normalizer.normalize(raw) == "Planet Positions:\nSun Leo"


class TestContainsPlanetPositions:
    """Test cases for planet-position detection."""

    @pytest.mark.parametrize("text", [
        "Moon: Cancer at 5.2°",
        "Sun in Leo",
        "Ascendant - Virgo",
        "Mercury (R): Virgo",
        "North Node: Aries",
    ])
    def test_detects_planet_sign_text(self, text):
        """Test planet-sign pairs are detected."""
        assert contains_planet_positions(text)

    @pytest.mark.parametrize("text", [
        "",
        "Tell me about Aries",
        "The sun is shining today",
    ])
    def test_ignores_ordinary_text(self, text):
        """Test prose without positions is not flagged."""
        assert not contains_planet_positions(text)


class TestNormalizeIdempotence:
    """Normalizing an already normalized prompt changes nothing."""

    @pytest.mark.parametrize("raw", [
        "Sun: Gemini 3' 12.5 5° (12.5°) (12.5°) 3' deg",
        "Mars: Aries Rx 12.5° 3.5°",
        "Venus: Taurus 8.75° 12.5 deg (Retrograde, 1.5°)",
        "Moon: Cancer at 5.2 5.2° 5.2°",
        "Planet Positions:\\nSaturn: Capricorn (R) at 22.1 deg 4'\\nBorn at 10.30",
        "Jupiter in Pisces at 15.5, (15.5°)",
    ])
    def test_second_pass_is_a_no_op(self, raw):
        """Test normalize(normalize(x)) == normalize(x) for stacked degree tokens."""
        normalizer = PromptNormalizer()
        once = normalizer.normalize(raw)

        assert normalizer.normalize(once) == once
