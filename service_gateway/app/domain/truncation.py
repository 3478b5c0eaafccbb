"""
Heuristics for spotting completions that were cut short.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .models import CompletionResult

_HEADING = re.compile(r"^[ \t]*##[ \t]+(?P<title>[^\n#]+?)[ \t]*#*[ \t]*$", re.MULTILINE)


@dataclass(frozen=True)
class TruncationThresholds:
    min_completion_tokens: int = 300
    min_content_chars: int = 1000
    hard_floor_tokens: int = 50
    min_section_body_chars: int = 40

    @classmethod
    def from_config(cls, config) -> "TruncationThresholds":
        return cls(
            min_completion_tokens=config.truncation_min_completion_tokens,
            min_content_chars=config.truncation_min_content_chars,
            hard_floor_tokens=config.truncation_hard_floor_tokens,
            min_section_body_chars=config.truncation_min_section_body_chars,
        )


def _sections(content: str):
    """(title, body) pairs for every ``##`` heading, in order."""
    matches = list(_HEADING.finditer(content))
    for index, match in enumerate(matches):
        end = matches[index + 1].start() if index + 1 < len(matches) else len(content)
        yield match.group("title").strip(), content[match.end():end].strip()


class TruncationDetector:
    """Flags a completion as truncated when any heuristic fires."""

    def __init__(self, thresholds: Optional[TruncationThresholds] = None):
        self.thresholds = thresholds or TruncationThresholds()

    def is_truncated(self,
                     result: CompletionResult,
                     requested_sections: Optional[Sequence[str]] = None,
                     expect_long_form: bool = True) -> bool:
        return bool(self.reasons(result, requested_sections, expect_long_form))

    def reasons(self,
                result: CompletionResult,
                requested_sections: Optional[Sequence[str]] = None,
                expect_long_form: bool = True) -> List[str]:
        """Names of every heuristic that fired; empty when the result looks complete."""
        t = self.thresholds
        content = (result.content or "").strip()
        found = []

        if result.finish_reason == "length":
            found.append("finish_reason_length")

        if not content:
            found.append("empty_content")
            return found

        tokens = result.usage.completion_tokens
        if expect_long_form:
            if tokens < t.min_completion_tokens and len(content) < t.min_content_chars:
                found.append("short_completion")
            elif 0 < tokens < t.hard_floor_tokens:
                found.append("below_token_floor")

        sections = list(_sections(content))
        if sections and len(sections[-1][1]) < t.min_section_body_chars:
            found.append("incomplete_last_section")

        if requested_sections:
            present = {title.lower() for title, _ in sections}
            wanted = [s.lower() for s in requested_sections]
            for current, following in zip(wanted, wanted[1:]):
                if current in present and following not in present:
                    found.append("missing_section")
                    break

        return found
