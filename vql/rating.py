"""Infer a compliance rating from free-text review content.

Reviews written by an assistant conventionally state the rating once near
the top ("The controller demonstrates HIGH compliance ..."), so the
earliest statement in the text wins. Extractors are pluggable: the store
only depends on the RatingExtractor protocol.
"""

from __future__ import annotations

import re
from typing import Protocol

from vql.models import Rating

_LEVEL = r"(high|medium|low)"

# Statements that explicitly tie a level to compliance or a rating
COMPLIANCE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(rf"\b{_LEVEL}\s+compliance\b", re.IGNORECASE),
    re.compile(rf"\bcompliance\s*(?::|is|=)?\s*{_LEVEL}\b", re.IGNORECASE),
    re.compile(rf"\brated\s+(?:as\s+)?{_LEVEL}\b", re.IGNORECASE),
    re.compile(rf"\brating\s*(?::|is|=)\s*{_LEVEL}\b", re.IGNORECASE),
]

BARE_WORD_PATTERN = re.compile(rf"\b{_LEVEL}\b", re.IGNORECASE)

_LEVELS = {"high": Rating.HIGH, "medium": Rating.MEDIUM, "low": Rating.LOW}


class RatingExtractor(Protocol):
    def extract(self, text: str) -> Rating | None: ...


def _earliest(text: str, patterns: list[re.Pattern[str]]) -> Rating | None:
    best: tuple[int, str] | None = None
    for pattern in patterns:
        match = pattern.search(text)
        if match and (best is None or match.start() < best[0]):
            best = (match.start(), match.group(1).lower())
    return _LEVELS[best[1]] if best else None


class ExplicitRatingExtractor:
    """Only trusts explicit compliance/rating statements. The default."""

    def extract(self, text: str) -> Rating | None:
        if not text:
            return None
        return _earliest(text, COMPLIANCE_PATTERNS)


class KeywordRatingExtractor(ExplicitRatingExtractor):
    """Opt-in: explicit statements first, then the first bare high/medium/low word."""

    def extract(self, text: str) -> Rating | None:
        rating = super().extract(text)
        if rating is not None or not text:
            return rating
        return _earliest(text, [BARE_WORD_PATTERN])


EXTRACTORS: dict[str, type] = {
    "explicit": ExplicitRatingExtractor,
    "keyword": KeywordRatingExtractor,
}


def build_extractor(mode: str = "explicit") -> RatingExtractor:
    try:
        return EXTRACTORS[mode.lower()]()
    except KeyError:
        raise ValueError(
            f"Unknown rating mode '{mode}'. Choose from: {', '.join(EXTRACTORS)}"
        ) from None


def extract_rating(text: str) -> Rating | None:
    """Convenience wrapper using the default explicit extractor."""
    return ExplicitRatingExtractor().extract(text)
