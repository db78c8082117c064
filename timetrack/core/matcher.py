"""Pattern matcher for categorization rules.

Compares one pattern against one piece of text and scores the match.
Comparison is case-insensitive; both sides are lower-cased here, so
callers pass raw strings. Invalid regular expressions never raise:
rules may be user-authored, so a bad pattern simply does not match.
"""

import functools
import logging
import re
from typing import Optional

from timetrack.core.models import NO_MATCH, MatchResult, MatchType

logger = logging.getLogger(__name__)

BOUNDARY_CONFIDENCE = 90.0
REGEX_CONFIDENCE = 85.0


def match_pattern(text: str, pattern: str, match_type: MatchType) -> MatchResult:
    """Match *pattern* against *text* using *match_type*.

    Confidence is 0-100. ``contains`` scores higher the more of the text
    the pattern covers, so specific patterns beat generic substrings.
    An empty pattern never matches.
    """
    if not pattern:
        return NO_MATCH
    text = text or ""

    if match_type is MatchType.REGEX:
        compiled = _compile(pattern)
        if compiled is None or compiled.search(text) is None:
            return NO_MATCH
        return MatchResult(matched=True, confidence=REGEX_CONFIDENCE)

    text_lower = text.lower()
    pattern_lower = pattern.lower()

    if match_type is MatchType.EXACT:
        if text_lower == pattern_lower:
            return MatchResult(matched=True, confidence=100.0)
        return NO_MATCH

    if match_type is MatchType.CONTAINS:
        if pattern_lower not in text_lower:
            return NO_MATCH
        confidence = min(100.0, 60.0 + (len(pattern_lower) / len(text_lower)) * 40.0)
        return MatchResult(matched=True, confidence=confidence)

    if match_type is MatchType.STARTS_WITH:
        if text_lower.startswith(pattern_lower):
            return MatchResult(matched=True, confidence=BOUNDARY_CONFIDENCE)
        return NO_MATCH

    if match_type is MatchType.ENDS_WITH:
        if text_lower.endswith(pattern_lower):
            return MatchResult(matched=True, confidence=BOUNDARY_CONFIDENCE)
        return NO_MATCH

    return NO_MATCH


def is_valid_regex(pattern: str) -> bool:
    """Return True if *pattern* compiles as a regular expression."""
    return _compile(pattern) is not None


@functools.lru_cache(maxsize=512)
def _compile(pattern: str) -> Optional[re.Pattern]:
    # The pattern is not lower-cased: that would turn escapes like \D into \d.
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as exc:
        logger.warning("Ignoring invalid regex pattern %r: %s", pattern, exc)
        return None
