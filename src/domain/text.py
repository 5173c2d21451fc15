"""
Chapter text statistics.

Word counts are taken from the plain text of a chapter (HTML tags removed),
and reading time is rounded up to whole minutes.
"""

from __future__ import annotations

import math
import re

from src.domain.entities import Chapter

_TAG_RE = re.compile(r"<[^>]*>")

DEFAULT_WORDS_PER_MINUTE = 200


def strip_tags(html: str) -> str:
    """Remove HTML tags, leaving text content with whitespace collapsed."""
    # Tags become spaces so "</p><p>" never glues two words together
    return " ".join(_TAG_RE.sub(" ", html).split())


def count_words(content: str) -> int:
    """Count whitespace-separated words in the plain text of `content`."""
    plain = strip_tags(content)
    return len(plain.split())


def reading_time_minutes(word_count: int, words_per_minute: int = DEFAULT_WORDS_PER_MINUTE) -> int:
    if words_per_minute <= 0:
        raise ValueError("words_per_minute must be positive")
    return math.ceil(word_count / words_per_minute)


def with_text_stats(
    chapter: Chapter,
    words_per_minute: int = DEFAULT_WORDS_PER_MINUTE,
) -> Chapter:
    """Return a copy of `chapter` with word_count and reading time derived from content."""
    words = count_words(chapter.content)
    return chapter.model_copy(
        update={
            "word_count": words,
            "reading_time_minutes": reading_time_minutes(words, words_per_minute),
        }
    )
