"""Keyword extraction for history lookups.

Literal tokens only: no stemming, no deduplication. The keywords feed a
substring match against stored questions and options.
"""

import re

MAX_KEYWORDS = 10
MIN_KEYWORD_LENGTH = 4

STOP_WORDS = frozenset(
    {
        "should", "i", "a", "an", "the", "or", "and", "but", "in", "on", "at",
        "to", "for", "of", "with", "by", "from", "up", "about", "into", "through",
        "is", "are", "was", "were", "be", "been", "being", "have", "has", "had",
        "do", "does", "did", "will", "would", "could", "can", "my", "me", "it",
    }
)

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


def extract_keywords(text: str | None) -> list[str]:
    """Return up to ten lowercase search terms from free text, in order.

    An empty result means there is nothing to search history for.
    """
    if not text:
        return []

    cleaned = _NON_ALNUM.sub(" ", text.lower())
    keywords = [
        word
        for word in cleaned.split()
        if len(word) >= MIN_KEYWORD_LENGTH and word not in STOP_WORDS
    ]
    return keywords[:MAX_KEYWORDS]


def keywords_for_decision(question: str, options: list[str]) -> list[str]:
    """Keywords for a question and its options, the input to history lookups."""
    return extract_keywords(question + " " + " ".join(options))
