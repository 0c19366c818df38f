"""
ideaboard/features/moderation/content_filter.py

Screens idea and comment bodies before they are stored.

Terms match on word boundaries ("class" does not trip "ass"), with an
optional plural "s". Ideas must also mention something AI-related; comments
only need to be clean and non-trivial. A body carrying the "#test" marker is
accepted as a test submission and skips the relevance check.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional, Pattern

BANNED_TERMS = (
    # explicit
    "porn", "sex", "nude", "naked", "xxx", "adult", "nsfw", "erotic",
    # profanity
    "fuck", "shit", "damn", "hell", "bitch", "ass", "crap", "piss",
    # spam
    "click here", "buy now", "limited time", "act now", "free money",
    "make money fast", "work from home", "get rich", "no experience",
    # off-topic
    "recipe", "cooking", "weather", "sports", "politics", "religion",
)

AI_KEYWORDS = (
    "ai", "artificial intelligence", "chatgpt", "claude", "gpt", "llm",
    "machine learning", "ml", "automation", "bot", "assistant", "prompt",
    "generate", "analyze", "summarize", "translate", "write", "create",
    "midjourney", "dall-e", "stable diffusion", "openai", "anthropic",
    "gemini", "copilot", "jasper", "notion ai", "grammarly", "canva ai",
)

TEST_MARKER = "#test"

IDEA_MIN_LENGTH = 10
COMMENT_MIN_LENGTH = 2

REASON_INAPPROPRIATE = "Contains inappropriate content"
REASON_TOO_SHORT = "Too short to be helpful"
REASON_OFF_TOPIC = "Must be related to AI use cases"
REASON_SPAM = "Appears to be spam"

_REPEATED_CHAR_RE = re.compile(r"(.)\1{4,}")


def _terms_pattern(terms: Iterable[str]) -> Pattern[str]:
    alternatives = "|".join(re.escape(term) for term in sorted(terms, key=len, reverse=True))
    return re.compile(rf"(?<!\w)(?:{alternatives})s?(?!\w)", re.IGNORECASE)


_BANNED_RE = _terms_pattern(BANNED_TERMS)
_AI_RE = _terms_pattern(AI_KEYWORDS)


@dataclass(frozen=True)
class FilterVerdict:
    is_valid: bool
    reason: Optional[str] = None
    is_test_submission: bool = False


def _looks_like_spam(text: str) -> bool:
    capitals = sum(1 for ch in text if "A" <= ch <= "Z")
    return capitals > len(text) * 0.5 or bool(_REPEATED_CHAR_RE.search(text))


def check_idea(text: str) -> FilterVerdict:
    is_test = TEST_MARKER in text.lower()
    if _BANNED_RE.search(text):
        return FilterVerdict(False, REASON_INAPPROPRIATE)
    if len(text.strip()) < IDEA_MIN_LENGTH:
        return FilterVerdict(False, REASON_TOO_SHORT)
    if not is_test and not _AI_RE.search(text):
        return FilterVerdict(False, REASON_OFF_TOPIC)
    if _looks_like_spam(text):
        return FilterVerdict(False, REASON_SPAM)
    return FilterVerdict(True, is_test_submission=is_test)


def check_comment(text: str) -> FilterVerdict:
    if _BANNED_RE.search(text):
        return FilterVerdict(False, REASON_INAPPROPRIATE)
    if len(text.strip()) < COMMENT_MIN_LENGTH:
        return FilterVerdict(False, REASON_TOO_SHORT)
    if _looks_like_spam(text):
        return FilterVerdict(False, REASON_SPAM)
    return FilterVerdict(True)
