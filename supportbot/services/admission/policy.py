"""Content checks used by the admission pipeline.

Pure functions over already-normalized (lowercased, trimmed) text.
"""

import re
from typing import Optional

from supportbot.common import messages
from .events import MediaType

_URL_SCHEME = re.compile(r"https?://")
_LONG_NUMBER = re.compile(r"\b\d{8,}\b")
_EXCLAMATION = re.compile(r"[!?]")
# Whole word, so "webcam" still goes to the generator
_WEBSITE_QUERY = re.compile(r"\bweb\b", re.IGNORECASE)

MAX_URLS = 1
MAX_LONG_NUMBERS = 1
MAX_PUNCTUATION = 5


def matches_spam_pattern(text: str) -> bool:
    for pattern in messages.SPAM_PATTERNS:
        if isinstance(pattern, re.Pattern):
            if pattern.search(text):
                return True
        elif pattern in text:
            return True
    return False


def is_spam(text: str) -> bool:
    """True if text matches a spam pattern or looks like bulk/promotional content."""
    if matches_spam_pattern(text):
        return True
    if len(_URL_SCHEME.findall(text)) > MAX_URLS:
        return True
    if len(_LONG_NUMBER.findall(text)) > MAX_LONG_NUMBERS:
        return True
    return len(_EXCLAMATION.findall(text)) > MAX_PUNCTUATION


def wants_human(text: str) -> bool:
    return any(keyword in text for keyword in messages.HUMAN_KEYWORDS)


def wants_bot(text: str) -> bool:
    return any(keyword in text for keyword in messages.RETURN_KEYWORDS)


def shortcut_reply(text: str) -> Optional[str]:
    """Canned answer for a direct query, or None when the generator is needed."""
    if text == "hola":
        return messages.WELCOME
    if text == "horario":
        return messages.SCHEDULE
    if _WEBSITE_QUERY.search(text):
        return messages.WEB_PAGE
    return None


def media_reply(media_type: Optional[MediaType]) -> str:
    suffix = messages.MEDIA_SUFFIXES.get(media_type.value) if media_type else None
    if suffix:
        return f"{messages.MEDIA_RECEIVED}\n\n{suffix}"
    return messages.MEDIA_RECEIVED
