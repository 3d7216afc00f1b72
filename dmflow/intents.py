"""Funnel intent signals for inbound DMs.

Tags are reported alongside every step so an analytics collector can follow a
conversation through the funnel. Signals are substring hits on the normalized
message, listed in precedence order.
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from .matching import normalize

NEUTRAL = "neutral"
KEYWORD = "keyword"

SIGNALS: Dict[str, Tuple[str, ...]] = {
    "objection": (
        "not sure",
        "maybe",
        "later",
        "expensive",
        "costly",
        "can't",
        "cant",
        "don't know",
        "idk",
        "unsure",
        "think about",
    ),
    "purchase": (
        "bought",
        "paid",
        "done",
        "completed",
        "grabbed",
        "purchased",
        "checkout complete",
        "i'm in",
        "got it",
    ),
    "checkout": ("how", "price", "cost", "link", "checkout", "buy", "purchase", "send", "share", "where"),
    "interest": ("yes", "yeah", "yep", "yup", "sure", "interested", "sounds", "great", "cool", "love", "want", "ready"),
}


def classify(text: str, keyword: Optional[str] = None) -> Tuple[str, ...]:
    """Return every intent tag ``text`` carries, most significant first.

    The campaign ``keyword`` outranks the other signals and an objection
    outranks any buying signal. A message with no signal is tagged
    ``neutral``.
    """

    normalized = normalize(text).lower()
    if not normalized:
        return (NEUTRAL,)

    tags = []
    if keyword and normalize(keyword).lower() in normalized:
        tags.append(KEYWORD)
    for tag, signals in SIGNALS.items():
        if any(signal in normalized for signal in signals):
            tags.append(tag)
    return tuple(tags) or (NEUTRAL,)


def primary(tags: Tuple[str, ...]) -> str:
    return tags[0] if tags else NEUTRAL


__all__ = ["KEYWORD", "NEUTRAL", "SIGNALS", "classify", "primary"]
