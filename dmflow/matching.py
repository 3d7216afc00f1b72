"""Select the outgoing transition that accepts a free-text DM reply."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

from .model import CatchAllMatcher, KeywordMatcher, Matcher, PatternMatcher, Transition


@dataclass(frozen=True)
class Match:
    transition: Transition
    captures: Dict[str, str] = field(default_factory=dict)


def normalize(text: str) -> str:
    """Collapse runs of whitespace and trim; DMs are informal."""

    return " ".join((text or "").split())


def accepts(matcher: Matcher, text: str) -> Optional[Dict[str, str]]:
    """Return the captured groups if ``matcher`` accepts ``text``, else ``None``.

    ``text`` must already be whitespace-normalized.
    """

    if isinstance(matcher, CatchAllMatcher):
        return {}
    if isinstance(matcher, KeywordMatcher):
        lowered = text.lower()
        if any(keyword and keyword in lowered for keyword in matcher.keywords):
            return {}
        return None
    if isinstance(matcher, PatternMatcher):
        found = matcher.regex.search(text)
        if found is None:
            return None
        return {name: value.strip() for name, value in found.groupdict().items() if value is not None}
    raise TypeError(f"Unsupported matcher {matcher!r}")


def match(transitions: Iterable[Transition], text: str) -> Optional[Match]:
    """Try ``transitions`` in ascending priority and return the first match.

    Transitions sharing a priority keep their declared order. ``None`` means
    no transition accepted the input.
    """

    normalized = normalize(text)
    for transition in sorted(transitions, key=lambda t: t.priority):
        groups = accepts(transition.matcher, normalized)
        if groups is None:
            continue
        captures = {name: groups[name] for name in transition.captures if name in groups}
        return Match(transition=transition, captures=captures)
    return None


__all__ = ["Match", "accepts", "match", "normalize"]
