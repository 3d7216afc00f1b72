import re
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from dmflow.intents import classify
from dmflow.matching import match, normalize
from dmflow.model import CatchAllMatcher, KeywordMatcher, PatternMatcher, Transition


def keyword(target, *words, priority=0):
    return Transition(target=target, matcher=KeywordMatcher(keywords=words), priority=priority)


def catch_all(target, priority=0):
    return Transition(target=target, matcher=CatchAllMatcher(), priority=priority)


def pattern(target, regex, captures=(), priority=0):
    return Transition(
        target=target,
        matcher=PatternMatcher(pattern=regex, regex=re.compile(regex, re.IGNORECASE)),
        priority=priority,
        captures=tuple(captures),
    )


def test_normalize_collapses_whitespace():
    assert normalize("  so   what\tis\nit ") == "so what is it"
    assert normalize(None) == ""  # type: ignore[arg-type]


def test_keyword_beats_catch_all_by_priority():
    transitions = [keyword("a", "no", priority=1), catch_all("b", priority=2)]
    found = match(transitions, "no thanks")
    assert found is not None
    assert found.transition.target == "a"


def test_priority_order_not_declaration_order():
    transitions = [keyword("late", "price", priority=5), keyword("early", "price", priority=1)]
    assert match(transitions, "price?").transition.target == "early"


def test_equal_priority_keeps_declaration_order():
    transitions = [keyword("first", "hi"), keyword("second", "hi")]
    assert match(transitions, "hi").transition.target == "first"


def test_keyword_match_is_case_and_space_insensitive():
    transitions = [keyword("t", "how much")]
    assert match(transitions, "  HOW    MUCH is it") is not None


def test_no_match_without_catch_all():
    assert match([keyword("t", "buy")], "just looking") is None


def test_pattern_captures_named_groups_only_for_declared_captures():
    transitions = [pattern("t", r"(?P<qty>\d+)\s+(?P<size>[a-z])", captures=["qty"])]
    found = match(transitions, "I want 2   M")
    assert found is not None
    assert found.captures == {"qty": "2"}


def test_pattern_preserves_case_of_captured_text():
    transitions = [pattern("t", r"name is (?P<name>\w+)", captures=["name"])]
    assert match(transitions, "my NAME is Priya").captures == {"name": "Priya"}


def test_classify_follows_signal_precedence():
    assert classify("TEE please", keyword="tee") == ("keyword",)
    assert classify("paid, how do I track it?") == ("purchase", "checkout")
    assert classify("maybe later") == ("objection",)
    assert classify("maybe later, how much is it?") == ("objection", "checkout")
    assert classify("idk, I paid") == ("objection", "purchase")
    assert classify("yes sounds great") == ("interest",)
    assert classify("   ") == ("neutral",)
    assert classify("hmm") == ("neutral",)
