"""Letter-level diffing of typed words against their targets.

Each attempt is compared position by position: letter *i* of the target
against letter *i* of what the child typed.  There is no edit-distance
realignment, so a dropped or extra letter shifts every later comparison
(``"bed"`` typed as ``"bd"`` counts errors on both ``e`` and ``d``).
Changing that would change every diagnostic report, so it is kept as is.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from app.services.word_bank import normalise_word


@dataclass(frozen=True)
class TypingAttempt:
    """One typed response to one target word, stored as submitted."""

    word: str
    input: str
    correct: bool

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TypingAttempt":
        return cls(
            word=str(data.get("word") or ""),
            input=str(data.get("input") or ""),
            correct=bool(data.get("correct")),
        )


@dataclass
class AlignmentCounts:
    error_counts: Counter = field(default_factory=Counter)
    ok_counts: Counter = field(default_factory=Counter)
    # target letter -> Counter of letters typed in its place
    confusion_map: dict[str, Counter] = field(default_factory=dict)


def as_attempt(item: TypingAttempt | Mapping[str, Any]) -> TypingAttempt:
    if isinstance(item, TypingAttempt):
        return item
    return TypingAttempt.from_dict(item)


def analyze_alignment(history: Iterable[TypingAttempt | Mapping[str, Any]]) -> AlignmentCounts:
    """Count per-letter successes, errors and substitutions over *history*.

    Counters keep letters in the order they were first seen, which the
    selector and analyzer rely on to break ties.
    """
    counts = AlignmentCounts()
    for item in history:
        attempt = as_attempt(item)
        target = normalise_word(attempt.word)
        typed = normalise_word(attempt.input)

        for i in range(max(len(target), len(typed))):
            t = target[i] if i < len(target) else ""
            u = typed[i] if i < len(typed) else ""
            if not t:
                # extra typed letters have no target letter to blame
                continue
            if t == u:
                counts.ok_counts[t] += 1
                continue
            counts.error_counts[t] += 1
            if u:
                counts.confusion_map.setdefault(t, Counter())[u] += 1

    return counts


def score_errors(history: Iterable[TypingAttempt | Mapping[str, Any]]) -> dict[str, int]:
    """Return ``{letter: error_count}`` for *history*."""
    return dict(analyze_alignment(history).error_counts)
