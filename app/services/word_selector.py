"""Adaptive next-word selection for the typing game."""

from __future__ import annotations

import logging
import random
from typing import Any, Iterable, Mapping, Sequence

from app.services.letter_diff import TypingAttempt, as_attempt, score_errors
from app.services.word_bank import WORD_BANK, normalise_word

logger = logging.getLogger(__name__)


def rank_problem_letters(history: Iterable[TypingAttempt | Mapping[str, Any]]) -> list[str]:
    """Letters the child got wrong, most errors first.

    Only incorrect attempts are scored.  ``sorted`` is stable, so letters
    with equal counts stay in the order they were first seen.
    """
    wrong = [a for a in map(as_attempt, history) if not a.correct]
    errors = score_errors(wrong)
    return sorted(errors, key=lambda letter: errors[letter], reverse=True)


def select_next_word(
    history: Sequence[TypingAttempt | Mapping[str, Any]],
    used_words: Iterable[str],
    rng: random.Random | None = None,
    bank: Sequence[str] = WORD_BANK,
) -> str:
    """
    Pick the next practice word, biased towards the child's problem letters.

    1. Words already used this session are skipped (case-insensitive).
    2. If every word has been used, any bank word may repeat.
    3. With no problem letters yet, pick any unused word.
    4. Otherwise take the most-missed letter that still appears in an
       unused word and pick among the words containing it.

    Passing a seeded ``random.Random`` makes the choice reproducible.
    """
    if not bank:
        raise ValueError("word bank is empty")
    rng = rng or random.Random()

    used = {normalise_word(w) for w in used_words}
    candidates = [w for w in bank if normalise_word(w) not in used]

    if not candidates:
        logger.debug("All %d bank words used; allowing repeats", len(bank))
        return rng.choice(list(bank))

    ranked = rank_problem_letters(history)
    if not ranked:
        return rng.choice(candidates)

    for letter in ranked:
        focused = [w for w in candidates if letter in normalise_word(w)]
        if focused:
            logger.debug(
                "Targeting letter %r (%d candidate words)", letter, len(focused)
            )
            return rng.choice(focused)

    return rng.choice(candidates)
