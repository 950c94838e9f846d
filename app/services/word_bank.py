"""Practice vocabulary for the typing game.

Short everyday words (animals, food, colours, objects) chosen so that the
letters children with dyslexia most often swap (b/d, p/q, m/n, u/n, w/m)
all show up in several words.  The bank is built once at import time and
never changes for the lifetime of the process.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable

from app.config import settings

logger = logging.getLogger(__name__)

_DEFAULT_WORDS = """
cat dog sun hat bed bad bag big bug bus cup map pen pig red box fox fish frog
duck bird lamp milk moon nest nose ball bell book cake kite lion bear deer
queen quiz quack drum door desk dad mom mud mop man men nap net nut bun
run pup pop top tap tub web wet win wag wand worm wind mint mask milk
bread dream brown black blue pink plum pear peach grape apple lemon melon
bean beet corn pea pod dot den dip dig bib bob bud dub pub quip
snow star ship shop shoe sock tree leaf rain hill pond sand boat train
jam jar jet jug kid kit leg lip log hen hop hug ant egg owl ox
zoo zip yak yam van vet
""".split()

_LETTERS = re.compile(r"[^a-z]")


def normalise_word(word: str) -> str:
    """Lower-case and keep only the letters a-z."""
    return _LETTERS.sub("", (word or "").lower())


def _dedupe(words: Iterable[str]) -> tuple[str, ...]:
    """Normalise and drop empties/duplicates, keeping first-seen order."""
    seen: dict[str, None] = {}
    for raw in words:
        w = normalise_word(raw)
        if w and w not in seen:
            seen[w] = None
    return tuple(seen)


def load_word_bank(path: str | None = None) -> tuple[str, ...]:
    """Build the bank from *path* (one word per line) or the built-in list."""
    if path:
        source = Path(path)
        if source.exists():
            words = _dedupe(source.read_text(encoding="utf-8").split())
            if words:
                logger.info("Loaded %d practice words from %s", len(words), source)
                return words
            logger.warning("Word bank file %s is empty; using built-in words", source)
        else:
            logger.warning("Word bank file %s not found; using built-in words", source)
    return _dedupe(_DEFAULT_WORDS)


WORD_BANK: tuple[str, ...] = load_word_bank(settings.word_bank_path)
