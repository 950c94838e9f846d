from __future__ import annotations

from app.services.letter_diff import TypingAttempt, analyze_alignment, score_errors


def test_single_substitution_repeated():
    history = [{"word": "bed", "input": "ded", "correct": False}] * 5

    counts = analyze_alignment(history)

    assert counts.error_counts["b"] == 5
    assert counts.confusion_map["b"]["d"] == 5
    assert counts.ok_counts["e"] == 5
    assert counts.ok_counts["d"] == 5
    assert score_errors(history) == {"b": 5}


def test_extra_typed_letters_do_not_penalise():
    counts = analyze_alignment([TypingAttempt(word="cat", input="cats", correct=False)])

    assert dict(counts.error_counts) == {}
    assert dict(counts.ok_counts) == {"c": 1, "a": 1, "t": 1}


def test_missing_letters_count_as_errors_without_confusion():
    counts = analyze_alignment([{"word": "frog", "input": "fr", "correct": False}])

    assert counts.error_counts == {"o": 1, "g": 1}
    assert counts.confusion_map == {}


def test_positional_alignment_shifts_after_omission():
    # "bd" for "bed": 'e' compared with 'd', then 'd' with nothing
    counts = analyze_alignment([{"word": "bed", "input": "bd", "correct": False}])

    assert counts.error_counts == {"e": 1, "d": 1}
    assert counts.confusion_map["e"]["d"] == 1
    assert "d" not in counts.confusion_map


def test_case_and_non_letters_are_ignored():
    counts = analyze_alignment([{"word": "Dog!", "input": " d-o-g ", "correct": True}])

    assert dict(counts.error_counts) == {}
    assert dict(counts.ok_counts) == {"d": 1, "o": 1, "g": 1}


def test_error_counts_keep_first_seen_order():
    history = [
        {"word": "pig", "input": "qig", "correct": False},
        {"word": "bun", "input": "dun", "correct": False},
    ]

    assert list(score_errors(history)) == ["p", "b"]
