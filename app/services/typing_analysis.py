"""Diagnostic reports for typing sessions.

A report summarises one batch of typing attempts for the therapist:

  - problematicLetters: letters typed wrong, most errors first
  - confusionPatterns:  [{"confuses": typed, "with": target}, ...]
  - strengths:          letters typed right at least as often as wrong
  - overallAccuracy:    whole-number percentage of correct words
  - severity:           "severe" | "moderate" | "mild"
  - recommendations:    short hints for the therapist

Reports are cached on the session the first time it reaches
``settings.auto_analysis_threshold`` results.  The cache is never replaced
by that automatic path; only an explicit re-analysis overwrites it.
"""

from __future__ import annotations

import datetime as dt
import logging
import math
from typing import Any, Iterable, Mapping, Sequence

from app.config import settings
from app.services.letter_diff import TypingAttempt, analyze_alignment, as_attempt

logger = logging.getLogger(__name__)


class EmptyTypingHistoryError(ValueError):
    """Raised when there are no attempts to analyse."""


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------


def accuracy_percent(correct: int, total: int) -> int:
    """Percentage rounded half-up (so 59.5 -> 60)."""
    if total <= 0:
        return 0
    return int(math.floor(100 * correct / total + 0.5))


def severity_for(accuracy: float) -> str:
    if accuracy < settings.severe_below:
        return "severe"
    if accuracy < settings.moderate_below:
        return "moderate"
    return "mild"


def _confusion_patterns(confusion_map: Mapping[str, Any]) -> list[dict[str, str]]:
    patterns: list[dict[str, str]] = []
    for target, mistaken in confusion_map.items():
        # most_common sorts stably, so ties stay in first-seen order
        for typed, _count in mistaken.most_common(settings.confusion_pairs_per_letter):
            if typed == target:
                continue
            patterns.append({"confuses": typed, "with": target})
    return patterns


def build_recommendations(
    problem_letters: Sequence[str],
    confusions: Sequence[Mapping[str, str]],
) -> list[str]:
    limit = settings.recommendation_limit
    tips: list[str] = []
    if problem_letters:
        letters = ", ".join(problem_letters[:limit])
        tips.append(f"Practise words containing the letters: {letters}.")
    for pair in confusions[:limit]:
        tips.append(
            f"Work on telling '{pair['with']}' apart from '{pair['confuses']}' "
            f"(typed '{pair['confuses']}' instead of '{pair['with']}')."
        )
    if not tips:
        tips.append("No recurring letter errors. Keep practising with longer words.")
    return tips


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


def analyze_typing(results: Iterable[TypingAttempt | Mapping[str, Any]]) -> dict[str, Any]:
    """Analyse a list of attempts; raises ``EmptyTypingHistoryError`` if empty."""
    attempts = [as_attempt(r) for r in results]
    if not attempts:
        raise EmptyTypingHistoryError("No typing results to analyze")

    counts = analyze_alignment(attempts)
    errors = counts.error_counts
    oks = counts.ok_counts

    correct = sum(1 for a in attempts if a.correct)
    accuracy = accuracy_percent(correct, len(attempts))

    problem_letters = sorted(errors, key=lambda letter: errors[letter], reverse=True)
    strengths = sorted(
        (letter for letter in oks if oks[letter] >= errors[letter]),
        key=lambda letter: oks[letter],
        reverse=True,
    )
    confusions = _confusion_patterns(counts.confusion_map)

    return {
        "problematicLetters": problem_letters,
        "confusionPatterns": confusions,
        "strengths": strengths,
        "overallAccuracy": accuracy,
        "recommendations": build_recommendations(problem_letters, confusions),
        "severity": severity_for(accuracy),
    }


def build_cached_report(
    results: Sequence[TypingAttempt | Mapping[str, Any]],
    now: dt.datetime | None = None,
) -> dict[str, Any]:
    """Report plus the bookkeeping fields stored on the session."""
    attempts = [as_attempt(r) for r in results]
    report = analyze_typing(attempts)
    now = now or dt.datetime.now(dt.timezone.utc)
    report.update({
        "analyzedAt": now.isoformat(),
        "totalWords": len(attempts),
        "correctWords": sum(1 for a in attempts if a.correct),
    })
    return report


def should_auto_analyze(result_count: int, has_report: bool) -> bool:
    return result_count >= settings.auto_analysis_threshold and not has_report


def try_auto_analyze(
    results: Sequence[TypingAttempt | Mapping[str, Any]],
    existing: Mapping[str, Any] | None,
) -> dict[str, Any] | None:
    """Apply the auto-trigger policy.

    Returns a new report when one should be cached, otherwise None.
    Errors are logged and swallowed: the caller's save must still succeed,
    and the next save will try again.
    """
    if not should_auto_analyze(len(results), existing is not None):
        return None
    try:
        report = build_cached_report(results)
    except Exception:
        logger.exception("Auto-analysis failed for %d typing results", len(results))
        return None
    logger.info("Auto-analysis completed for %d typing results", len(results))
    return report


# ---------------------------------------------------------------------------
# Child-level aggregate
# ---------------------------------------------------------------------------


def child_typing_overview(sessions: Iterable[Any]) -> dict[str, Any]:
    """
    Aggregate typing stats over all of a child's sessions.

    *sessions* are ``TherapySession`` rows (anything with ``session_id``,
    ``started_at``, ``typing_results`` and ``typing_analysis``).  Sessions
    with results but no cached report get one computed here; it is not
    written back.

    Returns:
      {"overallStats": {"totalWords", "correctWords", "overallAccuracy"},
       "sessionAnalyses": [{"sessionId", "analysis", "date", "cached"}],
       "hasData": bool}
    """
    all_results: list[TypingAttempt] = []
    session_analyses: list[dict[str, Any]] = []

    for session in sessions:
        rows = list(session.typing_results or [])
        if not rows:
            continue
        attempts = [
            TypingAttempt(word=r.word, input=r.input, correct=bool(r.correct)) for r in rows
        ]
        all_results.extend(attempts)

        started = session.started_at.isoformat() if session.started_at else None
        if session.typing_analysis:
            session_analyses.append({
                "sessionId": session.session_id,
                "analysis": session.typing_analysis,
                "date": session.typing_analysis.get("analyzedAt") or started,
                "cached": True,
            })
            continue

        try:
            analysis = build_cached_report(attempts)
        except Exception:
            logger.exception("On-the-fly analysis failed for session %s", session.session_id)
            continue
        session_analyses.append({
            "sessionId": session.session_id,
            "analysis": analysis,
            "date": started,
            "cached": False,
        })

    total = len(all_results)
    correct = sum(1 for a in all_results if a.correct)
    overall = round(correct / total * 100, 2) if total else 0

    return {
        "overallStats": {
            "totalWords": total,
            "correctWords": correct,
            "overallAccuracy": overall,
        },
        "sessionAnalyses": session_analyses,
        "hasData": total > 0,
    }
