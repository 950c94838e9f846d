"""Therapy session lifecycle: start a session and append activity to it.

A session is created every time a child logs in and is never closed
explicitly; the next login simply starts a new one.  All writes are
appends, and each one is committed before the call returns.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Mapping, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Child, PuzzleRecord, Therapist, TherapySession, TypingResult
from app.services.errors import (
    GameModePolicyError,
    NoTypingResultsError,
    SessionNotFoundError,
    SessionValidationError,
)
from app.services.letter_diff import TypingAttempt
from app.services.session_store import (
    SessionRef,
    generate_session_id,
    load_child,
    load_session,
    mutate_session,
)
from app.services.typing_analysis import (
    build_cached_report,
    child_typing_overview,
    try_auto_analyze,
)

logger = logging.getLogger(__name__)

TYPING_GAME = "typing"


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


def session_attempts(session: TherapySession) -> list[TypingAttempt]:
    return [
        TypingAttempt(word=r.word, input=r.input, correct=bool(r.correct))
        for r in session.typing_results
    ]


def _parse_attempts(results: Any) -> list[TypingAttempt]:
    if not isinstance(results, list) or not results:
        raise SessionValidationError("results must be a non-empty list")
    attempts = []
    for item in results:
        if not isinstance(item, Mapping) or not str(item.get("word") or "").strip():
            raise SessionValidationError("each result needs a word")
        attempts.append(TypingAttempt.from_dict(item))
    return attempts


# ---- Start ----


async def start_session(db: AsyncSession, therapist_code: str, child_name: str) -> dict[str, Any]:
    """Create a new session for the child, snapshotting themes and preferences."""
    if not therapist_code or not child_name:
        raise SessionValidationError("Both therapist code and child name are required")

    result = await db.execute(select(Therapist).where(Therapist.code == therapist_code))
    if result.scalar_one_or_none() is None:
        raise SessionNotFoundError("Therapist not found")

    try:
        child = await load_child(db, therapist_code, child_name)
    except SessionNotFoundError:
        raise SessionNotFoundError("Child not found under this therapist") from None

    session = TherapySession(
        child_id=child.id,
        session_id=generate_session_id(),
        assigned_themes=list(child.assigned_themes or []),
        themes_changed=[],
        emotions_of_child=[],
        typing_results_map={},
        reading_recordings=[],
        preferred_game=child.preferred_game,
        preferred_story=child.preferred_story,
    )
    db.add(session)
    await db.commit()

    logger.info(
        "Session started: child=%r therapist=%s session=%s game=%s",
        child_name, therapist_code, session.session_id, session.preferred_game,
    )
    return {
        "message": "Child login successful",
        "username": child_name,
        "sessionId": session.session_id,
        "assignedThemes": list(session.assigned_themes),
        "preferredGame": session.preferred_game,
        "preferredStory": session.preferred_story,
    }


# ---- Typing ----


async def save_typing_results(ref: SessionRef, results: Any) -> dict[str, Any]:
    """Append a batch of typing attempts, then maybe cache a first report.

    Raises ``GameModePolicyError`` (and appends nothing) when the session is
    set up for a different game.
    """
    attempts = _parse_attempts(results)

    async def _append(db: AsyncSession, session: TherapySession) -> dict[str, Any]:
        if session.preferred_game and session.preferred_game != TYPING_GAME:
            raise GameModePolicyError(
                "Typing results not allowed for this session (preferred game mismatch)"
            )

        now = _utcnow()
        result_map = dict(session.typing_results_map or {})
        for a in attempts:
            session.typing_results.append(
                TypingResult(word=a.word, input=a.input, correct=a.correct, completed_at=now)
            )
            result_map[a.word] = a.input
        session.typing_results_map = result_map

        all_attempts = session_attempts(session)
        auto = try_auto_analyze(all_attempts, session.typing_analysis)
        if auto is not None:
            session.typing_analysis = auto

        logger.info(
            "Saved %d typing results for session %s (total %d)",
            len(attempts), session.session_id, len(all_attempts),
        )
        return {
            "accepted": True,
            "totalWords": len(all_attempts),
            "autoAnalysis": auto,
        }

    return await mutate_session(ref, _append)


async def analyze_session(ref: SessionRef) -> dict[str, Any]:
    """Recompute the session's report and overwrite any cached one."""

    async def _analyze(db: AsyncSession, session: TherapySession) -> dict[str, Any]:
        attempts = session_attempts(session)
        if not attempts:
            raise NoTypingResultsError("No typing results to analyze")
        session.typing_analysis = build_cached_report(attempts)
        logger.info(
            "Session %s analysed on request (%d results)", session.session_id, len(attempts)
        )
        return session.typing_analysis

    return await mutate_session(ref, _analyze)


async def child_analysis(db: AsyncSession, therapist_code: str, username: str) -> dict[str, Any]:
    child = await load_child(db, therapist_code, username)
    overview = child_typing_overview(child.sessions)
    return {"username": username, **overview}


# ---- Other activity ----


async def track_theme_change(ref: SessionRef, theme: str) -> str:
    """Log a theme assignment; repeats of the current theme are logged too."""
    if not theme:
        raise SessionValidationError("Missing required fields")

    async def _append(db: AsyncSession, session: TherapySession) -> str:
        session.themes_changed = [*(session.themes_changed or []), theme]
        return theme

    return await mutate_session(ref, _append)


async def track_emotion(ref: SessionRef, emotion: str) -> None:
    if not emotion:
        raise SessionValidationError("emotion is required")

    async def _append(db: AsyncSession, session: TherapySession) -> None:
        session.emotions_of_child = [*(session.emotions_of_child or []), emotion]

    await mutate_session(ref, _append)


async def record_puzzle_completion(
    ref: SessionRef,
    theme: str,
    level: Any,
    puzzle_id: str,
    emotions_during: Sequence[str] | None = None,
) -> None:
    if not theme or level is None or level == "" or not puzzle_id:
        raise SessionValidationError("Missing required fields")
    try:
        level_num = int(level)
    except (TypeError, ValueError):
        raise SessionValidationError("level must be a number") from None
    puzzle_id = str(puzzle_id)

    async def _append(db: AsyncSession, session: TherapySession) -> None:
        session.played_puzzles.append(
            PuzzleRecord(
                theme=theme,
                level=level_num,
                puzzle_id=puzzle_id,
                completed_at=_utcnow(),
                emotions_during=list(emotions_during or []),
            )
        )
        # flat per-child list kept for older dashboards
        child = await db.get(Child, session.child_id)
        if child is not None and puzzle_id not in (child.played_puzzles or []):
            child.played_puzzles = [*(child.played_puzzles or []), puzzle_id]

    await mutate_session(ref, _append)


async def save_reading_recording(
    ref: SessionRef,
    story_id: str,
    audio_ref: str,
    story_title: str | None = None,
) -> None:
    if not story_id or not audio_ref:
        raise SessionValidationError("Missing fields")

    async def _append(db: AsyncSession, session: TherapySession) -> None:
        session.reading_recordings = [
            *(session.reading_recordings or []),
            {
                "storyId": str(story_id),
                "storyTitle": story_title,
                "audioRef": audio_ref,
                "recordedAt": _utcnow().isoformat(),
            },
        ]

    await mutate_session(ref, _append)


# ---- Read paths ----


def serialize_session(session: TherapySession) -> dict[str, Any]:
    return {
        "sessionId": session.session_id,
        "date": session.started_at.isoformat() if session.started_at else None,
        "assignedThemes": list(session.assigned_themes or []),
        "themesChanged": list(session.themes_changed or []),
        "emotionsOfChild": list(session.emotions_of_child or []),
        "playedPuzzles": [p.as_dict() for p in session.played_puzzles],
        "typingResults": [r.as_dict() for r in session.typing_results],
        "typingResultsMap": dict(session.typing_results_map or {}),
        "typingAnalysis": session.typing_analysis,
        "preferredGame": session.preferred_game,
        "preferredStory": session.preferred_story,
        "readingRecordings": list(session.reading_recordings or []),
    }


async def get_session_data(db: AsyncSession, ref: SessionRef) -> dict[str, Any]:
    return serialize_session(await load_session(db, ref))


async def list_child_sessions(db: AsyncSession, therapist_code: str, username: str) -> list[dict]:
    child = await load_child(db, therapist_code, username)
    return [serialize_session(s) for s in child.sessions]
