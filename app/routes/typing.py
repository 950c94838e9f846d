"""Typing game APIs: adaptive words, result saving and analysis."""

from __future__ import annotations

import logging
import random

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.routes.sessions import read_json_body
from app.services import session_lifecycle
from app.services.errors import SessionValidationError
from app.services.session_store import SessionRef, load_session
from app.services.word_selector import select_next_word

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/typing/next-word")
async def next_word(request: Request, db: AsyncSession = Depends(get_db)):
    """Pick the next practice word.

    Body: {sessionId, history: [{word, input, correct}], usedWords?: [str], seed?: int|str}
    ``usedWords`` defaults to the words in ``history``.
    """
    body = await read_json_body(request)
    ref = SessionRef.from_payload(body)
    await load_session(db, ref)

    history = body.get("history") or body.get("typingHistory") or []
    if not isinstance(history, list) or not all(isinstance(h, dict) for h in history):
        raise SessionValidationError("history must be a list of attempts")
    used_words = body.get("usedWords")
    if used_words is None:
        used_words = [str(h.get("word") or "") for h in history]
    if not isinstance(used_words, list):
        raise SessionValidationError("usedWords must be a list")

    seed = body.get("seed")
    if seed is not None and (isinstance(seed, bool) or not isinstance(seed, (int, str))):
        raise SessionValidationError("seed must be an integer or a string")
    rng = random.Random(seed) if seed is not None else None

    word = select_next_word(history, [str(w) for w in used_words], rng=rng)
    logger.info(
        "Next word for session %s: %r (history=%d)", ref.session_id, word, len(history)
    )
    return JSONResponse({"success": True, "word": word, "isInitial": not history})


@router.post("/save-typing-results")
async def save_typing_results(request: Request):
    """Append a batch of attempts. Body: {sessionId, results: [...]}."""
    body = await read_json_body(request)
    saved = await session_lifecycle.save_typing_results(
        SessionRef.from_payload(body), body.get("results")
    )
    return JSONResponse({"success": True, **saved})


@router.post("/typing/analyze-session")
async def analyze_session(request: Request):
    """Recompute and store the session's report. Body: {sessionId}."""
    body = await read_json_body(request)
    analysis = await session_lifecycle.analyze_session(SessionRef.from_payload(body))
    return JSONResponse({"success": True, "message": "Session analyzed successfully", "analysis": analysis})


@router.get("/typing/child-analysis")
async def child_analysis(
    therapistCode: str = "",
    username: str = "",
    db: AsyncSession = Depends(get_db),
):
    overview = await session_lifecycle.child_analysis(db, therapistCode, username)
    return JSONResponse({"success": True, **overview})
