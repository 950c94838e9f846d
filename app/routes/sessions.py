"""Session start and activity-tracking APIs."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.services import session_lifecycle
from app.services.emotion_client import emotion_buffer, predict_emotion
from app.services.errors import SessionValidationError
from app.services.session_store import SessionRef

logger = logging.getLogger(__name__)

router = APIRouter()


async def read_json_body(request: Request) -> dict:
    """Parse the request body as a JSON object or raise a validation error."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise SessionValidationError("Request body must be JSON") from None
    if not isinstance(body, dict):
        raise SessionValidationError("Request body must be a JSON object")
    return body


# ---- Start ----


@router.post("/child-login")
async def child_login(request: Request, db: AsyncSession = Depends(get_db)):
    """Start a new session. Body: {code, childName}."""
    body = await read_json_body(request)
    started = await session_lifecycle.start_session(
        db, body.get("code") or "", body.get("childName") or ""
    )
    return JSONResponse(started)


# ---- Activity tracking ----


@router.post("/track-theme-change")
async def track_theme_change(request: Request):
    """Body: {sessionId, theme, therapistCode?, username?}."""
    body = await read_json_body(request)
    theme = await session_lifecycle.track_theme_change(
        SessionRef.from_payload(body), body.get("theme") or ""
    )
    return JSONResponse({
        "success": True,
        "message": "Theme change tracked successfully",
        "currentTheme": theme,
    })


@router.post("/track-emotion")
async def track_emotion(request: Request):
    """Body: {sessionId, emotion}."""
    body = await read_json_body(request)
    await session_lifecycle.track_emotion(
        SessionRef.from_payload(body), body.get("emotion") or ""
    )
    return JSONResponse({"success": True})


@router.post("/update-played-puzzles")
async def update_played_puzzles(request: Request):
    """Body: {sessionId, theme, level, puzzleId, emotionsDuring?}."""
    body = await read_json_body(request)
    await session_lifecycle.record_puzzle_completion(
        SessionRef.from_payload(body),
        theme=body.get("theme") or "",
        level=body.get("level"),
        puzzle_id=body.get("puzzleId") or "",
        emotions_during=body.get("emotionsDuring") or [],
    )
    return JSONResponse({"success": True, "message": "Puzzle completion recorded successfully"})


@router.post("/save-reading-audio")
async def save_reading_audio(request: Request):
    """Body: {sessionId, storyId, audioRef, storyTitle?}."""
    body = await read_json_body(request)
    await session_lifecycle.save_reading_recording(
        SessionRef.from_payload(body),
        story_id=body.get("storyId") or "",
        audio_ref=body.get("audioRef") or body.get("audioData") or "",
        story_title=body.get("storyTitle"),
    )
    return JSONResponse({"success": True})


# ---- Emotion prediction (external model) ----


@router.post("/facemesh-landmarks")
async def facemesh_landmarks(request: Request):
    """Forward landmarks to the prediction service. Body: {sessionId, landmarks}."""
    body = await read_json_body(request)
    ref = SessionRef.from_payload(body)
    emotion = await predict_emotion(body.get("landmarks"))
    emotion_buffer.add(ref.session_id, emotion)
    logger.debug("Predicted emotion %r for session %s", emotion, ref.session_id)
    return JSONResponse({"emotion": emotion})


@router.get("/emotion")
async def dominant_emotion(sessionId: str = ""):
    """Dominant emotion since the last call for this session."""
    if not sessionId:
        raise SessionValidationError("sessionId is required")
    emotion = emotion_buffer.pop_dominant(sessionId)
    if emotion is None:
        return JSONResponse(
            {"error": "No emotions recorded for this puzzle yet"}, status_code=404
        )
    return JSONResponse({"emotion": emotion})


# ---- Read paths ----


@router.get("/get-session-data")
async def get_session_data(
    sessionId: str = "",
    therapistCode: str = "",
    childName: str = "",
    db: AsyncSession = Depends(get_db),
):
    ref = SessionRef.from_payload({
        "sessionId": sessionId, "therapistCode": therapistCode, "username": childName,
    })
    data = await session_lifecycle.get_session_data(db, ref)
    return JSONResponse({"sessionData": data, "success": True})


@router.get("/get-child-sessions")
async def get_child_sessions(
    therapistCode: str = "",
    childName: str = "",
    db: AsyncSession = Depends(get_db),
):
    sessions = await session_lifecycle.list_child_sessions(db, therapistCode, childName)
    return JSONResponse({"sessions": sessions, "success": True})
